import os

from pydantic import BaseModel, Field

DEFAULT_DURATION_SECONDS = 1500
MAX_DURATION_SECONDS = 86400
COOKIE_MAX_AGE_SECONDS = 30 * 24 * 60 * 60
DATABASE_URL = "sqlite:///pomopair.db"


class Settings(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(3000, ge=1, le=65535)
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    # Duration given to a lazily created session on the first timer read
    default_duration_seconds: int = Field(DEFAULT_DURATION_SECONDS, ge=1, le=MAX_DURATION_SECONDS)
    cookie_max_age_seconds: int = Field(COOKIE_MAX_AGE_SECONDS, ge=1)
    # SQLAlchemy URL of the record database; None keeps records in memory
    database_url: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.environ.get("POMOPAIR_CORS_ORIGINS", "*")
        return cls(
            host=os.environ.get("POMOPAIR_HOST", "127.0.0.1"),
            port=int(os.environ.get("PORT", "3000")),
            log_level=os.environ.get("POMOPAIR_LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            default_duration_seconds=int(
                os.environ.get("POMOPAIR_DEFAULT_DURATION_SEC", str(DEFAULT_DURATION_SECONDS))
            ),
            cookie_max_age_seconds=int(
                os.environ.get("POMOPAIR_COOKIE_MAX_AGE_SEC", str(COOKIE_MAX_AGE_SECONDS))
            ),
            database_url=os.environ.get("POMOPAIR_DATABASE_URL", DATABASE_URL) or None,
        )
