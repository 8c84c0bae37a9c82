"""
PomoPair error types.

Every error carries a machine-readable code and the HTTP status the API
renders it with.
"""

from typing import Any


class PomoPairError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class ValidationError(PomoPairError):
    """Missing or empty required input."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__("validation_error", message)


class NotAuthenticated(PomoPairError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__("not_authenticated", message)


class NotFound(PomoPairError):
    """Record absent or not owned by the caller."""

    status_code = 404

    def __init__(self, message: str):
        super().__init__("not_found", message)


class InvalidTransition(PomoPairError):
    """Timer operation illegal in the session's current state."""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("invalid_transition", message, details)


class InternalError(PomoPairError):
    status_code = 500

    def __init__(self, message: str = "Internal server error", code: str = "internal_error"):
        super().__init__(code, message)


class StoreError(InternalError):
    """Integrity failure inside the record store."""

    def __init__(self, message: str):
        super().__init__(message, code="store_error")
