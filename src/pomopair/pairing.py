"""Invite-code login that pairs newcomers into rooms of two."""

import logging

from pomopair.errors import ValidationError
from pomopair.models import User
from pomopair.store import RecordStore

logger = logging.getLogger(__name__)


async def resolve(store: RecordStore, invite_code: str | None, name: str | None) -> User:
    """Return the user holding ``invite_code``, creating and pairing one if needed.

    An existing user is returned as-is; ``name`` is only used for new users.
    A new user joins the oldest room that has exactly one member, or a fresh
    room when none does. Nothing serializes two concurrent calls: both may
    miss each other's room and each open a new one.
    """
    invite_code = (invite_code or "").strip()
    name = (name or "").strip()
    if not invite_code or not name:
        raise ValidationError("Invite code and name are required")

    user = await store.get_user_by_invite_code(invite_code)
    if user is not None:
        return user

    counts = await store.room_member_counts()
    room_id = next((rid for rid, members in counts.items() if members == 1), None)
    if room_id is None:
        room = await store.create_room()
        room_id = room.id
        logger.info("Opened room %s", room_id)

    user = await store.create_user(name=name, invite_code=invite_code, room_id=room_id)
    logger.info("User %s (%s) joined room %s", user.name, user.id, room_id)
    return user
