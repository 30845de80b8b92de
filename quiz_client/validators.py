"""
Input validators applied before any join attempt.
"""
import re

from quiz_client.constants import MAX_PLAYER_NAME_LENGTH, MAX_ROOM_CODE_LENGTH

_ROOM_CODE_RE = re.compile(r"^[A-Za-z0-9]+$")
_PLAYER_NAME_RE = re.compile(r"^[A-Za-z0-9\s\-'.]+$")

ROOM_CODE_HINT = "Room code must contain only letters and numbers (1-50 characters)"
PLAYER_NAME_HINT = (
    "Name can only contain letters, numbers, spaces, hyphens, apostrophes, "
    "and periods (1-50 characters)"
)


def is_valid_room_code(room_code: str) -> bool:
    """Alphanumeric, 1-50 characters after trimming."""
    trimmed = (room_code or "").strip()
    if not trimmed or len(trimmed) > MAX_ROOM_CODE_LENGTH:
        return False
    return bool(_ROOM_CODE_RE.match(trimmed))


def is_valid_player_name(name: str) -> bool:
    """Letters, digits, spaces, hyphens, apostrophes and periods, 1-50 characters."""
    trimmed = (name or "").strip()
    if not trimmed or len(trimmed) > MAX_PLAYER_NAME_LENGTH:
        return False
    return bool(_PLAYER_NAME_RE.match(trimmed))
