import base64
import binascii
import json

MAX_PAGE_SIZE = 100


def encode_cursor(key: tuple[str, str] | None) -> str | None:
    if key is None:
        return None
    created_at, story_id = key
    raw = json.dumps({"created_at": created_at, "id": story_id}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> tuple[str, str] | None:
    """Ordering key from an opaque cursor; None when the cursor is malformed."""
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        key = (data["created_at"], data["id"])
    except (binascii.Error, UnicodeError, ValueError, TypeError, KeyError):
        return None
    if not all(isinstance(part, str) for part in key):
        return None
    return key
