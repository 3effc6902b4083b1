"""Opaque, versioned pagination cursor for the (sort_weight, created_at, id) order."""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from clipshare.errors import BadRequestError

CURSOR_VERSION = 1

# SQLite INTEGER range; larger values cannot be bound as parameters
MIN_INT64 = -(2**63)
MAX_INT64 = 2**63 - 1


@dataclass(frozen=True)
class Cursor:
    """Position of the last item a client has seen."""

    sort_weight: int
    created_at: int
    id: str

    def encode(self) -> str:
        """URL-safe base64 of a small JSON object, no padding."""
        raw = json.dumps(
            {"v": CURSOR_VERSION, "w": self.sort_weight, "c": self.created_at, "id": self.id},
            separators=(",", ":"),
        ).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, value: str) -> "Cursor":
        """Parse an encoded cursor. Raises BadRequestError if it is malformed or from another version."""
        padded = value.strip() + "=" * (-len(value.strip()) % 4)
        try:
            data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise BadRequestError("Invalid cursor") from e
        if not isinstance(data, dict) or data.get("v") != CURSOR_VERSION:
            raise BadRequestError("Invalid cursor")
        weight, created, item_id = data.get("w"), data.get("c"), data.get("id")
        if not _is_int(weight) or not _is_int(created) or not isinstance(item_id, str) or not item_id:
            raise BadRequestError("Invalid cursor")
        return cls(sort_weight=weight, created_at=created, id=item_id)


def _is_int(v: object) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and MIN_INT64 <= v <= MAX_INT64


def _parse_created_at(value: str) -> Optional[int]:
    """Unix seconds, or an RFC 3339 timestamp (naive means UTC)."""
    value = value.strip()
    try:
        seconds = int(value)
    except ValueError:
        pass
    else:
        return seconds if _is_int(seconds) else None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def cursor_from_params(
    cursor: Optional[str] = None,
    sort_weight: Optional[str] = None,
    created_at: Optional[str] = None,
    item_id: Optional[str] = None,
) -> Optional[Cursor]:
    """
    Build a cursor from query parameters: the opaque `cursor` wins; otherwise the
    separate cursorSortWeight / cursorCreatedAt / cursorId parameters older clients send.
    Returns None when no position is given.
    """
    if cursor:
        return Cursor.decode(cursor)
    if not created_at or not item_id:
        return None
    created = _parse_created_at(created_at)
    if created is None:
        raise BadRequestError("Invalid cursorCreatedAt")
    if sort_weight is None or sort_weight == "":
        raise BadRequestError("cursorSortWeight is required with cursorCreatedAt and cursorId")
    try:
        weight = int(sort_weight)
    except ValueError as e:
        raise BadRequestError("Invalid cursorSortWeight") from e
    if not _is_int(weight):
        raise BadRequestError("Invalid cursorSortWeight")
    return Cursor(sort_weight=weight, created_at=created, id=item_id)
