"""Clipboard item SQLAlchemy model and Pydantic schemas."""

import enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import BigInteger, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clipshare.db.session import Base


class ItemType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"


class ClipboardItem(Base):
    """One clipboard entry. A binary payload lives in inline_data or under file_path, never both."""

    __tablename__ = "clipboard_items"
    __table_args__ = (
        Index("clipboard_created_idx", "created_at", "id"),
        Index("clipboard_sort_idx", "sort_weight", "created_at", "id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Larger value means shown first
    sort_weight: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    inline_data: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    # Relative to data_dir, e.g. uploads/<uuid>.png
    file_path: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Unix seconds
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)


def epoch_to_datetime(ts: Optional[int]) -> Optional[datetime]:
    """Unix seconds -> aware UTC datetime (None passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def epoch_to_iso(ts: int) -> str:
    """Unix seconds -> RFC 3339 string, as sent in events."""
    return epoch_to_datetime(ts).isoformat().replace("+00:00", "Z")


# Pydantic schemas for API (camelCase on the wire)
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ItemSummary(CamelModel):
    """Item as returned by API (no payload bytes, no storage path)."""

    id: str
    type: ItemType
    content: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    sort_weight: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_item(cls, item: ClipboardItem) -> "ItemSummary":
        return cls(
            id=item.id,
            type=ItemType(item.type),
            content=item.content,
            file_name=item.file_name,
            file_size=item.file_size,
            content_type=item.content_type,
            sort_weight=item.sort_weight,
            created_at=epoch_to_datetime(item.created_at),
            updated_at=epoch_to_datetime(item.updated_at),
        )


class ItemPage(CamelModel):
    """One page of the item listing."""

    items: List[ItemSummary]
    next_cursor: Optional[str] = None
    has_more: bool


class ReorderRequest(BaseModel):
    """Desired order, front to back."""

    ids: List[Any] = Field(default_factory=list)


class ReorderResponse(BaseModel):
    ok: bool = True
    weights: Dict[str, int]
