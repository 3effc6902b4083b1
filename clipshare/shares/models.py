"""Share link SQLAlchemy model and Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clipshare.db.session import Base
from clipshare.items.models import CamelModel, ItemType


class ShareLink(Base):
    """Capability token for one item. Validity is derived on every access, never stored."""

    __tablename__ = "share_links"
    __table_args__ = (
        Index("share_item_idx", "item_id"),
        Index("share_created_idx", "created_at"),
    )

    token: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clipboard_items.id", ondelete="CASCADE"), nullable=False
    )
    # Unix seconds; None = never expires
    expires_at: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # None = unlimited
    max_downloads: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # sha256(password | token) hex
    password_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None


# Pydantic schemas for API
class ShareCreate(CamelModel):
    """Payload for creating a share link. expires_at wins over expires_in (seconds)."""

    item_id: str
    expires_in: Optional[int] = None
    expires_at: Optional[datetime] = None
    max_downloads: Optional[int] = None
    password: Optional[str] = None


class ShareCreated(CamelModel):
    token: str
    url: str
    expires_at: Optional[datetime] = None
    max_downloads: Optional[int] = None
    requires_password: bool


class SharePassword(BaseModel):
    """Body of the share password check."""

    password: Optional[str] = None


class SharedItemMeta(CamelModel):
    """Item metadata visible through a share link. content only for authorized TEXT items."""

    id: str
    type: ItemType
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShareMeta(CamelModel):
    """Public view of a valid share link."""

    token: str
    item: SharedItemMeta
    expires_at: Optional[datetime] = None
    max_downloads: Optional[int] = None
    download_count: int
    requires_password: bool
    authorized: bool


class ShareListEntry(CamelModel):
    """Management view: discloses why a link is no longer valid."""

    token: str
    url: str
    item: SharedItemMeta
    item_id: str
    expires_at: Optional[datetime] = None
    max_downloads: Optional[int] = None
    download_count: int
    revoked: bool
    status: str
    requires_password: bool
    created_at: datetime
    updated_at: datetime


class ShareListPage(CamelModel):
    data: List[ShareListEntry]
    page: int
    page_size: int
    has_more: bool
