"""Share registry: link creation, validity, password binding, download accounting."""

import hashlib
import logging
import secrets
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer

from clipshare.auth.jwt import create_share_credential, get_share_from_credential
from clipshare.db.session import now_unix
from clipshare.errors import BadRequestError, NotFoundError, UnauthorizedError
from clipshare.items.models import ClipboardItem
from clipshare.shares.models import ShareLink

log = logging.getLogger(__name__)

TOKEN_BYTES = 18
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

STATUS_ACTIVE = "active"
STATUS_REVOKED = "revoked"
STATUS_EXPIRED = "expired"
STATUS_EXHAUSTED = "exhausted"


def generate_token() -> str:
    """18 random bytes, URL-safe base64 without padding (24 chars)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_share_password(password: str, token: str) -> str:
    """SHA-256 hex of password | token: the same password hashes differently per link."""
    h = hashlib.sha256()
    h.update(password.encode("utf-8"))
    h.update(b"|")
    h.update(token.encode("ascii"))
    return h.hexdigest()


def share_status(link: ShareLink, now: Optional[int] = None) -> str:
    """Why a link is (in)valid right now. Only the management view may show this."""
    now = now_unix() if now is None else now
    if link.revoked:
        return STATUS_REVOKED
    if link.expires_at is not None and link.expires_at <= now:
        return STATUS_EXPIRED
    if link.max_downloads is not None and link.download_count >= link.max_downloads:
        return STATUS_EXHAUSTED
    return STATUS_ACTIVE


def is_valid(link: Optional[ShareLink], now: Optional[int] = None) -> bool:
    return link is not None and share_status(link, now) == STATUS_ACTIVE


def _valid_clause(now: int):
    """SQL form of the validity predicate."""
    return and_(
        ShareLink.revoked.is_(False),
        or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > now),
        or_(ShareLink.max_downloads.is_(None), ShareLink.download_count < ShareLink.max_downloads),
    )


async def create_share(
    session: AsyncSession,
    item_id: str,
    expires_at: Optional[int] = None,
    expires_in: Optional[int] = None,
    max_downloads: Optional[int] = None,
    password: Optional[str] = None,
) -> ShareLink:
    """
    Create a share link for an existing item. An explicit expires_at (Unix seconds)
    wins over expires_in; expires_in <= 0 means no expiry. A blank password means a
    public link. Caller must commit; a token collision fails the commit.
    """
    if not item_id:
        raise BadRequestError("itemId is required")
    if max_downloads is not None and max_downloads < 0:
        raise BadRequestError("maxDownloads must be non-negative")
    exists = await session.execute(select(ClipboardItem.id).where(ClipboardItem.id == item_id))
    if exists.first() is None:
        raise NotFoundError("Item not found")
    now = now_unix()
    if expires_at is None and expires_in is not None and expires_in > 0:
        expires_at = now + expires_in
    token = generate_token()
    password_hash = None
    if password and password.strip():
        password_hash = hash_share_password(password, token)
    link = ShareLink(
        token=token,
        item_id=item_id,
        expires_at=expires_at,
        max_downloads=max_downloads,
        download_count=0,
        revoked=False,
        password_hash=password_hash,
        created_at=now,
        updated_at=now,
    )
    session.add(link)
    await session.flush()
    log.info(
        "create_share item=%s expires_at=%s max_downloads=%s password=%s",
        item_id,
        expires_at,
        max_downloads,
        password_hash is not None,
    )
    return link


async def resolve_share(session: AsyncSession, token: str) -> ShareLink:
    """
    Return the link if it is valid now. Revoked, expired, exhausted and unknown
    tokens all raise the same NotFoundError.
    """
    link = await session.get(ShareLink, token)
    if not is_valid(link):
        raise NotFoundError("not found")
    return link


async def resolve_shared_item(session: AsyncSession, token: str) -> Tuple[ShareLink, ClipboardItem]:
    """Valid link and its item."""
    link = await resolve_share(session, token)
    item = await session.get(ClipboardItem, link.item_id)
    if item is None:
        raise NotFoundError("not found")
    return link, item


def authorize(link: ShareLink, password: Optional[str]) -> str:
    """
    Check a share password and issue a credential scoped to this link only.
    Raises BadRequestError if no password was given or the link has none,
    UnauthorizedError if it does not match.
    """
    if not password:
        raise BadRequestError("password required")
    if link.password_hash is None:
        raise BadRequestError("no password set")
    given = hash_share_password(password, link.token)
    if not secrets.compare_digest(given, link.password_hash):
        log.warning("Share password rejected token=%s...", link.token[:6])
        raise UnauthorizedError("invalid password")
    return create_share_credential(link.token)


async def authorize_share(session: AsyncSession, token: str, password: Optional[str]) -> str:
    """authorize() for a token; invalid links are NotFoundError."""
    link = await resolve_share(session, token)
    return authorize(link, password)


def is_authorized(link: ShareLink, credential: Optional[str]) -> bool:
    """Links without a password need no credential; others need one issued for this token."""
    if link.password_hash is None:
        return True
    return get_share_from_credential(credential) == link.token


async def record_download(session: AsyncSession, token: str) -> None:
    """
    Count one content fetch. A single conditional UPDATE re-checks validity, so a
    link with max_downloads = M admits exactly M fetches. Raises NotFoundError when
    the link is (or just became) invalid.
    """
    now = now_unix()
    result = await session.execute(
        update(ShareLink)
        .where(ShareLink.token == token, _valid_clause(now))
        .values(download_count=ShareLink.download_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("not found")


async def revoke_share(session: AsyncSession, token: str) -> None:
    """Mark a link revoked (one-way). Raises NotFoundError for an unknown token."""
    result = await session.execute(
        update(ShareLink)
        .where(ShareLink.token == token)
        .values(revoked=True, updated_at=now_unix())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("not found")
    log.info("revoke_share token=%s...", token[:6])


async def delete_share(session: AsyncSession, token: str) -> None:
    """Delete a link record. Raises NotFoundError for an unknown token."""
    result = await session.execute(delete(ShareLink).where(ShareLink.token == token))
    if result.rowcount == 0:
        raise NotFoundError("not found")
    log.info("delete_share token=%s...", token[:6])


def clamp_share_page(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    page = max(1, page or 1)
    page_size = DEFAULT_PAGE_SIZE if page_size is None else max(1, min(MAX_PAGE_SIZE, page_size))
    return page, page_size


async def list_shares(
    session: AsyncSession,
    item_id: Optional[str] = None,
    include_invalid: bool = False,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> Tuple[List[Tuple[ShareLink, ClipboardItem]], int, int, bool]:
    """
    Management listing, newest first. Without include_invalid only valid links are
    returned (filtered in SQL so pages stay full). Returns (rows, page, page_size, has_more).
    """
    page, page_size = clamp_share_page(page, page_size)
    stmt = (
        select(ShareLink, ClipboardItem)
        .join(ClipboardItem, ShareLink.item_id == ClipboardItem.id)
        .options(defer(ClipboardItem.inline_data))
    )
    if item_id:
        stmt = stmt.where(ShareLink.item_id == item_id)
    if not include_invalid:
        stmt = stmt.where(_valid_clause(now_unix()))
    stmt = (
        stmt.order_by(ShareLink.created_at.desc(), ShareLink.token.desc())
        .offset((page - 1) * page_size)
        .limit(page_size + 1)
    )
    rows = [(link, item) for link, item in (await session.execute(stmt)).all()]
    has_more = len(rows) > page_size
    return rows[:page_size], page, page_size, has_more

