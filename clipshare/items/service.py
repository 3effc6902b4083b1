"""Item repository: ingestion, lookup, cursor-paginated search, reorder, delete."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterable, Dict, List, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import defer

from clipshare.db.session import get_session, now_unix
from clipshare.errors import BadRequestError, NotFoundError, StorageError
from clipshare.files.storage import BlobStore, StoredBlob
from clipshare.items.cursor import Cursor
from clipshare.items.models import ClipboardItem, ItemType, epoch_to_iso

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 24
MAX_PAGE_SIZE = 48


@dataclass
class Page:
    """One page of items in (sort_weight, created_at, id) descending order."""

    items: List[ClipboardItem]
    has_more: bool
    next_cursor: Optional[Cursor] = None


def clamp_page_size(take: Optional[int]) -> int:
    """Page size clamped to [1, MAX_PAGE_SIZE]; None means the default."""
    if take is None:
        return DEFAULT_PAGE_SIZE
    return max(1, min(MAX_PAGE_SIZE, take))


def parse_item_type(value: Optional[str]) -> ItemType:
    """TEXT / IMAGE / FILE (case-insensitive). Missing means TEXT."""
    if value is None or not value.strip():
        return ItemType.TEXT
    try:
        return ItemType(value.strip().upper())
    except ValueError:
        raise BadRequestError(f"Invalid item type: {value!r}")


def created_payload(item: ClipboardItem) -> Dict[str, Any]:
    """clipboard:created event body (no payload bytes, optional fields omitted when empty)."""
    data: Dict[str, Any] = {"id": item.id, "type": item.type}
    if item.content is not None:
        data["content"] = item.content
    if item.file_name is not None:
        data["fileName"] = item.file_name
    if item.file_size is not None:
        data["fileSize"] = item.file_size
    data["sortWeight"] = item.sort_weight
    data["createdAt"] = epoch_to_iso(item.created_at)
    data["updatedAt"] = epoch_to_iso(item.updated_at)
    return data


async def _max_weight(session: AsyncSession) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(ClipboardItem.sort_weight), 0))
    )
    return int(result.scalar_one())


async def insert_item(
    session: AsyncSession,
    item_type: ItemType,
    content: Optional[str] = None,
    file_name: Optional[str] = None,
    content_type: Optional[str] = None,
    blob: Optional[StoredBlob] = None,
) -> ClipboardItem:
    """
    Insert a new item above every existing one (max weight + 1). The max read and the
    insert share the caller's session, so they run under one lock and one transaction.
    Caller must commit.
    """
    now = now_unix()
    item = ClipboardItem(
        id=str(uuid.uuid4()),
        type=item_type.value,
        content=content,
        file_name=file_name if blob is not None else None,
        content_type=content_type if blob is not None else None,
        file_size=blob.size if blob is not None else None,
        inline_data=blob.inline_data if blob is not None else None,
        file_path=blob.file_path if blob is not None else None,
        sort_weight=await _max_weight(session) + 1,
        created_at=now,
        updated_at=now,
    )
    session.add(item)
    await session.flush()
    return item


async def create_item(
    blob_store: BlobStore,
    item_type: ItemType,
    content: Optional[str] = None,
    file_name: Optional[str] = None,
    content_type: Optional[str] = None,
    chunks: Optional[AsyncIterable[bytes]] = None,
) -> ClipboardItem:
    """
    Ingest one item. The payload stream is stored first, outside the database lock;
    only the metadata insert takes a session. If the insert fails, a spilled file is
    removed again and the failure is raised.
    """
    if not content and chunks is None:
        raise BadRequestError("Content or file is required")
    blob: Optional[StoredBlob] = None
    if chunks is not None:
        blob = await blob_store.store(file_name, chunks)
    try:
        async with get_session() as session:
            item = await insert_item(
                session,
                item_type,
                content=content,
                file_name=file_name,
                content_type=content_type,
                blob=blob,
            )
    except SQLAlchemyError as e:
        log.error("Insert of new item failed: %s", e)
        if blob is not None and blob.on_disk:
            blob_store.delete(blob.file_path)
        raise StorageError("Could not save item") from e
    except Exception:
        if blob is not None and blob.on_disk:
            blob_store.delete(blob.file_path)
        raise
    log.info(
        "create_item id=%s type=%s size=%s weight=%d on_disk=%s",
        item.id,
        item.type,
        item.file_size,
        item.sort_weight,
        bool(blob and blob.on_disk),
    )
    return item


async def get_item(session: AsyncSession, item_id: str) -> ClipboardItem:
    """Return item by id or raise NotFoundError."""
    item = await session.get(ClipboardItem, item_id)
    if item is None:
        raise NotFoundError("Clipboard item not found")
    return item


async def search_items(
    session: AsyncSession,
    search: Optional[str] = None,
    cursor: Optional[Cursor] = None,
    limit: Optional[int] = None,
) -> Page:
    """
    Items strictly after `cursor` in (sort_weight DESC, created_at DESC, id DESC) order,
    optionally filtered by a substring of content or file name. Reads limit + 1 rows so
    has_more needs no count query.
    """
    take = clamp_page_size(limit)
    stmt = select(ClipboardItem).options(defer(ClipboardItem.inline_data))
    if search:
        stmt = stmt.where(
            or_(
                ClipboardItem.content.contains(search, autoescape=True),
                ClipboardItem.file_name.contains(search, autoescape=True),
            )
        )
    if cursor is not None:
        stmt = stmt.where(
            or_(
                ClipboardItem.sort_weight < cursor.sort_weight,
                and_(
                    ClipboardItem.sort_weight == cursor.sort_weight,
                    ClipboardItem.created_at < cursor.created_at,
                ),
                and_(
                    ClipboardItem.sort_weight == cursor.sort_weight,
                    ClipboardItem.created_at == cursor.created_at,
                    ClipboardItem.id < cursor.id,
                ),
            )
        )
    stmt = stmt.order_by(
        ClipboardItem.sort_weight.desc(),
        ClipboardItem.created_at.desc(),
        ClipboardItem.id.desc(),
    ).limit(take + 1)
    rows = list((await session.execute(stmt)).scalars().all())
    has_more = len(rows) > take
    items = rows[:take]
    next_cursor = None
    if has_more:
        last = items[-1]
        next_cursor = Cursor(sort_weight=last.sort_weight, created_at=last.created_at, id=last.id)
    return Page(items=items, has_more=has_more, next_cursor=next_cursor)


def _validate_reorder_ids(ids: Sequence[Any]) -> List[str]:
    if not ids:
        raise BadRequestError("ids required")
    if any(not isinstance(i, str) or not i for i in ids):
        raise BadRequestError("ids must be non-empty strings")
    if len(set(ids)) != len(ids):
        raise BadRequestError("ids must not contain duplicates")
    return list(ids)


async def reorder_items(session: AsyncSession, ids: Sequence[Any]) -> Dict[str, int]:
    """
    Move the given items to the top in the given order: weights max + n down to max + 1.
    Unknown ids are skipped; items not listed keep their weights. Returns id -> new weight
    in the given order. Caller must commit (one transaction for all updates).
    """
    wanted = _validate_reorder_ids(ids)
    existing = set()
    chunk = 500  # stay under SQLite parameter limit
    for i in range(0, len(wanted), chunk):
        part = wanted[i : i + chunk]
        result = await session.execute(select(ClipboardItem.id).where(ClipboardItem.id.in_(part)))
        existing.update(result.scalars().all())
    ordered = [i for i in wanted if i in existing]
    if len(ordered) != len(wanted):
        log.warning("reorder skipped %d unknown ids", len(wanted) - len(ordered))
    if not ordered:
        return {}
    # n counts existing ids only, so skipped ids leave no gap above the old maximum
    base = await _max_weight(session) + len(ordered)
    now = now_unix()
    weights: Dict[str, int] = {}
    for offset, item_id in enumerate(ordered):
        weight = base - offset
        await session.execute(
            update(ClipboardItem)
            .where(ClipboardItem.id == item_id)
            .values(sort_weight=weight, updated_at=now)
        )
        weights[item_id] = weight
    log.info("reorder_items count=%d top_weight=%d", len(weights), base)
    return weights


async def delete_item(session: AsyncSession, blob_store: BlobStore, item_id: str) -> None:
    """
    Delete the row (share links go with it through the foreign key cascade), commit,
    then remove any spilled file. File removal is best-effort: a leftover file is an
    orphan, never a row pointing at nothing.
    """
    result = await session.execute(
        select(ClipboardItem.file_path).where(ClipboardItem.id == item_id)
    )
    row = result.first()
    if row is None:
        raise NotFoundError("Clipboard item not found")
    await session.execute(delete(ClipboardItem).where(ClipboardItem.id == item_id))
    await session.commit()
    if row.file_path:
        blob_store.delete(row.file_path)
    log.info("delete_item id=%s", item_id)
