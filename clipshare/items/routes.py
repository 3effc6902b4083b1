"""Clipboard API routes: list, create, get, delete, reorder."""

import logging
from typing import Annotated, AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from clipshare.auth.dependencies import require_auth
from clipshare.db.session import get_db
from clipshare.events.broadcaster import (
    CLIPBOARD_CREATED,
    CLIPBOARD_DELETED,
    CLIPBOARD_REORDERED,
    EventBroadcaster,
)
from clipshare.events.routes import get_broadcaster
from clipshare.files.routes import get_blob_store
from clipshare.files.storage import READ_CHUNK_SIZE, BlobStore
from clipshare.items.cursor import cursor_from_params
from clipshare.items.models import ItemPage, ItemSummary, ReorderRequest, ReorderResponse
from clipshare.items.service import (
    create_item,
    created_payload,
    delete_item,
    get_item,
    parse_item_type,
    reorder_items,
    search_items,
)

router = APIRouter(prefix="/api/clipboard", tags=["clipboard"], dependencies=[Depends(require_auth)])
log = logging.getLogger(__name__)


def _parse_take(value: Optional[str]) -> Optional[int]:
    """Page size from the query string; unparseable values fall back to the default."""
    try:
        return int(value) if value else None
    except ValueError:
        return None


async def iter_upload(upload: UploadFile, chunk_size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read an uploaded file part chunk by chunk."""
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        yield chunk


@router.get("", response_model=ItemPage)
async def list_items(
    session: Annotated[AsyncSession, Depends(get_db)],
    search: Optional[str] = None,
    take: Optional[str] = None,
    cursor: Optional[str] = None,
    cursor_sort_weight: Annotated[Optional[str], Query(alias="cursorSortWeight")] = None,
    cursor_created_at: Annotated[Optional[str], Query(alias="cursorCreatedAt")] = None,
    cursor_id: Annotated[Optional[str], Query(alias="cursorId")] = None,
) -> ItemPage:
    """One page of items, highest sort weight first. Pass nextCursor back as ?cursor=."""
    position = cursor_from_params(cursor, cursor_sort_weight, cursor_created_at, cursor_id)
    page = await search_items(session, search=search or None, cursor=position, limit=_parse_take(take))
    log.debug("list_items search=%r cursor=%s returned=%d", search, position is not None, len(page.items))
    return ItemPage(
        items=[ItemSummary.from_item(i) for i in page.items],
        next_cursor=page.next_cursor.encode() if page.next_cursor else None,
        has_more=page.has_more,
    )


@router.post("", response_model=ItemSummary, status_code=status.HTTP_201_CREATED)
async def create(
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    broadcaster: Annotated[EventBroadcaster, Depends(get_broadcaster)],
    type: Annotated[Optional[str], Form()] = None,
    content: Annotated[Optional[str], Form()] = None,
    file: Annotated[Optional[UploadFile], File()] = None,
) -> ItemSummary:
    """
    Create an item from multipart fields: type (TEXT|IMAGE|FILE), content, file.
    The payload is stored before the database is touched.
    """
    item_type = parse_item_type(type)
    # A file input left empty arrives as a part without a file name
    if file is not None and not file.filename:
        file = None
    item = await create_item(
        blob_store,
        item_type,
        content=content,
        file_name=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        chunks=iter_upload(file) if file is not None else None,
    )
    broadcaster.publish(CLIPBOARD_CREATED, created_payload(item))
    return ItemSummary.from_item(item)


@router.post("/reorder", response_model=ReorderResponse)
async def reorder(
    body: ReorderRequest,
    session: Annotated[AsyncSession, Depends(get_db)],
    broadcaster: Annotated[EventBroadcaster, Depends(get_broadcaster)],
) -> ReorderResponse:
    """Move the given ids to the top, in the given order (front to back)."""
    weights = await reorder_items(session, body.ids)
    await session.commit()
    if weights:
        # Only ids that were moved; unknown ids from the request are left out
        broadcaster.publish(CLIPBOARD_REORDERED, {"ids": list(weights), "weights": weights})
    return ReorderResponse(weights=weights)


@router.get("/{item_id}", response_model=ItemSummary)
async def get_one(
    item_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> ItemSummary:
    """Item metadata (payload via /api/files/{id})."""
    return ItemSummary.from_item(await get_item(session, item_id))


@router.delete("/{item_id}")
async def delete_one(
    item_id: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    broadcaster: Annotated[EventBroadcaster, Depends(get_broadcaster)],
) -> dict:
    """Delete an item, its share links and its file."""
    await delete_item(session, blob_store, item_id)
    broadcaster.publish(CLIPBOARD_DELETED, {"id": item_id})
    return {"ok": True}
