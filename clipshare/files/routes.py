"""File API routes: serve an item's payload."""

import logging
from typing import Annotated, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, Response

from clipshare.auth.dependencies import require_auth
from clipshare.db.session import get_session
from clipshare.errors import NotFoundError
from clipshare.files.storage import BlobStore
from clipshare.items.models import ClipboardItem
from clipshare.items.service import get_item

router = APIRouter(prefix="/api/files", tags=["files"], dependencies=[Depends(require_auth)])
log = logging.getLogger(__name__)

# Payloads never change for a given item id
IMMUTABLE_CACHE = "public, max-age=31536000, immutable"
NO_STORE = "no-store"


def get_blob_store(request: Request) -> BlobStore:
    """FastAPI dependency: the blob store created at startup."""
    return request.app.state.blob_store


def truthy(value: Optional[str]) -> bool:
    """Query flag parsing: 1 / true / yes."""
    return (value or "").strip().lower() in ("1", "true", "yes")


def content_disposition(kind: str, filename: str) -> str:
    """RFC 5987 Content-Disposition so non-ASCII names survive."""
    return f"{kind}; filename*=UTF-8''{quote(filename, safe='')}"


def item_payload_response(
    blob_store: BlobStore,
    item: ClipboardItem,
    attachment: bool = False,
    cache_control: str = NO_STORE,
) -> Response:
    """
    Response carrying the item's binary payload (file on disk or inline bytes).
    Raises NotFoundError when the item has no payload or its file is gone.
    """
    filename = item.file_name or "download"
    headers = {
        "Content-Disposition": content_disposition("attachment" if attachment else "inline", filename),
        "Cache-Control": cache_control,
    }
    media_type = item.content_type or "application/octet-stream"
    if item.file_path:
        path = blob_store.existing_path(item.file_path)
        return FileResponse(path, media_type=media_type, headers=headers)
    if item.inline_data is not None:
        return Response(content=bytes(item.inline_data), media_type=media_type, headers=headers)
    raise NotFoundError("File content missing")


def text_response(item: ClipboardItem, attachment: bool = False) -> Response:
    """A TEXT item's content as text/plain."""
    filename = f"{item.file_name or 'download'}.txt"
    return Response(
        content=item.content or "",
        media_type="text/plain; charset=utf-8",
        headers={
            "Content-Disposition": content_disposition("attachment" if attachment else "inline", filename),
            "Cache-Control": NO_STORE,
        },
    )


@router.get("/{item_id}")
async def get_file(
    item_id: str,
    request: Request,
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
) -> Response:
    """Item payload; ?download=1 for an attachment disposition.

    The session is closed before the body streams so the DB lock is not held during the transfer.
    """
    async with get_session() as session:
        item = await get_item(session, item_id)
    attachment = truthy(request.query_params.get("download"))
    log.info("get_file id=%s download=%s", item_id, attachment)
    return item_payload_response(blob_store, item, attachment=attachment, cache_control=IMMUTABLE_CACHE)
