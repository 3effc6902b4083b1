"""Share link routes: management (password protected) and public access by token."""

import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clipshare.auth.dependencies import require_auth, security
from clipshare.auth.routes import cookie_secure
from clipshare.config import get_settings
from clipshare.db.session import get_db, get_session
from clipshare.errors import StorageError, UnauthorizedError
from clipshare.files.routes import NO_STORE, get_blob_store, item_payload_response, text_response, truthy
from clipshare.files.storage import BlobStore
from clipshare.items.models import ClipboardItem, ItemType, epoch_to_datetime
from clipshare.limiter import limiter
from clipshare.shares.models import (
    ShareCreate,
    ShareCreated,
    ShareLink,
    ShareListEntry,
    ShareListPage,
    ShareMeta,
    SharedItemMeta,
    SharePassword,
)
from clipshare.shares.service import (
    authorize_share,
    create_share,
    delete_share,
    is_authorized,
    list_shares,
    record_download,
    resolve_shared_item,
    revoke_share,
    share_status,
)

router = APIRouter(prefix="/api/share", tags=["share"], dependencies=[Depends(require_auth)])
public_router = APIRouter(prefix="/api/share", tags=["share-public"])
log = logging.getLogger(__name__)


def share_cookie_name(token: str) -> str:
    return f"share_auth_{token}"


def share_url(token: str) -> str:
    """Path of the public share page for a token."""
    return f"/s/?token={token}"


def _to_epoch(value: Optional[datetime]) -> Optional[int]:
    """Aware or naive (taken as UTC) datetime -> Unix seconds."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def share_credential(
    request: Request,
    token: str,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """Share credential from the per-token cookie, else from the Authorization header."""
    cookie = request.cookies.get(share_cookie_name(token))
    if cookie:
        return cookie
    return credentials.credentials if credentials else None


def shared_item_meta(item: ClipboardItem, include_content: bool) -> SharedItemMeta:
    return SharedItemMeta(
        id=item.id,
        type=ItemType(item.type),
        file_name=item.file_name,
        file_size=item.file_size,
        content_type=item.content_type,
        content=item.content if include_content and item.type == ItemType.TEXT.value else None,
        created_at=epoch_to_datetime(item.created_at),
        updated_at=epoch_to_datetime(item.updated_at),
    )


def list_entry(link: ShareLink, item: ClipboardItem) -> ShareListEntry:
    return ShareListEntry(
        token=link.token,
        url=share_url(link.token),
        item=shared_item_meta(item, include_content=False),
        item_id=link.item_id,
        expires_at=epoch_to_datetime(link.expires_at),
        max_downloads=link.max_downloads,
        download_count=link.download_count,
        revoked=link.revoked,
        status=share_status(link),
        requires_password=link.requires_password,
        created_at=epoch_to_datetime(link.created_at),
        updated_at=epoch_to_datetime(link.updated_at),
    )


# --- management ---


@router.post("", response_model=ShareCreated, status_code=status.HTTP_201_CREATED)
async def create(
    body: ShareCreate,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> ShareCreated:
    """Create a share link for an item."""
    link = await create_share(
        session,
        body.item_id,
        expires_at=_to_epoch(body.expires_at),
        expires_in=body.expires_in,
        max_downloads=body.max_downloads,
        password=body.password,
    )
    try:
        await session.commit()
    except IntegrityError as e:
        log.error("create_share commit failed: %s", e)
        raise StorageError("Could not create share link") from e
    return ShareCreated(
        token=link.token,
        url=share_url(link.token),
        expires_at=epoch_to_datetime(link.expires_at),
        max_downloads=link.max_downloads,
        requires_password=link.requires_password,
    )


@router.get("", response_model=ShareListPage)
async def list_links(
    session: Annotated[AsyncSession, Depends(get_db)],
    item_id: Annotated[Optional[str], Query(alias="itemId")] = None,
    include_invalid: Annotated[Optional[str], Query(alias="includeInvalid")] = None,
    include_revoked: Annotated[Optional[str], Query(alias="includeRevoked")] = None,
    page: Optional[int] = None,
    page_size: Annotated[Optional[int], Query(alias="pageSize")] = None,
) -> ShareListPage:
    """Share links, newest first. Only valid links unless includeInvalid (or includeRevoked) is set."""
    rows, page, page_size, has_more = await list_shares(
        session,
        item_id=item_id or None,
        include_invalid=truthy(include_invalid) or truthy(include_revoked),
        page=page,
        page_size=page_size,
    )
    return ShareListPage(
        data=[list_entry(link, item) for link, item in rows],
        page=page,
        page_size=page_size,
        has_more=has_more,
    )


@router.post("/{token}/revoke")
async def revoke(token: str, session: Annotated[AsyncSession, Depends(get_db)]) -> dict:
    await revoke_share(session, token)
    await session.commit()
    return {"ok": True}


@router.delete("/{token}")
async def remove(token: str, session: Annotated[AsyncSession, Depends(get_db)]) -> dict:
    await delete_share(session, token)
    await session.commit()
    return {"ok": True}


# --- public ---


@public_router.get("/{token}", response_model=ShareMeta)
async def share_meta(
    token: str,
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> ShareMeta:
    """Metadata of a valid link. Text content only once authorized."""
    link, item = await resolve_shared_item(session, token)
    authorized = is_authorized(link, share_credential(request, token, credentials))
    return ShareMeta(
        token=link.token,
        item=shared_item_meta(item, include_content=authorized),
        expires_at=epoch_to_datetime(link.expires_at),
        max_downloads=link.max_downloads,
        download_count=link.download_count,
        requires_password=link.requires_password,
        authorized=authorized,
    )


@public_router.post("/{token}/verify")
@limiter.limit("20/minute")
async def verify(
    token: str,
    request: Request,
    body: SharePassword,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> JSONResponse:
    """Check the link password; on success set the per-link cookie and return the credential."""
    credential = await authorize_share(session, token, body.password)
    max_age = get_settings().share_auth_max_age_seconds
    response = JSONResponse(content={"success": True, "credential": credential, "expires_in": max_age})
    response.set_cookie(
        share_cookie_name(token),
        credential,
        max_age=max_age,
        path="/",
        samesite=get_settings().auth_cookie_samesite,
        httponly=True,
        secure=cookie_secure(request),
    )
    log.info("Share password verified token=%s...", token[:6])
    return response


async def _serve_shared(
    token: str,
    request: Request,
    blob_store: BlobStore,
    credentials: Optional[HTTPAuthorizationCredentials],
    attachment: bool,
) -> Response:
    """Shared content; every successful fetch counts against max_downloads.

    The count is committed and the session closed before the response body is sent.
    """
    async with get_session() as session:
        link, item = await resolve_shared_item(session, token)
        if not is_authorized(link, share_credential(request, token, credentials)):
            raise UnauthorizedError("password required")
        if item.type == ItemType.TEXT.value:
            response = text_response(item, attachment=attachment)
        else:
            response = item_payload_response(blob_store, item, attachment=attachment, cache_control=NO_STORE)
        await record_download(session, token)
        await session.commit()
    log.info("Share fetch token=%s... item=%s download=%s", token[:6], item.id, attachment)
    return response


@public_router.get("/{token}/file")
async def share_file(
    token: str,
    request: Request,
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Response:
    """Shared item inline."""
    return await _serve_shared(token, request, blob_store, credentials, attachment=False)


@public_router.get("/{token}/download")
async def share_download(
    token: str,
    request: Request,
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Response:
    """Shared item as an attachment."""
    return await _serve_shared(token, request, blob_store, credentials, attachment=True)
