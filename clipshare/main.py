"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from clipshare.auth.routes import router as auth_router
from clipshare.config import get_settings
from clipshare.db.session import init_db
from clipshare.errors import ClipShareError
from clipshare.events.broadcaster import EventBroadcaster
from clipshare.events.routes import router as events_router
from clipshare.files.routes import router as files_router
from clipshare.files.storage import BlobStore
from clipshare.items.routes import router as items_router
from clipshare.limiter import limiter
from clipshare.shares.routes import public_router as share_public_router
from clipshare.shares.routes import router as share_router

log = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging from settings (stderr always; optional file)."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("clipshare")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and str(settings.log_file).strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)
    else:
        root.debug("Logging to stderr only (no log_file set)")


_setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, the blob store and the event broadcaster; close subscribers on shutdown."""
    settings = get_settings()
    log.info("Startup: initializing database at %s", settings.database_path)
    await init_db()
    app.state.blob_store = BlobStore.from_settings(settings)
    app.state.broadcaster = EventBroadcaster(settings.event_backlog)
    if not settings.password:
        log.warning("CLIPSHARE_PASSWORD is not set; protected routes will answer 500")
    log.info("Startup complete")
    yield
    log.info("Shutdown: closing %d event stream(s)", app.state.broadcaster.subscriber_count)
    app.state.broadcaster.close()


app = FastAPI(title="ClipShare API", version="0.1.0", lifespan=lifespan)

settings = get_settings()
if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    """Reject bodies over max_upload_bytes by Content-Length before they are read."""
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > get_settings().max_upload_bytes:
        log.warning("Rejected %s %s: body of %s bytes", request.method, request.url.path, length)
        return JSONResponse(status_code=413, content={"detail": "Payload too large"})
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


@app.exception_handler(ClipShareError)
async def clipshare_exception_handler(request: Request, exc: ClipShareError):
    """Domain errors carry their own status code and a safe detail message."""
    if exc.status_code >= 500:
        log.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(auth_router)
app.include_router(items_router)
app.include_router(files_router)
app.include_router(events_router)
app.include_router(share_router)
app.include_router(share_public_router)


@app.get("/health")
@limiter.exempt
def health() -> JSONResponse:
    """Health check for Docker and reverse proxies. Exempt from rate limiting."""
    return JSONResponse(content={"status": "ok"})


@app.get("/api/healthz")
@limiter.exempt
def healthz() -> JSONResponse:
    return JSONResponse(content={"ok": True})


def run() -> None:
    """Console entry point: serve the app with uvicorn on settings.host:settings.port."""
    import uvicorn

    settings = get_settings()
    log.info("Starting ClipShare on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
