"""SQLite session and engine.

All database access goes through get_session(), which holds one process-wide lock
for the lifetime of the session: the embedded store has a single writer, so one
reader/writer at a time. A session is one transaction (commit on exit).
"""

import asyncio
import time
import weakref
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from clipshare.config import get_settings

Base = declarative_base()

_settings = get_settings()
_settings.database_path.parent.mkdir(parents=True, exist_ok=True)
# SQLAlchemy async needs sqlite+aiosqlite and path as URL
_db_url = f"sqlite+aiosqlite:///{_settings.database_path}"
_engine = create_async_engine(_db_url, echo=False, poolclass=NullPool)
_async_session = async_sessionmaker(
    _engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

# One lock per event loop (tests and TestClient run their own loops)
_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


@event.listens_for(_engine.sync_engine, "connect")
def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    """Share links cascade with their item; SQLite needs this per connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _db_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _locks.get(loop)
    if lock is None:
        lock = _locks[loop] = asyncio.Lock()
    return lock


def now_unix() -> int:
    """Current time in whole Unix seconds (timestamps are stored at second resolution)."""
    return int(time.time())


async def init_db() -> None:
    """Create tables if they do not exist."""
    async with _db_lock():
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session under the connection lock (context manager).

    Do not open a second session while holding one: the lock is not reentrant.
    """
    async with _db_lock():
        async with _async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async session."""
    async with get_session() as session:
        yield session
