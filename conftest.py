"""Pytest configuration: set test env before any app imports so DB, storage and JWT use test values."""

import asyncio
import os
import tempfile

import pytest

# Set before clipshare.db.session or clipshare.config are used so engine and settings use test paths
_tmp = tempfile.mkdtemp(prefix="clipshare_test_")
os.environ.setdefault("CLIPSHARE_DATA_DIR", _tmp)
os.environ.setdefault("CLIPSHARE_PASSWORD", "test-shared-password")
os.environ.setdefault("CLIPSHARE_JWT_SECRET", "test-jwt-secret-at-least-32-characters-long")
os.environ.setdefault("CLIPSHARE_RATE_LIMIT_ENABLED", "false")


@pytest.fixture(scope="session")
def init_test_db():
    """Create tables once per test session."""
    from clipshare.db.session import init_db
    from clipshare.items.models import ClipboardItem  # noqa: F401 - register with Base
    from clipshare.shares.models import ShareLink  # noqa: F401 - register with Base

    asyncio.run(init_db())


async def _wipe() -> None:
    from sqlalchemy import delete

    from clipshare.db.session import get_session
    from clipshare.items.models import ClipboardItem
    from clipshare.shares.models import ShareLink

    async with get_session() as session:
        await session.execute(delete(ShareLink))
        await session.execute(delete(ClipboardItem))


@pytest.fixture
def session_factory(init_test_db):
    """Empty tables, then yield get_session so tests can use async with session_factory() as session."""
    from clipshare.db.session import get_session

    asyncio.run(_wipe())
    return get_session


@pytest.fixture
def blob_store(tmp_path):
    """Blob store under a per-test directory with a small inline threshold."""
    from clipshare.files.storage import BlobStore

    return BlobStore(tmp_path, inline_threshold=1024)
