"""Blob storage: payloads inline in the row or spilled to a file, plus safe path resolution."""

import asyncio
import enum
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, BinaryIO, Optional, Tuple

from clipshare.config import Settings
from clipshare.errors import NotFoundError, StorageError

log = logging.getLogger(__name__)

INLINE_THRESHOLD = 256 * 1024
READ_CHUNK_SIZE = 64 * 1024
UPLOADS_DIRNAME = "uploads"

# Kept extensions: a dot and 1-16 letters/digits ("photo.JPG" -> ".JPG", "a.tar.gz" -> ".gz")
_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,16}$")
# Stored relative paths only ever contain generated names: no traversal, no separators.
_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_.\-]+$")


def _sanitize_segment(segment: str) -> Optional[str]:
    """Return segment if safe, else None. Rejects empty, '..', '.', and invalid chars."""
    segment = segment.strip()
    if not segment or segment in (".", ".."):
        return None
    if not _SAFE_SEGMENT.match(segment):
        return None
    return segment


def upload_extension(file_name: Optional[str]) -> str:
    """Extension of the client's file name to keep on the spilled file ('' if none or unsafe)."""
    if not file_name:
        return ""
    suffix = Path(file_name.replace("\\", "/")).suffix
    return suffix if _SAFE_EXTENSION.match(suffix) else ""


@dataclass
class StoredBlob:
    """Where an upload ended up: exactly one of inline_data / file_path is set."""

    size: int
    inline_data: Optional[bytes] = None
    file_path: Optional[str] = None

    @property
    def on_disk(self) -> bool:
        return self.file_path is not None


class SpillState(enum.Enum):
    BUFFERING = "buffering"
    SPILLED = "spilled"


class SpillBuffer:
    """
    Collects one upload. Bytes stay in memory while the running total is at or
    below the inline threshold; the first chunk that crosses it opens a new file,
    flushes the buffered prefix and switches to writing every later chunk straight
    to disk. BUFFERING -> SPILLED happens at most once.
    """

    def __init__(self, store: "BlobStore", file_name: Optional[str]) -> None:
        self._store = store
        self._file_name = file_name
        self._buffer = bytearray()
        self._fh: Optional[BinaryIO] = None
        self._rel_path: Optional[str] = None
        self.state = SpillState.BUFFERING
        self.size = 0

    async def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        self.size += len(chunk)
        if self.state is SpillState.BUFFERING:
            if self.size <= self._store.inline_threshold:
                self._buffer.extend(chunk)
                return
            await self._spill()
        await self._write_file(chunk)

    async def _spill(self) -> None:
        rel_path, abs_path = self._store.new_upload_path(self._file_name)
        try:
            self._fh = await asyncio.to_thread(open, abs_path, "wb")
        except OSError as e:
            log.error("Could not open upload file %s: %s", abs_path, e)
            raise StorageError("Could not open upload file") from e
        self._rel_path = rel_path
        self.state = SpillState.SPILLED
        prefix = bytes(self._buffer)
        self._buffer = bytearray()
        log.debug("Upload exceeded %d bytes, spilling to %s", self._store.inline_threshold, rel_path)
        if prefix:
            await self._write_file(prefix)

    async def _write_file(self, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._fh.write, data)
        except OSError as e:
            log.error("Write to %s failed: %s", self._rel_path, e)
            raise StorageError("Could not write upload file") from e

    async def finish(self) -> StoredBlob:
        """Classify the finished upload as inline or on-disk."""
        if self.state is SpillState.BUFFERING:
            return StoredBlob(size=self.size, inline_data=bytes(self._buffer))
        fh, self._fh = self._fh, None
        try:
            await asyncio.to_thread(fh.close)
        except OSError as e:
            log.error("Closing %s failed: %s", self._rel_path, e)
            raise StorageError("Could not write upload file") from e
        return StoredBlob(size=self.size, file_path=self._rel_path)

    def abort(self) -> None:
        """Drop buffered bytes and remove a partially written file."""
        self._buffer = bytearray()
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as e:
                log.warning("Closing aborted upload %s failed: %s", self._rel_path, e)
            self._fh = None
        if self._rel_path:
            self._store.delete(self._rel_path)


class BlobStore:
    """Stores, reads and deletes item payloads under data_dir."""

    def __init__(self, data_dir: Path, inline_threshold: int = INLINE_THRESHOLD) -> None:
        self.data_dir = Path(data_dir)
        self.inline_threshold = inline_threshold

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlobStore":
        return cls(settings.data_dir, settings.inline_threshold_bytes)

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / UPLOADS_DIRNAME

    def new_upload_path(self, file_name: Optional[str]) -> Tuple[str, Path]:
        """Return (relative, absolute) path for a new spilled upload with a random name."""
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        name = f"{uuid.uuid4()}{upload_extension(file_name)}"
        return f"{UPLOADS_DIRNAME}/{name}", self.uploads_dir / name

    def resolve(self, file_path: str) -> Path:
        """
        Resolve a stored relative path under data_dir. Rejects traversal and unsafe names.
        file_path uses forward slashes.
        """
        parts = file_path.replace("\\", "/").strip("/").split("/")
        resolved = self.data_dir
        for part in parts:
            safe = _sanitize_segment(part)
            if not safe:
                raise ValueError(f"Unsafe path segment: {part!r}")
            resolved = resolved / safe
        return resolved

    def existing_path(self, file_path: str) -> Path:
        """Absolute path of a spilled payload; NotFoundError if it is gone or unsafe."""
        try:
            target = self.resolve(file_path)
        except ValueError as e:
            raise NotFoundError("File content missing") from e
        if not target.is_file():
            raise NotFoundError("File content missing")
        return target

    async def store(self, file_name: Optional[str], chunks: AsyncIterable[bytes]) -> StoredBlob:
        """
        Consume an upload stream. Small payloads come back inline; anything over the
        threshold is written to uploads/ and only its relative path is returned.
        Raises StorageError on disk failures (the partial file is removed).
        """
        buffer = SpillBuffer(self, file_name)
        try:
            async for chunk in chunks:
                await buffer.write(chunk)
            blob = await buffer.finish()
        except Exception:
            buffer.abort()
            raise
        if blob.on_disk:
            log.info("Stored upload on disk path=%s size=%d", blob.file_path, blob.size)
        return blob

    async def iter_blob(
        self,
        inline_data: Optional[bytes] = None,
        file_path: Optional[str] = None,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Yield the payload at the given location. Raises NotFoundError if nothing is stored."""
        if file_path:
            try:
                target = self.resolve(file_path)
                fh = await asyncio.to_thread(open, target, "rb")
            except (OSError, ValueError) as e:
                log.warning("Blob %s unreadable: %s", file_path, e)
                raise NotFoundError("File content missing") from e
            try:
                while True:
                    chunk = await asyncio.to_thread(fh.read, chunk_size)
                    if not chunk:
                        break
                    yield chunk
            finally:
                fh.close()
            return
        if inline_data is None:
            raise NotFoundError("File content missing")
        yield bytes(inline_data)

    async def read_bytes(
        self, inline_data: Optional[bytes] = None, file_path: Optional[str] = None
    ) -> bytes:
        """Whole payload as bytes (small payloads and tests)."""
        out = bytearray()
        async for chunk in self.iter_blob(inline_data=inline_data, file_path=file_path):
            out.extend(chunk)
        return bytes(out)

    def delete(self, file_path: str) -> bool:
        """
        Remove a spilled payload. Best-effort: failures are logged, never raised,
        so the caller's row deletion is not blocked. Returns True if a file was removed.
        """
        try:
            target = self.resolve(file_path)
            target.unlink()
        except FileNotFoundError:
            log.warning("Blob already gone: %s", file_path)
            return False
        except (OSError, ValueError) as e:
            log.warning("Could not delete blob %s: %s", file_path, e)
            return False
        log.info("Deleted blob %s", file_path)
        return True
