"""
Local filesystem storage for photo files.

Layout: {root}/{bin_id}/{filename}. The DB is authoritative; the store is a
subordinate cache, so deletes are no-ops on missing targets and never raise.
"""
import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from qrbin.config import get_settings
from qrbin.utils.prometheus_metrics import storage_missing_files_total

logger = logging.getLogger("qrbin.storage")


class StoragePathError(ValueError):
    """Storage path resolves outside the storage root."""


@contextmanager
def best_effort(action: str, **ctx) -> Iterator[None]:
    """
    Non-propagating error boundary for disk cleanup.

    Any exception raised inside the block is logged and swallowed.

    Usage:
        with best_effort("delete_file", path=storage_path):
            os.remove(full_path)
    """
    try:
        yield
    except Exception as e:
        logger.error(
            "Storage cleanup failed",
            extra={
                "event": "storage",
                "action": action,
                "error_type": type(e).__name__,
                "error": str(e)[:200],
                **ctx,
            },
        )


class LocalBlobStore:
    """
    Photo file store keyed by bin id.

    storage_path values are relative ("<bin_id>/<filename>") so the root can
    move without touching rows.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, relative: str) -> Path:
        full = (self.root / relative).resolve()
        if full != self.root and self.root not in full.parents:
            raise StoragePathError(f"Path outside storage root: {relative}")
        return full

    def put(self, bin_id: str, filename: str, data: bytes) -> str:
        """
        Write a file under the bin's directory (created on first write).

        Returns:
            storage_path relative to the root
        """
        storage_path = f"{bin_id}/{filename}"
        full = self._resolve(storage_path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)
        return storage_path

    def read(self, storage_path: str) -> Optional[bytes]:
        """Return file content, or None if the file is missing."""
        full = self._resolve(storage_path)
        try:
            return full.read_bytes()
        except FileNotFoundError:
            storage_missing_files_total.inc()
            logger.warning(
                "Photo file missing",
                extra={"event": "storage", "storage_path": storage_path},
            )
            return None

    def exists(self, storage_path: str) -> bool:
        return self._resolve(storage_path).is_file()

    def delete(self, storage_path: str) -> None:
        """Delete one file. Missing files and errors are ignored (logged)."""
        with best_effort("delete_file", storage_path=storage_path):
            self._resolve(storage_path).unlink(missing_ok=True)

    def delete_container(self, bin_id: str) -> None:
        """Delete a bin's directory and anything left in it."""
        with best_effort("delete_container", bin_id=bin_id):
            directory = self._resolve(bin_id)
            if directory == self.root:
                raise StoragePathError("Refusing to delete storage root")
            if directory.exists():
                shutil.rmtree(directory)


# Singleton instance
_blob_store: Optional[LocalBlobStore] = None


def get_blob_store() -> LocalBlobStore:
    """Get the singleton blob store rooted at settings.photo_storage_path."""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore(get_settings().photo_storage_path)
    return _blob_store
