"""
Service-level dependencies (overridable in tests).
"""
from qrbin.services.blob_store import LocalBlobStore, get_blob_store
from qrbin.services.trash_purge import TrashPurger


def get_photo_store() -> LocalBlobStore:
    """Blob store used by request handlers."""
    return get_blob_store()


def get_trash_purger() -> TrashPurger:
    """Purger used by the background sweep scheduled on trash listing."""
    return TrashPurger(blob_store=get_blob_store())
