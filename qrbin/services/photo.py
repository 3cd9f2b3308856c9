"""
Photo service for bin photos.
Files are stored through the blob store; the photo row is authoritative.
"""
import logging
import mimetypes
import os
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.config import get_settings
from qrbin.database import run_after_commit
from qrbin.errors import NotFoundError, ValidationError
from qrbin.models.bin import Bin
from qrbin.models.photo import Photo
from qrbin.schemas.user import Actor
from qrbin.services.activity import record_activity
from qrbin.services.bin import BinService, next_updated_at
from qrbin.services.blob_store import LocalBlobStore, best_effort, get_blob_store
from qrbin.utils.prometheus_metrics import photo_upload_total

logger = logging.getLogger("qrbin.photo")

settings = get_settings()

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})


def photo_file_name(photo_id: str, filename: str, mime_type: str) -> str:
    """Stored file name: "<photo_id><ext>", extension from the original name or the MIME type."""
    ext = os.path.splitext(filename or "")[1].lower()
    if not ext:
        ext = mimetypes.guess_extension(mime_type or "") or ".jpg"
    return f"{photo_id}{ext}"


class PhotoService:
    """
    Service for handling photo operations.
    """

    def __init__(self, db: AsyncSession, blob_store: Optional[LocalBlobStore] = None):
        self.db = db
        self.blob_store = blob_store or get_blob_store()
        self.bins = BinService(db, self.blob_store)

    async def upload(
        self,
        bin_id: str,
        filename: str,
        content_type: str,
        data: bytes,
        actor: Actor,
    ) -> Photo:
        """
        Store a photo file and insert its row.

        Args:
            bin_id: Active bin the photo belongs to
            filename: Original filename
            content_type: MIME type (JPEG, PNG, WebP or GIF)
            data: File content
            actor: Uploader

        Returns:
            Created Photo model

        Raises:
            NotFoundError: If the bin does not exist or is in the trash
            ValidationError: On unsupported type, empty or oversized file
        """
        bin_ = await self.bins.get(bin_id)

        if content_type not in ALLOWED_MIME_TYPES:
            photo_upload_total.labels(result="rejected").inc()
            raise ValidationError("Only JPEG, PNG, WebP and GIF images are allowed")
        if not data:
            photo_upload_total.labels(result="rejected").inc()
            raise ValidationError("Empty file")
        if len(data) > settings.max_photo_size_bytes:
            photo_upload_total.labels(result="rejected").inc()
            raise ValidationError(
                f"File too large (max {settings.max_photo_size_bytes // (1024 * 1024)}MB)"
            )

        photo_id = str(uuid.uuid4())
        storage_path = self.blob_store.put(
            bin_id, photo_file_name(photo_id, filename, content_type), data
        )

        try:
            photo = Photo(
                id=photo_id,
                bin_id=bin_id,
                filename=filename or "photo",
                mime_type=content_type,
                size=len(data),
                storage_path=storage_path,
                created_by=actor.user_id,
            )
            self.db.add(photo)
            bin_.updated_at = next_updated_at(bin_.updated_at)
            await self.db.flush()
        except Exception:
            # 행 저장 실패 시 방금 쓴 파일 제거 (DB에 없는 파일은 의미 없음)
            with best_effort("discard_upload", storage_path=storage_path):
                self.blob_store.delete(storage_path)
            photo_upload_total.labels(result="error").inc()
            raise

        await record_activity(
            self.db, bin_.location_id, actor, "add_photo", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
        )
        photo_upload_total.labels(result="success").inc()
        logger.info("Photo uploaded", extra={"event": "photo", "photo_id": photo.id, "bin_id": bin_id})
        return photo

    async def list_for_bin(self, bin_id: str) -> List[Photo]:
        """List photos of an active bin, oldest first."""
        await self.bins.get(bin_id)
        result = await self.db.execute(
            select(Photo).where(Photo.bin_id == bin_id).order_by(Photo.created_at, Photo.id)
        )
        return list(result.scalars().all())

    async def get(self, photo_id: str) -> Photo:
        """
        Get a photo whose bin is active.

        Raises:
            NotFoundError: If the photo does not exist or its bin is in the trash
        """
        result = await self.db.execute(
            select(Photo)
            .join(Bin, Bin.id == Photo.bin_id)
            .where(Photo.id == photo_id, Bin.deleted_at.is_(None))
        )
        photo = result.scalar_one_or_none()
        if photo is None:
            raise NotFoundError("Photo not found")
        return photo

    def read(self, photo: Photo) -> bytes:
        """
        Read the photo file.

        Raises:
            NotFoundError: If the file is missing (the row stays; it is just not servable)
        """
        content = self.blob_store.read(photo.storage_path)
        if content is None:
            raise NotFoundError("Photo file not found")
        return content

    async def delete(self, photo_id: str, actor: Actor) -> None:
        """
        Delete a photo row; the file is removed after commit.

        Raises:
            NotFoundError: If the photo does not exist or its bin is in the trash
        """
        photo = await self.get(photo_id)
        bin_ = await self.bins.get(photo.bin_id)
        storage_path = photo.storage_path

        await self.db.delete(photo)
        bin_.updated_at = next_updated_at(bin_.updated_at)
        await self.db.flush()

        blob_store = self.blob_store
        run_after_commit(self.db, lambda: blob_store.delete(storage_path))

        await record_activity(
            self.db, bin_.location_id, actor, "delete_photo", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
        )
