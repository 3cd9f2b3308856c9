"""
Photos router: photo metadata, file serving and deletion.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import get_db
from qrbin.dependencies.auth import ensure_location_member, get_current_actor
from qrbin.dependencies.services import get_photo_store
from qrbin.models.photo import Photo
from qrbin.schemas.photo import PhotoResponse
from qrbin.schemas.user import Actor
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.photo import PhotoService
from qrbin.utils.http_errors import service_errors

router = APIRouter(prefix="/photos", tags=["Photos"])


async def _scoped_photo(db: AsyncSession, service: PhotoService, photo_id: str, actor: Actor) -> Photo:
    with service_errors():
        photo = await service.get(photo_id)
        bin_ = await service.bins.get_any(photo.bin_id)
    await ensure_location_member(db, bin_.location_id, actor)
    return photo


@router.get(
    "/{photo_id}",
    response_model=PhotoResponse,
    summary="Get photo metadata",
)
async def get_photo(
    photo_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> PhotoResponse:
    photo = await _scoped_photo(db, PhotoService(db, store), photo_id, actor)
    return PhotoResponse.model_validate(photo)


@router.get(
    "/{photo_id}/file",
    summary="Download the photo file",
)
async def get_photo_file(
    photo_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> Response:
    """
    Stream the image bytes.

    A row whose file is missing answers 404 (logged), never 500.
    """
    service = PhotoService(db, store)
    photo = await _scoped_photo(db, service, photo_id, actor)
    with service_errors():
        content = service.read(photo)
    return Response(
        content=content,
        media_type=photo.mime_type or "application/octet-stream",
        headers={"Cache-Control": "private, max-age=60"},
    )


@router.delete(
    "/{photo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a photo",
)
async def delete_photo(
    photo_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> Response:
    """Delete the photo row; the file is removed after commit."""
    service = PhotoService(db, store)
    await _scoped_photo(db, service, photo_id, actor)
    with service_errors():
        await service.delete(photo_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
