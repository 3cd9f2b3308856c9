"""
Bins router: bin lifecycle and photo upload.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import get_db
from qrbin.dependencies.auth import ensure_location_member, get_current_actor
from qrbin.dependencies.services import get_photo_store
from qrbin.models.bin import Bin
from qrbin.schemas.bin import AddTagsRequest, BinCreate, BinResponse, BinUpdate
from qrbin.schemas.photo import PhotoResponse, PhotoUploadResponse
from qrbin.schemas.user import Actor
from qrbin.services.bin import BinService
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.photo import PhotoService
from qrbin.utils.http_errors import service_errors

router = APIRouter(prefix="/bins", tags=["Bins"])


async def _scoped_bin(db: AsyncSession, service: BinService, bin_id: str, actor: Actor) -> Bin:
    """Load a bin in any state and check the caller's membership."""
    with service_errors():
        bin_ = await service.get_any(bin_id)
    await ensure_location_member(db, bin_.location_id, actor)
    return bin_


@router.post(
    "",
    response_model=BinResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a bin",
)
async def create_bin(
    data: BinCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    """
    Create a bin with a new short code.

    - **short_code**: optional; tried first if it is a valid code (e.g. a reprinted label)
    """
    await ensure_location_member(db, data.location_id, actor)
    service = BinService(db, store)
    with service_errors():
        bin_ = await service.create(data.location_id, data, actor)
    return await service.to_response(bin_)


@router.get(
    "",
    response_model=List[BinResponse],
    summary="List bins of a location",
)
async def list_bins(
    location_id: str = Query(...),
    q: Optional[str] = Query(None, description="Search name, items, notes and tags"),
    tag: Optional[str] = Query(None),
    area_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> List[BinResponse]:
    """Active bins, most recently updated first."""
    await ensure_location_member(db, location_id, actor)
    service = BinService(db, store)
    bins = await service.list(location_id, q=q, tag=tag, area_id=area_id)
    return await service.to_responses(bins)


@router.get(
    "/lookup/{code}",
    response_model=BinResponse,
    summary="Find a bin by short code",
)
async def lookup_bin(
    code: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    """Case-insensitive lookup among the caller's locations."""
    service = BinService(db, store)
    with service_errors():
        bin_ = await service.lookup(code, actor.user_id)
    return await service.to_response(bin_)


@router.get(
    "/{bin_id}",
    response_model=BinResponse,
    summary="Get a bin",
)
async def get_bin(
    bin_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    service = BinService(db, store)
    await _scoped_bin(db, service, bin_id, actor)
    with service_errors():
        bin_ = await service.get(bin_id)
    return await service.to_response(bin_)


@router.put(
    "/{bin_id}",
    response_model=BinResponse,
    summary="Update a bin",
)
async def update_bin(
    bin_id: str,
    data: BinUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    """Apply only the supplied fields. Trashed bins cannot be updated."""
    service = BinService(db, store)
    await _scoped_bin(db, service, bin_id, actor)
    with service_errors():
        bin_ = await service.update(bin_id, data, actor)
    return await service.to_response(bin_)


@router.delete(
    "/{bin_id}",
    response_model=BinResponse,
    summary="Move a bin to the trash",
)
async def delete_bin(
    bin_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    service = BinService(db, store)
    await _scoped_bin(db, service, bin_id, actor)
    with service_errors():
        bin_ = await service.soft_delete(bin_id, actor)
    return await service.to_response(bin_)


@router.post(
    "/{bin_id}/restore",
    response_model=BinResponse,
    summary="Restore a bin from the trash",
)
async def restore_bin(
    bin_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    service = BinService(db, store)
    await _scoped_bin(db, service, bin_id, actor)
    with service_errors():
        bin_ = await service.restore(bin_id, actor)
    return await service.to_response(bin_)


@router.delete(
    "/{bin_id}/permanent",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Permanently delete a trashed bin",
)
async def permanent_delete_bin(
    bin_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> Response:
    """Only bins already in the trash can be permanently deleted."""
    service = BinService(db, store)
    await _scoped_bin(db, service, bin_id, actor)
    with service_errors():
        await service.permanent_delete(bin_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/{bin_id}/add-tags",
    response_model=BinResponse,
    summary="Add tags to a bin",
)
async def add_tags(
    bin_id: str,
    data: AddTagsRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> BinResponse:
    service = BinService(db, store)
    await _scoped_bin(db, service, bin_id, actor)
    with service_errors():
        bin_ = await service.add_tags(bin_id, data.tags, actor)
    return await service.to_response(bin_)


@router.post(
    "/{bin_id}/photos",
    response_model=PhotoUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a photo",
)
async def upload_photo(
    bin_id: str,
    file: UploadFile = File(..., description="Photo file to upload"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> PhotoUploadResponse:
    """
    Upload a photo to an active bin.

    - JPEG, PNG, WebP or GIF
    - At most 5MB
    """
    service = PhotoService(db, store)
    await _scoped_bin(db, service.bins, bin_id, actor)
    content = await file.read()
    with service_errors():
        photo = await service.upload(
            bin_id,
            file.filename or "photo",
            file.content_type or "application/octet-stream",
            content,
            actor,
        )
    return PhotoUploadResponse.model_validate(photo)


@router.get(
    "/{bin_id}/photos",
    response_model=List[PhotoResponse],
    summary="List photos of a bin",
)
async def list_photos(
    bin_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> List[PhotoResponse]:
    service = PhotoService(db, store)
    await _scoped_bin(db, service.bins, bin_id, actor)
    with service_errors():
        photos = await service.list_for_bin(bin_id)
    return [PhotoResponse.model_validate(p) for p in photos]
