"""
Legacy import router.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import get_db
from qrbin.dependencies.auth import ensure_location_member, get_current_actor
from qrbin.dependencies.services import get_photo_store
from qrbin.schemas.portability import ImportResult, LegacyImportRequest
from qrbin.schemas.user import Actor
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.portability import PortabilityService
from qrbin.utils.http_errors import service_errors

router = APIRouter(tags=["Import"])


@router.post(
    "/import/legacy",
    response_model=ImportResult,
    summary="Import legacy (version 1) data",
)
async def import_legacy(
    request: LegacyImportRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> ImportResult:
    """
    Merge-import data exported by older app versions.

    Body: `{"locationId": "...", "data": {"bins": [...], "photos": [...]}}`
    """
    await ensure_location_member(db, request.location_id, actor)
    with service_errors():
        return await PortabilityService(db, store).import_legacy(
            request.location_id, request.data, actor
        )
