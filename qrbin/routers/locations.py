"""
Locations router: locations, members, areas, trash and snapshots.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import get_db
from qrbin.dependencies.auth import ensure_location_member, get_current_actor
from qrbin.dependencies.services import get_photo_store, get_trash_purger
from qrbin.schemas.bin import BinResponse
from qrbin.schemas.location import (
    AreaCreate,
    AreaResponse,
    LocationCreate,
    LocationResponse,
    LocationUpdate,
    MemberAdd,
)
from qrbin.schemas.portability import ImportResult
from qrbin.schemas.user import Actor
from qrbin.services.bin import BinService
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.location import LocationService
from qrbin.services.portability import PortabilityService, snapshot_to_dict
from qrbin.services.trash_purge import TrashPurger, purge_expired_trash
from qrbin.utils.http_errors import service_errors

router = APIRouter(prefix="/locations", tags=["Locations"])


@router.post(
    "",
    response_model=LocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a location",
)
async def create_location(
    data: LocationCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LocationResponse:
    """Create a location. The caller becomes its owner."""
    with service_errors():
        location = await LocationService(db).create(data.name, actor)
    return LocationResponse.model_validate(location)


@router.get(
    "/{location_id}",
    response_model=LocationResponse,
    summary="Get a location",
)
async def get_location(
    location_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LocationResponse:
    await ensure_location_member(db, location_id, actor)
    with service_errors():
        location = await LocationService(db).get(location_id)
    return LocationResponse.model_validate(location)


@router.patch(
    "/{location_id}",
    response_model=LocationResponse,
    summary="Update retention settings",
)
async def update_location(
    location_id: str,
    data: LocationUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LocationResponse:
    """
    Update retention settings.

    - **trash_retention_days**: 7..365
    - **activity_retention_days**: 7..365
    """
    await ensure_location_member(db, location_id, actor)
    with service_errors():
        location = await LocationService(db).update_settings(
            location_id,
            trash_retention_days=data.trash_retention_days,
            activity_retention_days=data.activity_retention_days,
            actor=actor,
        )
    return LocationResponse.model_validate(location)


@router.post(
    "/{location_id}/members",
    status_code=status.HTTP_201_CREATED,
    summary="Add a member",
)
async def add_member(
    location_id: str,
    data: MemberAdd,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, str]:
    await ensure_location_member(db, location_id, actor)
    with service_errors():
        member = await LocationService(db).add_member(location_id, data.user_id)
    return {"location_id": member.location_id, "user_id": member.user_id, "role": member.role}


@router.post(
    "/{location_id}/areas",
    response_model=AreaResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an area",
)
async def create_area(
    location_id: str,
    data: AreaCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> AreaResponse:
    await ensure_location_member(db, location_id, actor)
    with service_errors():
        area = await LocationService(db).create_area(location_id, data.name)
    return AreaResponse.model_validate(area)


@router.get(
    "/{location_id}/trash",
    response_model=List[BinResponse],
    summary="List trashed bins",
)
async def list_trash(
    location_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
    purger: TrashPurger = Depends(get_trash_purger),
) -> List[BinResponse]:
    """
    List trashed bins, most recently deleted first.

    Viewing the trash also schedules a retention sweep for the location
    (runs after the response, never affects it).
    """
    await ensure_location_member(db, location_id, actor)
    service = BinService(db, store)
    bins = await service.list_trash(location_id)
    responses = await service.to_responses(bins)
    # sweep는 별도 세션에서 쓰기를 하므로 이 요청의 읽기 트랜잭션을 먼저 종료
    await db.commit()
    background_tasks.add_task(purge_expired_trash, location_id, purger)
    return responses


@router.get(
    "/{location_id}/export",
    summary="Export bins and photos",
)
async def export_location(
    location_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> JSONResponse:
    """Download a version 2 snapshot with photos embedded as base64."""
    await ensure_location_member(db, location_id, actor)
    with service_errors():
        snapshot = await PortabilityService(db, store).export(location_id)
    return JSONResponse(
        content=snapshot_to_dict(snapshot),
        headers={
            "Content-Disposition": f'attachment; filename="qrbin-export-{location_id}.json"'
        },
    )


@router.post(
    "/{location_id}/import",
    response_model=ImportResult,
    summary="Import a snapshot",
)
async def import_location(
    location_id: str,
    payload: Dict[str, Any] = Body(...),
    mode: Optional[str] = Query(None, description="merge (default) or replace"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    store: LocalBlobStore = Depends(get_photo_store),
) -> ImportResult:
    """
    Import a version 1 or 2 snapshot.

    - **mode=merge**: bins whose id already exists are skipped
    - **mode=replace**: all bins of the location are deleted first

    All-or-nothing: on any error nothing is imported.
    """
    await ensure_location_member(db, location_id, actor)
    effective_mode = mode or payload.get("mode") or "merge"
    with service_errors():
        return await PortabilityService(db, store).import_snapshot(
            location_id, payload, effective_mode, actor
        )
