"""
Export and import of location snapshots.

Export: version 2 snapshot of active bins with photos embedded as base64.
Import: version 1 or 2 snapshot, merge or replace, all-or-nothing.

Import runs in three phases:
1. parse + normalize the payload (no side effects; bad input raises ValidationError)
2. write rows and files inside one SAVEPOINT
3. on failure: roll back, delete files written by this call, drop queued cleanup
"""
import base64
import binascii
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import discard_after_commit, pending_after_commit, run_after_commit
from qrbin.errors import NotFoundError, ValidationError
from qrbin.models.bin import Bin
from qrbin.models.location import Area, Location
from qrbin.models.photo import Photo
from qrbin.schemas.portability import (
    ImportMode,
    ImportResult,
    Snapshot,
    SnapshotBin,
    SnapshotPhoto,
)
from qrbin.schemas.user import Actor
from qrbin.services.activity import record_activity
from qrbin.services.bin import BinService, check_bin_limits, normalize_tags
from qrbin.services.blob_store import LocalBlobStore, get_blob_store
from qrbin.services.photo import photo_file_name
from qrbin.utils.logger import log_error, log_info, log_warning
from qrbin.utils.prometheus_metrics import (
    export_requests_total,
    import_bins_total,
    import_requests_total,
)
from qrbin.utils.timeutil import parse_iso8601, to_iso8601, utcnow

SNAPSHOT_VERSION = 2

# 외부에서 온 id는 이 형식일 때만 유지 (경로 조작 방지: bin id가 디렉터리 이름이 됨)
_EXTERNAL_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass
class PendingPhoto:
    """Decoded photo waiting to be written."""

    id: Optional[str]
    filename: str
    mime_type: str
    content: bytes


@dataclass
class PendingBin:
    """Normalized bin entry waiting to be inserted."""

    id: Optional[str]
    name: str
    area_id: Optional[str]
    items: List[str]
    notes: str
    tags: List[str]
    icon: str
    color: str
    short_code: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    photos: List[PendingPhoto] = field(default_factory=list)


@dataclass
class ParsedSnapshot:
    """Normalized import batch."""

    bins: List[PendingBin]
    # version 1 top-level photos whose bin is not in this batch, keyed by bin id
    loose_photos: Dict[str, List[PendingPhoto]]


def _valid_external_id(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value if _EXTERNAL_ID_RE.match(value) else None


def decode_photo_data(data: str) -> bytes:
    """
    Decode a base64 payload (a data URL prefix is allowed).

    Raises:
        ValidationError: If the payload is not valid base64
    """
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Photo data is not valid base64")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    try:
        return parse_iso8601(value)
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {value}")


def split_contents(contents: Optional[str]) -> List[str]:
    """Version 1 "contents" text to items: one per line, trimmed, blanks dropped."""
    if not contents:
        return []
    return [line.strip() for line in contents.split("\n") if line.strip()]


def _pending_photo(photo: SnapshotPhoto) -> PendingPhoto:
    return PendingPhoto(
        id=photo.id,
        filename=photo.filename,
        mime_type=photo.mime_type,
        content=decode_photo_data(photo.data),
    )


def _normalize_bin(entry: SnapshotBin) -> PendingBin:
    items = entry.items
    if items is None or (not items and entry.contents):
        items = split_contents(entry.contents)
    tags = normalize_tags(entry.tags)
    notes = entry.notes or ""
    check_bin_limits(name=entry.name, items=items, notes=notes, tags=tags)

    return PendingBin(
        id=entry.id,
        name=entry.name.strip(),
        area_id=entry.area_id,
        items=list(items),
        notes=notes,
        tags=tags,
        icon=entry.icon,
        color=entry.color,
        short_code=entry.short_code,
        created_at=_parse_time(entry.created_at),
        updated_at=_parse_time(entry.updated_at),
        photos=[_pending_photo(p) for p in entry.photos],
    )


def parse_snapshot(payload: Any) -> ParsedSnapshot:
    """
    Validate and normalize a version 1 or 2 snapshot.

    Version 1 top-level photos are attached to their bin when it is in the
    batch; the rest are returned in loose_photos.

    Raises:
        ValidationError: If the payload is malformed (nothing has been written yet)
    """
    if not isinstance(payload, dict):
        raise ValidationError("Snapshot must be a JSON object")
    try:
        snapshot = Snapshot.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid snapshot: {location}: {first['msg']}")

    bins = [_normalize_bin(entry) for entry in snapshot.bins]
    by_id = {b.id: b for b in bins if b.id}

    loose: Dict[str, List[PendingPhoto]] = {}
    for legacy in snapshot.photos:
        photo = PendingPhoto(
            id=legacy.id,
            filename=legacy.filename,
            mime_type=legacy.mime_type,
            content=decode_photo_data(legacy.data_base64),
        )
        target = by_id.get(legacy.bin_id)
        if target is not None:
            target.photos.append(photo)
        else:
            loose.setdefault(legacy.bin_id, []).append(photo)

    return ParsedSnapshot(bins=bins, loose_photos=loose)


class PortabilityService:
    """
    Service for location export and import.
    """

    def __init__(self, db: AsyncSession, blob_store: Optional[LocalBlobStore] = None):
        self.db = db
        self.blob_store = blob_store or get_blob_store()
        self.bins = BinService(db, self.blob_store)

    async def _get_location(self, location_id: str) -> Location:
        location = await self.db.get(Location, location_id)
        if location is None:
            raise NotFoundError("Location not found")
        return location

    # ============== Export ==============

    async def export(self, location_id: str) -> Snapshot:
        """
        Export active bins with their photos.

        Photos whose file is missing are omitted (logged by the blob store).

        Raises:
            NotFoundError: If the location does not exist
        """
        location = await self._get_location(location_id)
        bins = await self.bins.list(location_id)

        photos_by_bin: Dict[str, List[Photo]] = {}
        if bins:
            result = await self.db.execute(
                select(Photo)
                .where(Photo.bin_id.in_([b.id for b in bins]))
                .order_by(Photo.created_at, Photo.id)
            )
            for photo in result.scalars().all():
                photos_by_bin.setdefault(photo.bin_id, []).append(photo)

        omitted = 0
        entries: List[SnapshotBin] = []
        for bin_ in bins:
            photos: List[SnapshotPhoto] = []
            for photo in photos_by_bin.get(bin_.id, []):
                content = self.blob_store.read(photo.storage_path)
                if content is None:
                    omitted += 1
                    continue
                photos.append(
                    SnapshotPhoto(
                        id=photo.id,
                        filename=photo.filename,
                        mime_type=photo.mime_type,
                        data=base64.b64encode(content).decode("ascii"),
                    )
                )
            entries.append(
                SnapshotBin(
                    id=bin_.id,
                    name=bin_.name,
                    area_id=bin_.area_id,
                    items=list(bin_.items),
                    notes=bin_.notes,
                    tags=list(bin_.tags),
                    icon=bin_.icon,
                    color=bin_.color,
                    short_code=bin_.short_code,
                    created_at=to_iso8601(bin_.created_at),
                    updated_at=to_iso8601(bin_.updated_at),
                    photos=photos,
                )
            )

        if omitted:
            log_warning(
                "Export omitted photos with missing files",
                event="storage",
                location_id=location_id,
                omitted=omitted,
            )
        export_requests_total.labels(result="success").inc()
        return Snapshot(
            version=SNAPSHOT_VERSION,
            exported_at=to_iso8601(utcnow()),
            location_name=location.name,
            bins=entries,
        )

    # ============== Import ==============

    async def import_snapshot(
        self,
        location_id: str,
        payload: Any,
        mode: str,
        actor: Actor,
    ) -> ImportResult:
        """
        Import a snapshot into a location.

        - replace: delete every bin of the location (active and trashed) first
        - merge: skip bins (and photos) whose id already exists

        Args:
            location_id: Target location
            payload: Decoded JSON snapshot (version 1 or 2)
            mode: "merge" or "replace"
            actor: Caller, recorded as created_by

        Returns:
            ImportResult counters

        Raises:
            ValidationError: On malformed input (before any change)
            NotFoundError: If the location does not exist
            ConflictExhaustedError: If a bin could not get a short code (all changes rolled back)
        """
        try:
            import_mode = ImportMode(mode)
        except ValueError:
            raise ValidationError("mode must be 'merge' or 'replace'")

        parsed = parse_snapshot(payload)
        location = await self._get_location(location_id)

        result = ImportResult()
        written: List[str] = []
        marker = pending_after_commit(self.db)

        try:
            async with self.db.begin_nested():
                reused_ids: Set[str] = set()
                if import_mode is ImportMode.REPLACE:
                    await self._delete_location_bins(location_id, reused_ids)

                area_ids = await self._location_area_ids(location_id)
                for pending in parsed.bins:
                    bin_id = await self._import_bin(
                        location_id, pending, import_mode, actor, area_ids, written, result
                    )
                    if bin_id is not None:
                        reused_ids.add(bin_id)

                await self._import_loose_photos(
                    location_id, parsed.loose_photos, import_mode, actor, written, result
                )
        except Exception as e:
            discard_after_commit(self.db, marker)
            for path in written:
                self.blob_store.delete(path)
            import_requests_total.labels(mode=import_mode.value, result="error").inc()
            log_error(
                "Import failed, rolled back",
                event="portability",
                location_id=location_id,
                mode=import_mode.value,
                error_type=type(e).__name__,
                error=str(e)[:200],
            )
            raise

        await record_activity(
            self.db, location_id, actor, "import", "location",
            entity_id=location_id, entity_name=location.name,
            changes={"mode": import_mode.value, **result.model_dump(by_alias=True)},
        )
        import_bins_total.labels(outcome="imported").inc(result.bins_imported)
        import_bins_total.labels(outcome="skipped").inc(result.bins_skipped)
        import_requests_total.labels(mode=import_mode.value, result="success").inc()
        log_info(
            "Import finished",
            event="portability",
            location_id=location_id,
            mode=import_mode.value,
            **result.model_dump(),
        )
        return result

    async def import_legacy(self, location_id: str, payload: Any, actor: Actor) -> ImportResult:
        """Merge-mode import of version 1 (or 2) data, for the legacy endpoint."""
        return await self.import_snapshot(location_id, payload, ImportMode.MERGE.value, actor)

    async def _location_area_ids(self, location_id: str) -> Set[str]:
        result = await self.db.execute(select(Area.id).where(Area.location_id == location_id))
        return set(result.scalars().all())

    async def _bin_exists(self, bin_id: str) -> bool:
        result = await self.db.execute(select(Bin.id).where(Bin.id == bin_id))
        return result.first() is not None

    async def _photo_exists(self, photo_id: str) -> bool:
        result = await self.db.execute(select(Photo.id).where(Photo.id == photo_id))
        return result.first() is not None

    def _forget(self, bin_ids: Set[str]) -> None:
        """Detach loaded Bin/Photo objects whose rows were bulk-deleted."""
        for obj in list(self.db.identity_map.values()):
            # state.dict: 만료된 속성에 접근해도 lazy load가 일어나지 않도록
            loaded = inspect(obj).dict
            if isinstance(obj, Bin) and loaded.get("id") in bin_ids:
                self.db.expunge(obj)
            elif isinstance(obj, Photo) and loaded.get("bin_id") in bin_ids:
                self.db.expunge(obj)

    async def _delete_location_bins(self, location_id: str, reused_ids: Set[str]) -> None:
        """
        Delete all bins of a location (photo rows cascade).
        Files are removed after commit, except directories of re-imported bin ids.
        """
        ids_result = await self.db.execute(select(Bin.id).where(Bin.location_id == location_id))
        old_ids = set(ids_result.scalars().all())
        if not old_ids:
            return

        paths_result = await self.db.execute(
            select(Photo.storage_path).where(Photo.bin_id.in_(old_ids))
        )
        old_paths = list(paths_result.scalars().all())

        await self.db.execute(
            delete(Bin)
            .where(Bin.location_id == location_id)
            .execution_options(synchronize_session=False)
        )
        self._forget(old_ids)

        blob_store = self.blob_store

        def _cleanup_files() -> None:
            for path in old_paths:
                blob_store.delete(path)
            # 같은 id로 다시 들어온 bin의 디렉터리는 새 파일이 있으므로 유지
            for bin_id in old_ids - reused_ids:
                blob_store.delete_container(bin_id)

        run_after_commit(self.db, _cleanup_files)
        log_info(
            "Replace import removed existing bins",
            event="portability",
            location_id=location_id,
            bins=len(old_ids),
            photos=len(old_paths),
        )

    async def _import_bin(
        self,
        location_id: str,
        pending: PendingBin,
        mode: ImportMode,
        actor: Actor,
        area_ids: Set[str],
        written: List[str],
        result: ImportResult,
    ) -> Optional[str]:
        """Insert one bin with its photos. Returns the bin id, or None if skipped."""
        bin_id = _valid_external_id(pending.id)
        if bin_id is not None and await self._bin_exists(bin_id):
            if mode is ImportMode.MERGE:
                result.bins_skipped += 1
                result.photos_skipped += len(pending.photos)
                return None
            bin_id = None
        if bin_id is None:
            bin_id = str(uuid.uuid4())

        now = utcnow()
        created_at = pending.created_at or now
        await self.bins.insert_with_short_code(
            {
                "id": bin_id,
                "location_id": location_id,
                "area_id": pending.area_id if pending.area_id in area_ids else None,
                "name": pending.name,
                "items": pending.items,
                "notes": pending.notes,
                "tags": pending.tags,
                "icon": pending.icon,
                "color": pending.color,
                "created_by": actor.user_id,
                "created_at": created_at,
                "updated_at": pending.updated_at or created_at,
            },
            preferred_code=pending.short_code,
        )
        result.bins_imported += 1

        for photo in pending.photos:
            await self._import_photo(bin_id, photo, mode, actor, written, result)
        return bin_id

    async def _import_photo(
        self,
        bin_id: str,
        photo: PendingPhoto,
        mode: ImportMode,
        actor: Actor,
        written: List[str],
        result: ImportResult,
    ) -> None:
        photo_id = _valid_external_id(photo.id)
        if photo_id is not None and await self._photo_exists(photo_id):
            if mode is ImportMode.MERGE:
                result.photos_skipped += 1
                return
            photo_id = None
        if photo_id is None:
            photo_id = str(uuid.uuid4())

        # 파일 이름은 항상 새로 생성 (교체 import 시 기존 파일과 겹치지 않도록)
        storage_path = self.blob_store.put(
            bin_id, photo_file_name(uuid.uuid4().hex, photo.filename, photo.mime_type), photo.content
        )
        written.append(storage_path)

        self.db.add(
            Photo(
                id=photo_id,
                bin_id=bin_id,
                filename=photo.filename,
                mime_type=photo.mime_type,
                size=len(photo.content),
                storage_path=storage_path,
                created_by=actor.user_id,
            )
        )
        await self.db.flush()
        result.photos_imported += 1

    async def _import_loose_photos(
        self,
        location_id: str,
        loose_photos: Dict[str, List[PendingPhoto]],
        mode: ImportMode,
        actor: Actor,
        written: List[str],
        result: ImportResult,
    ) -> None:
        """Attach version 1 photos to bins already in the location; the rest are orphans."""
        if not loose_photos:
            return

        existing = await self.db.execute(
            select(Bin.id).where(Bin.id.in_(list(loose_photos)), Bin.location_id == location_id)
        )
        existing_ids = set(existing.scalars().all())

        orphans = 0
        for bin_id, photos in loose_photos.items():
            if bin_id not in existing_ids:
                orphans += len(photos)
                continue
            for photo in photos:
                await self._import_photo(bin_id, photo, mode, actor, written, result)

        if orphans:
            result.photos_skipped += orphans
            log_warning(
                "Skipped photos referencing unknown bins",
                event="portability",
                location_id=location_id,
                orphans=orphans,
            )


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    """Wire form of a snapshot (camelCase keys, optional empty fields dropped)."""
    return snapshot.model_dump(by_alias=True, exclude_none=True)

