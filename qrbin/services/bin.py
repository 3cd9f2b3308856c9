"""
Bin service: bin lifecycle and short code issuance.

State machine (BinState):
    ACTIVE --soft_delete--> TRASHED
    TRASHED --restore--> ACTIVE
    TRASHED --permanent_delete / retention sweep--> (row gone)

update/add_tags only act on ACTIVE bins. Every transition checks the current
state first and raises NotFoundError when the bin is absent or in the wrong state.
Callers are expected to have checked location membership.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.database import run_after_commit
from qrbin.errors import ConflictExhaustedError, NotFoundError, ValidationError
from qrbin.models.bin import Bin, BinState
from qrbin.models.location import Area, Location, LocationMember
from qrbin.models.photo import Photo
from qrbin.schemas.bin import BinCreate, BinResponse, BinUpdate
from qrbin.schemas.user import Actor
from qrbin.services.activity import compute_changes, record_activity
from qrbin.services.blob_store import LocalBlobStore, get_blob_store
from qrbin.utils.logger import log_info, log_warning
from qrbin.utils.prometheus_metrics import bin_operations_total, short_code_collisions_total
from qrbin.utils.short_code import MAX_SHORT_CODE_ATTEMPTS, candidate_codes, normalize_short_code
from qrbin.utils.timeutil import utcnow

MAX_NAME_LENGTH = 255
MAX_ITEMS = 500
MAX_TAGS = 50
MAX_NOTES_LENGTH = 10_000

_TRACKED_FIELDS = ("name", "area_id", "items", "notes", "tags", "icon", "color")


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Trim and lower-case tags, drop blanks, keep first occurrence order."""
    result: List[str] = []
    for tag in tags:
        normalized = tag.strip().lower()
        if normalized and normalized not in result:
            result.append(normalized)
    return result


def check_bin_limits(
    name: Optional[str] = None,
    items: Optional[List[str]] = None,
    notes: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> None:
    """
    Validate bin field sizes. Only non-None arguments are checked.

    Raises:
        ValidationError: If any limit is exceeded
    """
    if name is not None:
        if not name.strip():
            raise ValidationError("Bin name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Bin name must be at most {MAX_NAME_LENGTH} characters")
    if items is not None and len(items) > MAX_ITEMS:
        raise ValidationError(f"A bin can hold at most {MAX_ITEMS} items")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Notes must be at most {MAX_NOTES_LENGTH} characters")
    if tags is not None and len(tags) > MAX_TAGS:
        raise ValidationError(f"A bin can have at most {MAX_TAGS} tags")


def next_updated_at(previous: Optional[datetime]) -> datetime:
    """Current time, bumped past `previous` so updated_at strictly increases."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def _is_short_code_conflict(error: IntegrityError) -> bool:
    # SQLite: "UNIQUE constraint failed: bins.short_code"
    # PostgreSQL: duplicate key value violates unique constraint "bins_short_code_key"
    return "short_code" in str(error.orig)


class BinService:
    """
    Service for bin lifecycle operations.
    Services only flush; the caller (request or background context) commits.
    """

    def __init__(self, db: AsyncSession, blob_store: Optional[LocalBlobStore] = None):
        self.db = db
        self.blob_store = blob_store or get_blob_store()

    # ============== Short code issuance ==============

    async def insert_with_short_code(
        self,
        values: Dict[str, Any],
        preferred_code: Optional[str] = None,
    ) -> Bin:
        """
        Insert a bin, retrying with fresh short codes on unique conflicts.

        Each attempt runs in its own SAVEPOINT so a conflict leaves the
        surrounding transaction usable.

        Args:
            values: Bin column values (must include id)
            preferred_code: Code to try first (e.g. from an imported backup)

        Returns:
            The persisted Bin

        Raises:
            ConflictExhaustedError: If every candidate collided
        """
        for code in candidate_codes(preferred_code):
            bin_ = Bin(**values, short_code=code)
            try:
                async with self.db.begin_nested():
                    self.db.add(bin_)
                    await self.db.flush()
                return bin_
            except IntegrityError as e:
                if not _is_short_code_conflict(e):
                    raise
                short_code_collisions_total.inc()
                log_warning("Short code collision, retrying", event="bin", bin_id=values["id"])

        bin_operations_total.labels(operation="create", result="conflict_exhausted").inc()
        raise ConflictExhaustedError(
            f"Failed to generate a unique short code after {MAX_SHORT_CODE_ATTEMPTS} attempts"
        )

    # ============== Queries ==============

    async def get_any(self, bin_id: str) -> Bin:
        """Get a bin in any state. Used for scope checks before a transition."""
        bin_ = await self.db.get(Bin, bin_id)
        if bin_ is None:
            raise NotFoundError("Bin not found")
        return bin_

    async def _get_in_state(self, bin_id: str, state: BinState) -> Bin:
        bin_ = await self.db.get(Bin, bin_id)
        if bin_ is None or bin_.state is not state:
            raise NotFoundError("Bin not found" if state is BinState.ACTIVE else "Bin not found in trash")
        return bin_

    async def get(self, bin_id: str) -> Bin:
        """
        Get an active bin.

        Raises:
            NotFoundError: If the bin does not exist or is in the trash
        """
        return await self._get_in_state(bin_id, BinState.ACTIVE)

    async def list(
        self,
        location_id: str,
        q: Optional[str] = None,
        tag: Optional[str] = None,
        area_id: Optional[str] = None,
    ) -> List[Bin]:
        """
        List active bins of a location, most recently updated first.

        Args:
            location_id: Location ID
            q: Case-insensitive text search over name, short code, items, notes and tags
            tag: Only bins carrying this tag
            area_id: Only bins in this area
        """
        query = (
            select(Bin)
            .where(Bin.location_id == location_id, Bin.deleted_at.is_(None))
            .order_by(Bin.updated_at.desc(), Bin.id)
        )
        if area_id:
            query = query.where(Bin.area_id == area_id)

        result = await self.db.execute(query)
        bins = list(result.scalars().all())

        # JSON 컬럼(items, tags) 검색은 DB 방언마다 달라서 메모리에서 필터링
        if tag:
            wanted = tag.strip().lower()
            bins = [b for b in bins if wanted in b.tags]
        if q:
            needle = q.strip().lower()
            bins = [
                b for b in bins
                if needle in b.name.lower()
                or needle in b.short_code.lower()
                or needle in b.notes.lower()
                or any(needle in item.lower() for item in b.items)
                or any(needle in t for t in b.tags)
            ]
        return bins

    async def lookup(self, short_code: str, user_id: str) -> Bin:
        """
        Find an active bin by short code among the user's locations.

        Raises:
            NotFoundError: If no such bin is visible to the user
        """
        code = normalize_short_code(short_code)
        if code is None:
            raise NotFoundError("Bin not found")

        result = await self.db.execute(
            select(Bin)
            .join(LocationMember, LocationMember.location_id == Bin.location_id)
            .where(
                Bin.short_code == code,
                Bin.deleted_at.is_(None),
                LocationMember.user_id == user_id,
            )
        )
        bin_ = result.scalars().first()
        if bin_ is None:
            raise NotFoundError("Bin not found")
        return bin_

    async def list_trash(self, location_id: str) -> List[Bin]:
        """List trashed bins of a location, most recently deleted first."""
        result = await self.db.execute(
            select(Bin)
            .where(Bin.location_id == location_id, Bin.deleted_at.is_not(None))
            .order_by(Bin.deleted_at.desc(), Bin.id)
        )
        return list(result.scalars().all())

    # ============== Lifecycle ==============

    async def _check_area(self, location_id: str, area_id: Optional[str]) -> Optional[str]:
        if not area_id:
            return None
        area = await self.db.get(Area, area_id)
        if area is None or area.location_id != location_id:
            raise ValidationError("Area does not belong to this location")
        return area_id

    async def create(self, location_id: str, data: BinCreate, actor: Actor) -> Bin:
        """
        Create a bin with a freshly issued short code.

        Args:
            location_id: Owning location
            data: Bin fields; data.short_code is tried first if valid
            actor: Caller, recorded as created_by

        Returns:
            Created Bin

        Raises:
            ValidationError: On size limit violations or a foreign area
            NotFoundError: If the location does not exist
            ConflictExhaustedError: If no free short code was found
        """
        tags = normalize_tags(data.tags)
        check_bin_limits(name=data.name, items=data.items, notes=data.notes, tags=tags)

        if await self.db.get(Location, location_id) is None:
            raise NotFoundError("Location not found")
        area_id = await self._check_area(location_id, data.area_id)

        now = utcnow()
        bin_ = await self.insert_with_short_code(
            {
                "id": str(uuid.uuid4()),
                "location_id": location_id,
                "area_id": area_id,
                "name": data.name.strip(),
                "items": list(data.items),
                "notes": data.notes,
                "tags": tags,
                "icon": data.icon,
                "color": data.color,
                "created_by": actor.user_id,
                "created_at": now,
                "updated_at": now,
            },
            preferred_code=data.short_code,
        )

        await record_activity(
            self.db, location_id, actor, "create", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
        )
        bin_operations_total.labels(operation="create", result="success").inc()
        log_info("Bin created", event="bin", bin_id=bin_.id, location_id=location_id)
        return bin_

    async def update(self, bin_id: str, data: BinUpdate, actor: Actor) -> Bin:
        """
        Apply the supplied fields to an active bin.

        updated_at is always refreshed, even if no field changed.

        Raises:
            NotFoundError: If the bin does not exist or is in the trash
            ValidationError: On size limit violations or a foreign area
        """
        bin_ = await self.get(bin_id)
        supplied = data.model_dump(exclude_unset=True)

        updates: Dict[str, Any] = {}
        for field, value in supplied.items():
            if field == "area_id":
                updates["area_id"] = await self._check_area(bin_.location_id, value)
            elif value is None:
                continue
            elif field == "tags":
                updates["tags"] = normalize_tags(value)
            elif field == "items":
                updates["items"] = list(value)
            elif field == "name":
                updates["name"] = value.strip()
            else:
                updates[field] = value

        check_bin_limits(
            name=updates.get("name"),
            items=updates.get("items"),
            notes=updates.get("notes"),
            tags=updates.get("tags"),
        )

        old = {field: getattr(bin_, field) for field in _TRACKED_FIELDS}
        for field, value in updates.items():
            setattr(bin_, field, value)
        bin_.updated_at = next_updated_at(bin_.updated_at)
        await self.db.flush()

        await record_activity(
            self.db, bin_.location_id, actor, "update", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
            changes=compute_changes(old, updates, _TRACKED_FIELDS),
        )
        bin_operations_total.labels(operation="update", result="success").inc()
        return bin_

    async def add_tags(self, bin_id: str, tags: List[str], actor: Actor) -> Bin:
        """
        Add tags to an active bin (set union, existing order kept).

        Raises:
            NotFoundError: If the bin does not exist or is in the trash
            ValidationError: If the result exceeds the tag limit
        """
        bin_ = await self.get(bin_id)
        old_tags = list(bin_.tags)
        merged = old_tags + [t for t in normalize_tags(tags) if t not in old_tags]
        check_bin_limits(tags=merged)

        bin_.tags = merged
        bin_.updated_at = next_updated_at(bin_.updated_at)
        await self.db.flush()

        await record_activity(
            self.db, bin_.location_id, actor, "update", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
            changes=compute_changes({"tags": old_tags}, {"tags": merged}, ["tags"]),
        )
        bin_operations_total.labels(operation="add_tags", result="success").inc()
        return bin_

    async def soft_delete(self, bin_id: str, actor: Actor) -> Bin:
        """
        Move an active bin to the trash. Photos and files are untouched.

        Raises:
            NotFoundError: If the bin does not exist or is already in the trash
        """
        bin_ = await self.get(bin_id)
        now = utcnow()
        bin_.deleted_at = now
        bin_.updated_at = next_updated_at(bin_.updated_at)
        await self.db.flush()

        await record_activity(
            self.db, bin_.location_id, actor, "delete", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
        )
        bin_operations_total.labels(operation="delete", result="success").inc()
        log_info("Bin moved to trash", event="bin", bin_id=bin_.id)
        return bin_

    async def restore(self, bin_id: str, actor: Actor) -> Bin:
        """
        Restore a trashed bin.

        Raises:
            NotFoundError: If the bin does not exist or is not in the trash
        """
        bin_ = await self._get_in_state(bin_id, BinState.TRASHED)
        bin_.deleted_at = None
        bin_.updated_at = next_updated_at(bin_.updated_at)
        await self.db.flush()

        await record_activity(
            self.db, bin_.location_id, actor, "restore", "bin",
            entity_id=bin_.id, entity_name=bin_.name,
        )
        bin_operations_total.labels(operation="restore", result="success").inc()
        log_info("Bin restored", event="bin", bin_id=bin_.id)
        return bin_

    async def permanent_delete(self, bin_id: str, actor: Optional[Actor] = None) -> None:
        """
        Permanently delete a trashed bin, its photo rows, and its files.

        Order:
        1. collect photo storage paths
        2. delete the bin row (photo rows cascade), guarded by deleted_at IS NOT NULL
        3. after commit: delete each file, then the bin directory (best effort)

        A crash between 2 and 3 leaves orphan files, never orphan rows.

        Args:
            bin_id: Bin ID
            actor: Caller, None for the retention sweep

        Raises:
            NotFoundError: If the bin does not exist, is active, or was deleted concurrently
        """
        bin_ = await self._get_in_state(bin_id, BinState.TRASHED)
        location_id, name = bin_.location_id, bin_.name

        paths_result = await self.db.execute(
            select(Photo.storage_path).where(Photo.bin_id == bin_id)
        )
        storage_paths = list(paths_result.scalars().all())

        result = await self.db.execute(
            delete(Bin)
            .where(Bin.id == bin_id, Bin.deleted_at.is_not(None))
            .execution_options(synchronize_session=False)
        )
        if bin_ in self.db:
            self.db.expunge(bin_)
        if result.rowcount == 0:
            raise NotFoundError("Bin not found in trash")

        blob_store = self.blob_store

        def _cleanup_files() -> None:
            for path in storage_paths:
                blob_store.delete(path)
            blob_store.delete_container(bin_id)

        run_after_commit(self.db, _cleanup_files)

        if actor is not None:
            await record_activity(
                self.db, location_id, actor, "permanent_delete", "bin",
                entity_id=bin_id, entity_name=name,
            )
        bin_operations_total.labels(
            operation="permanent_delete" if actor is not None else "purge",
            result="success",
        ).inc()
        log_info(
            "Bin permanently deleted",
            event="bin",
            bin_id=bin_id,
            photo_count=len(storage_paths),
            by_sweep=actor is None,
        )

    # ============== Responses ==============

    async def _area_names(self, area_ids: Iterable[Optional[str]]) -> Dict[str, str]:
        ids = {area_id for area_id in area_ids if area_id}
        if not ids:
            return {}
        result = await self.db.execute(select(Area.id, Area.name).where(Area.id.in_(ids)))
        return {row.id: row.name for row in result}

    async def to_response(self, bin_: Bin) -> BinResponse:
        """Build a response with the area name resolved ("" if none)."""
        return (await self.to_responses([bin_]))[0]

    async def to_responses(self, bins: List[Bin]) -> List[BinResponse]:
        """Build responses for several bins with one area lookup."""
        names = await self._area_names(b.area_id for b in bins)
        return [
            BinResponse.model_validate(b).model_copy(
                update={"area_name": names.get(b.area_id, "") if b.area_id else ""}
            )
            for b in bins
        ]
