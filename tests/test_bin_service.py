"""Tests for the bin lifecycle and short code issuance."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.errors import ConflictExhaustedError, NotFoundError, ValidationError
from qrbin.models import ActivityLog, Bin, BinState, Location, Photo
from qrbin.schemas.bin import BinUpdate
from qrbin.schemas.user import Actor
from qrbin.services.bin import MAX_ITEMS, MAX_TAGS, BinService, next_updated_at, normalize_tags
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.location import LocationService
from qrbin.services.photo import PhotoService
from qrbin.utils import short_code
from qrbin.utils.short_code import MAX_SHORT_CODE_ATTEMPTS

if TYPE_CHECKING:
    from conftest import MakeBinCreate


async def _bin_count(db: AsyncSession) -> int:
    return await db.scalar(select(func.count()).select_from(Bin))


class TestNormalizeTags:
    def test_trims_lowercases_and_dedupes(self) -> None:
        assert normalize_tags([" Winter ", "winter", "", "Kids"]) == ["winter", "kids"]


class TestNextUpdatedAt:
    def test_strictly_increases_when_clock_does_not_move(self) -> None:
        future = next_updated_at(None).replace(year=2999)
        assert next_updated_at(future) > future


class TestCreate:
    async def test_create_then_get(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(), actor)
        await db.commit()

        fetched = await service.get(created.id)

        assert fetched.name == "Winter clothes"
        assert fetched.items == ["scarf", "gloves"]
        assert fetched.tags == ["winter"]
        assert fetched.created_by == actor.user_id
        assert fetched.state is BinState.ACTIVE
        assert len(fetched.short_code) == 6
        assert fetched.created_at == fetched.updated_at

    async def test_preferred_code_is_used_when_free(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(short_code="abc234"), actor)

        assert created.short_code == "ABC234"

    async def test_taken_preferred_code_falls_back_to_random(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        first = await service.create(location.id, make_bin_create(short_code="ABC234"), actor)
        second = await service.create(location.id, make_bin_create(short_code="ABC234"), actor)

        assert first.short_code == "ABC234"
        assert second.short_code != "ABC234"
        assert await _bin_count(db) == 2

    async def test_exhausted_short_codes_leave_nothing_behind(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Every candidate collides: the create fails and the transaction stays usable."""
        service = BinService(db, blob_store)
        await service.create(location.id, make_bin_create(short_code="AAAAAA"), actor)
        await db.commit()

        attempts: list[str] = []

        def _always_taken() -> str:
            attempts.append("AAAAAA")
            return "AAAAAA"

        monkeypatch.setattr(short_code, "generate_short_code", _always_taken)

        with pytest.raises(ConflictExhaustedError):
            await service.create(location.id, make_bin_create(), actor)

        assert len(attempts) == MAX_SHORT_CODE_ATTEMPTS
        assert await _bin_count(db) == 1

    async def test_limits(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)

        with pytest.raises(ValidationError):
            await service.create(location.id, make_bin_create(name="   "), actor)
        with pytest.raises(ValidationError):
            await service.create(
                location.id, make_bin_create(items=["x"] * (MAX_ITEMS + 1)), actor
            )
        with pytest.raises(ValidationError):
            await service.create(
                location.id, make_bin_create(tags=[f"t{i}" for i in range(MAX_TAGS + 1)]), actor
            )
        assert await _bin_count(db) == 0

    async def test_unknown_location(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        make_bin_create: MakeBinCreate,
    ) -> None:
        with pytest.raises(NotFoundError):
            await BinService(db, blob_store).create("missing", make_bin_create(), actor)

    async def test_area_from_another_location_is_rejected(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        locations = LocationService(db)
        other = await locations.create("Office", actor)
        foreign_area = await locations.create_area(other.id, "Desk")

        with pytest.raises(ValidationError):
            await BinService(db, blob_store).create(
                location.id, make_bin_create(area_id=foreign_area.id), actor
            )

    async def test_records_activity(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        created = await BinService(db, blob_store).create(location.id, make_bin_create(), actor)
        await db.commit()

        entries = (await db.execute(select(ActivityLog))).scalars().all()
        assert [(e.action, e.entity_id, e.user_name) for e in entries] == [
            ("create", created.id, "Tester")
        ]


class TestLifecycle:
    async def test_soft_delete_and_restore_keep_fields(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(), actor)
        await db.commit()
        before = {
            "name": created.name,
            "items": list(created.items),
            "tags": list(created.tags),
            "short_code": created.short_code,
        }
        stamps = [created.updated_at]

        trashed = await service.soft_delete(created.id, actor)
        stamps.append(trashed.updated_at)
        assert trashed.state is BinState.TRASHED
        assert trashed.deleted_at is not None

        restored = await service.restore(created.id, actor)
        stamps.append(restored.updated_at)
        await db.commit()

        assert restored.state is BinState.ACTIVE
        assert restored.deleted_at is None
        assert {
            "name": restored.name,
            "items": restored.items,
            "tags": restored.tags,
            "short_code": restored.short_code,
        } == before
        assert stamps[0] < stamps[1] < stamps[2]

    async def test_transitions_check_state(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(), actor)

        with pytest.raises(NotFoundError):
            await service.restore(created.id, actor)
        with pytest.raises(NotFoundError):
            await service.permanent_delete(created.id, actor)

        await service.soft_delete(created.id, actor)

        with pytest.raises(NotFoundError):
            await service.soft_delete(created.id, actor)
        with pytest.raises(NotFoundError):
            await service.get(created.id)
        with pytest.raises(NotFoundError):
            await service.update(created.id, BinUpdate(name="x"), actor)
        with pytest.raises(NotFoundError):
            await service.add_tags(created.id, ["x"], actor)

    async def test_trashed_bins_are_hidden_from_list_and_lookup(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        kept = await service.create(location.id, make_bin_create(name="Kept"), actor)
        trashed = await service.create(location.id, make_bin_create(name="Trashed"), actor)
        await service.soft_delete(trashed.id, actor)

        assert [b.id for b in await service.list(location.id)] == [kept.id]
        assert [b.id for b in await service.list_trash(location.id)] == [trashed.id]
        with pytest.raises(NotFoundError):
            await service.lookup(trashed.short_code, actor.user_id)

    async def test_permanent_delete_removes_rows_and_files_after_commit(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
        png_bytes: bytes,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(), actor)
        photo = await PhotoService(db, blob_store).upload(
            created.id, "shelf.png", "image/png", png_bytes, actor
        )
        await service.soft_delete(created.id, actor)
        await db.commit()
        storage_path = photo.storage_path

        await service.permanent_delete(created.id, actor)
        # 커밋 전에는 파일이 남아 있어야 함
        assert blob_store.exists(storage_path)
        await db.commit()

        assert not blob_store.exists(storage_path)
        assert not (blob_store.root / created.id).exists()
        assert await db.scalar(select(func.count()).select_from(Photo)) == 0
        with pytest.raises(NotFoundError):
            await service.get_any(created.id)

    async def test_rolled_back_permanent_delete_keeps_files(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
        png_bytes: bytes,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(), actor)
        photo = await PhotoService(db, blob_store).upload(
            created.id, "shelf.png", "image/png", png_bytes, actor
        )
        bin_id, storage_path = created.id, photo.storage_path
        await service.soft_delete(created.id, actor)
        await db.commit()

        await service.permanent_delete(created.id, actor)
        await db.rollback()

        assert blob_store.exists(storage_path)
        assert (await service.get_any(bin_id)).state is BinState.TRASHED


class TestUpdate:
    async def test_only_supplied_fields_change(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(), actor)
        previous = created.updated_at

        updated = await service.update(created.id, BinUpdate(notes="bottom shelf"), actor)

        assert updated.notes == "bottom shelf"
        assert updated.name == "Winter clothes"
        assert updated.items == ["scarf", "gloves"]
        assert updated.updated_at > previous

    async def test_add_tags_is_a_set_union(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(tags=["winter"]), actor)

        updated = await service.add_tags(created.id, ["Kids", "WINTER", "kids"], actor)

        assert updated.tags == ["winter", "kids"]

    async def test_update_records_changed_fields_only(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        area = await LocationService(db).create_area(location.id, "Garage")
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(area_id=area.id), actor)

        await service.update(
            created.id,
            BinUpdate(
                name="Summer clothes",
                notes="left wall",
                area_id=None,
                items=["scarf", "gloves"],
            ),
            actor,
        )
        await db.commit()

        entry = (
            await db.execute(select(ActivityLog).where(ActivityLog.action == "update"))
        ).scalar_one()
        assert entry.changes == {
            "name": {"old": "Winter clothes", "new": "Summer clothes"},
            "notes": {"old": "top shelf", "new": "left wall"},
            "area_id": {"old": area.id, "new": None},
        }

    async def test_add_tags_records_tag_diff(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(tags=["winter"]), actor)

        await service.add_tags(created.id, ["kids"], actor)
        await db.commit()

        entry = (
            await db.execute(select(ActivityLog).where(ActivityLog.action == "update"))
        ).scalar_one()
        assert entry.changes == {"tags": {"old": ["winter"], "new": ["winter", "kids"]}}


class TestQueries:
    async def test_search_and_tag_filter(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        tools = await service.create(
            location.id, make_bin_create(name="Tools", items=["Hammer"], tags=["garage"]), actor
        )
        await service.create(location.id, make_bin_create(name="Books", items=[], tags=[]), actor)

        assert [b.id for b in await service.list(location.id, q="hammer")] == [tools.id]
        assert [b.id for b in await service.list(location.id, q=tools.short_code.lower())] == [
            tools.id
        ]
        assert [b.id for b in await service.list(location.id, tag="Garage")] == [tools.id]

    async def test_lookup_is_case_insensitive_and_member_scoped(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        other_actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        service = BinService(db, blob_store)
        created = await service.create(location.id, make_bin_create(short_code="XYZ789"), actor)

        assert (await service.lookup("xyz789", actor.user_id)).id == created.id
        with pytest.raises(NotFoundError):
            await service.lookup("XYZ789", other_actor.user_id)

    async def test_response_resolves_area_name(
        self,
        db: AsyncSession,
        blob_store: LocalBlobStore,
        actor: Actor,
        location: Location,
        make_bin_create: MakeBinCreate,
    ) -> None:
        area = await LocationService(db).create_area(location.id, "Garage")
        service = BinService(db, blob_store)
        in_area = await service.create(location.id, make_bin_create(area_id=area.id), actor)
        loose = await service.create(location.id, make_bin_create(), actor)

        responses = await service.to_responses([in_area, loose])

        assert [r.area_name for r in responses] == ["Garage", ""]
