"""Tests for the HTTP API (auth, scoping, status codes)."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

import pytest
from httpx import AsyncClient

from qrbin.services.blob_store import LocalBlobStore

if TYPE_CHECKING:
    from conftest import AuthHeaders


@pytest.fixture
def owner(auth_headers: AuthHeaders) -> dict[str, str]:
    return auth_headers("owner-1", "Owner")


@pytest.fixture
def stranger(auth_headers: AuthHeaders) -> dict[str, str]:
    return auth_headers("stranger-1", "Stranger")


@pytest.fixture
async def location_id(client: AsyncClient, owner: dict[str, str]) -> str:
    response = await client.post("/locations", json={"name": "Home"}, headers=owner)
    assert response.status_code == 201
    return response.json()["id"]


async def _create_bin(
    client: AsyncClient, headers: dict[str, str], location_id: str, **fields: Any
) -> dict[str, Any]:
    body = {"location_id": location_id, "name": "Tools", **fields}
    response = await client.post("/bins", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/liveness")
        assert response.json() == {"status": "alive"}


class TestAuth:
    async def test_missing_token(self, client: AsyncClient) -> None:
        response = await client.get("/bins", params={"location_id": "x"})
        assert response.status_code == 401

    async def test_invalid_token(self, client: AsyncClient) -> None:
        response = await client.get(
            "/bins", params={"location_id": "x"}, headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    async def test_non_member_is_forbidden(
        self,
        client: AsyncClient,
        owner: dict[str, str],
        stranger: dict[str, str],
        location_id: str,
    ) -> None:
        created = await _create_bin(client, owner, location_id)

        listing = await client.get("/bins", params={"location_id": location_id}, headers=stranger)
        single = await client.get(f"/bins/{created['id']}", headers=stranger)

        assert listing.status_code == 403
        assert single.status_code == 403

    async def test_unknown_location(self, client: AsyncClient, owner: dict[str, str]) -> None:
        response = await client.get("/bins", params={"location_id": "missing"}, headers=owner)
        assert response.status_code == 404

    async def test_added_member_gets_access(
        self,
        client: AsyncClient,
        owner: dict[str, str],
        stranger: dict[str, str],
        location_id: str,
    ) -> None:
        added = await client.post(
            f"/locations/{location_id}/members", json={"user_id": "stranger-1"}, headers=owner
        )
        listing = await client.get("/bins", params={"location_id": location_id}, headers=stranger)

        assert added.status_code == 201
        assert listing.status_code == 200


class TestBins:
    async def test_create_list_lookup(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        created = await _create_bin(client, owner, location_id, items=["hammer"], tags=["Garage"])

        listing = await client.get("/bins", params={"location_id": location_id}, headers=owner)
        found = await client.get(f"/bins/lookup/{created['short_code'].lower()}", headers=owner)

        assert created["state"] == "active"
        assert created["tags"] == ["garage"]
        assert [b["id"] for b in listing.json()] == [created["id"]]
        assert found.status_code == 200
        assert found.json()["id"] == created["id"]

    async def test_lookup_unknown_code(self, client: AsyncClient, owner: dict[str, str]) -> None:
        response = await client.get("/bins/lookup/ZZZZZZ", headers=owner)
        assert response.status_code == 404

    async def test_validation_errors(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        response = await client.post(
            "/bins",
            json={"location_id": location_id, "name": "Big", "items": ["x"] * 501},
            headers=owner,
        )
        assert response.status_code == 422

    async def test_update_and_add_tags(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        created = await _create_bin(client, owner, location_id)

        updated = await client.put(
            f"/bins/{created['id']}", json={"notes": "left wall"}, headers=owner
        )
        tagged = await client.put(
            f"/bins/{created['id']}/add-tags", json={"tags": ["Red", "red"]}, headers=owner
        )

        assert updated.json()["notes"] == "left wall"
        assert updated.json()["name"] == "Tools"
        assert tagged.json()["tags"] == ["red"]

    async def test_area_name_in_response(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        area = await client.post(
            f"/locations/{location_id}/areas", json={"name": "Garage"}, headers=owner
        )
        duplicate = await client.post(
            f"/locations/{location_id}/areas", json={"name": "Garage"}, headers=owner
        )
        created = await _create_bin(client, owner, location_id, area_id=area.json()["id"])

        assert duplicate.status_code == 422
        assert created["area_name"] == "Garage"


class TestTrash:
    async def test_trash_restore_and_permanent_delete(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        created = await _create_bin(client, owner, location_id)
        bin_url = f"/bins/{created['id']}"

        deleted = await client.delete(bin_url, headers=owner)
        hidden = await client.get(bin_url, headers=owner)
        trash = await client.get(f"/locations/{location_id}/trash", headers=owner)
        restored = await client.post(f"{bin_url}/restore", headers=owner)
        active_delete = await client.delete(f"{bin_url}/permanent", headers=owner)

        assert deleted.json()["state"] == "trashed"
        assert hidden.status_code == 404
        assert [b["id"] for b in trash.json()] == [created["id"]]
        assert restored.json()["state"] == "active"
        assert active_delete.status_code == 404

        await client.delete(bin_url, headers=owner)
        purged = await client.delete(f"{bin_url}/permanent", headers=owner)
        gone = await client.get(bin_url, headers=owner)

        assert purged.status_code == 204
        assert gone.status_code == 404

    async def test_restore_of_active_bin(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        created = await _create_bin(client, owner, location_id)
        response = await client.post(f"/bins/{created['id']}/restore", headers=owner)
        assert response.status_code == 404

    async def test_retention_settings_are_validated(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        too_short = await client.patch(
            f"/locations/{location_id}", json={"trash_retention_days": 3}, headers=owner
        )
        ok = await client.patch(
            f"/locations/{location_id}", json={"trash_retention_days": 14}, headers=owner
        )

        assert too_short.status_code == 422
        assert ok.json()["trash_retention_days"] == 14


class TestPhotos:
    async def test_upload_serve_delete(
        self,
        client: AsyncClient,
        owner: dict[str, str],
        location_id: str,
        blob_store: LocalBlobStore,
        png_bytes: bytes,
    ) -> None:
        created = await _create_bin(client, owner, location_id)

        uploaded = await client.post(
            f"/bins/{created['id']}/photos",
            files={"file": ("shelf.png", png_bytes, "image/png")},
            headers=owner,
        )
        photo_id = uploaded.json()["id"]
        listed = await client.get(f"/bins/{created['id']}/photos", headers=owner)
        served = await client.get(f"/photos/{photo_id}/file", headers=owner)

        assert uploaded.status_code == 201
        assert [p["id"] for p in listed.json()] == [photo_id]
        assert served.content == png_bytes
        assert served.headers["content-type"] == "image/png"

        deleted = await client.delete(f"/photos/{photo_id}", headers=owner)
        assert deleted.status_code == 204
        assert (await client.get(f"/photos/{photo_id}", headers=owner)).status_code == 404
        assert not list((blob_store.root / created["id"]).glob("*"))

    async def test_rejected_uploads(
        self, client: AsyncClient, owner: dict[str, str], location_id: str, png_bytes: bytes
    ) -> None:
        created = await _create_bin(client, owner, location_id)
        url = f"/bins/{created['id']}/photos"

        wrong_type = await client.post(
            url, files={"file": ("notes.txt", b"hello", "text/plain")}, headers=owner
        )
        too_big = await client.post(
            url,
            files={"file": ("big.png", png_bytes + b"\x00" * (5 * 1024 * 1024), "image/png")},
            headers=owner,
        )

        assert wrong_type.status_code == 422
        assert too_big.status_code == 422

    async def test_missing_file_is_not_found(
        self,
        client: AsyncClient,
        owner: dict[str, str],
        location_id: str,
        blob_store: LocalBlobStore,
        png_bytes: bytes,
    ) -> None:
        created = await _create_bin(client, owner, location_id)
        uploaded = await client.post(
            f"/bins/{created['id']}/photos",
            files={"file": ("shelf.png", png_bytes, "image/png")},
            headers=owner,
        )
        blob_store.delete_container(created["id"])

        served = await client.get(f"/photos/{uploaded.json()['id']}/file", headers=owner)

        assert served.status_code == 404


class TestPortability:
    async def test_export_then_import_into_another_location(
        self,
        client: AsyncClient,
        owner: dict[str, str],
        location_id: str,
        png_bytes: bytes,
    ) -> None:
        created = await _create_bin(client, owner, location_id, items=["hammer"])
        await client.post(
            f"/bins/{created['id']}/photos",
            files={"file": ("shelf.png", png_bytes, "image/png")},
            headers=owner,
        )

        exported = await client.get(f"/locations/{location_id}/export", headers=owner)
        assert exported.status_code == 200
        assert "attachment" in exported.headers["content-disposition"]

        other = (await client.post("/locations", json={"name": "Cabin"}, headers=owner)).json()
        imported = await client.post(
            f"/locations/{other['id']}/import", json=exported.json(), headers=owner
        )

        # 같은 id가 이미 존재하므로 merge에서는 건너뜀
        assert imported.status_code == 200
        assert imported.json() == {
            "binsImported": 0,
            "binsSkipped": 1,
            "photosImported": 0,
            "photosSkipped": 1,
        }

    async def test_replace_mode_from_query(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        await _create_bin(client, owner, location_id, name="Old")

        imported = await client.post(
            f"/locations/{location_id}/import",
            params={"mode": "replace"},
            json={"version": 2, "bins": [{"name": "New"}]},
            headers=owner,
        )
        listing = await client.get("/bins", params={"location_id": location_id}, headers=owner)

        assert imported.json()["binsImported"] == 1
        assert [b["name"] for b in listing.json()] == ["New"]

    async def test_malformed_snapshot(
        self, client: AsyncClient, owner: dict[str, str], location_id: str
    ) -> None:
        response = await client.post(
            f"/locations/{location_id}/import", json={"version": 9, "bins": []}, headers=owner
        )
        assert response.status_code == 422

    async def test_legacy_endpoint(
        self, client: AsyncClient, owner: dict[str, str], location_id: str, png_bytes: bytes
    ) -> None:
        response = await client.post(
            "/import/legacy",
            json={
                "homeId": location_id,
                "data": {
                    "bins": [{"id": "legacy-1", "name": "Attic", "contents": "lamp\nrug"}],
                    "photos": [{"binId": "legacy-1", "dataBase64": base64.b64encode(png_bytes).decode()}],
                },
            },
            headers=owner,
        )
        found = await client.get("/bins/legacy-1", headers=owner)

        assert response.status_code == 200
        assert response.json()["binsImported"] == 1
        assert response.json()["photosImported"] == 1
        assert found.json()["items"] == ["lamp", "rug"]
