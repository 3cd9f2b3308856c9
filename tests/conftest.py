"""Shared pytest fixtures for qrbin tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import qrbin.models  # noqa: F401  (register mappers)
from qrbin.database import Base, create_engine_for_url, get_db
from qrbin.dependencies.services import get_photo_store, get_trash_purger
from qrbin.models import Location
from qrbin.schemas.bin import BinCreate
from qrbin.schemas.user import Actor
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.location import LocationService
from qrbin.services.trash_purge import TrashPurger
from qrbin.utils.security import create_access_token

# PNG signature followed by filler; content is never decoded
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with all tables created.

    A file (not :memory:) so that separate sessions, like the trash sweep's,
    see the same data.
    """
    test_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging and asserting. Tests commit explicitly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "photos"))


@pytest.fixture
def purger(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: LocalBlobStore,
) -> TrashPurger:
    return TrashPurger(session_factory=session_factory, blob_store=blob_store)


@pytest.fixture
def actor() -> Actor:
    return Actor(user_id="user-1", name="Tester")


@pytest.fixture
def other_actor() -> Actor:
    return Actor(user_id="user-2", name="Stranger")


@pytest.fixture
async def location(db: AsyncSession, actor: Actor) -> Location:
    """A committed location owned by `actor` (30 day trash retention)."""
    created = await LocationService(db).create("Home", actor)
    await db.commit()
    return created


MakeBinCreate = Callable[..., BinCreate]


@pytest.fixture
def make_bin_create(location: Location) -> MakeBinCreate:
    """Factory fixture for BinCreate payloads in the test location."""

    def _make(**overrides: Any) -> BinCreate:
        fields: dict[str, Any] = {
            "location_id": location.id,
            "name": "Winter clothes",
            "items": ["scarf", "gloves"],
            "notes": "top shelf",
            "tags": ["Winter"],
            "icon": "box",
            "color": "blue",
        }
        fields.update(overrides)
        return BinCreate(**fields)

    return _make


AuthHeaders = Callable[..., dict[str, str]]


@pytest.fixture
def auth_headers() -> AuthHeaders:
    """Bearer header factory for a user id."""

    def _make(user_id: str, name: str = "") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, name)}"}

    return _make


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: LocalBlobStore,
    purger: TrashPurger,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test database and store."""
    from qrbin.main import app
    from qrbin.utils.prometheus_metrics import ready

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_photo_store] = lambda: blob_store
    app.dependency_overrides[get_trash_purger] = lambda: purger
    # ASGITransport does not run the lifespan
    ready.set(1)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()
