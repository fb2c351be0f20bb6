"""
Shared fixtures: a throwaway SQLite database per test, seeded users and locations,
the lifecycle service bound to that database, and an HTTP client for the app.
"""

import os

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.database import Base, enable_sqlite_foreign_keys, get_db, get_session_factory
from marketplace.models import Location, User
from marketplace.services.ad_lifecycle import AdLifecycleService
from marketplace.services.auth_service import create_access_token


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    enable_sqlite_foreign_keys(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def service(session_factory):
    return AdLifecycleService(session_factory)


@pytest.fixture
async def seeded(session_factory):
    """Two users and two locations. Password hashes are placeholders; tokens are minted directly."""
    async with session_factory() as session:
        alice = User(email="alice@example.com", password_hash="unused", name="Alice")
        bob = User(email="bob@example.com", password_hash="unused", name="Bob")
        berlin = Location(country="Germany", city="Berlin", district="Mitte")
        munich = Location(country="Germany", city="Munich", district="Schwabing")
        session.add_all([alice, bob, berlin, munich])
        await session.commit()
    return SimpleNamespace(alice=alice, bob=bob, berlin=berlin, munich=munich)


@pytest.fixture
def make_draft(service, seeded):
    async def _make(owner=None, **overrides):
        fields = {
            "location_id": seeded.berlin.id,
            "title": "Road bike",
            "description": "Aluminium frame, 28 inch wheels, barely used.",
            "price_cents": 25000,
        }
        fields.update(overrides)
        return await service.create_draft((owner or seeded.alice).id, **fields)
    return _make


@pytest.fixture
def make_active(service, make_draft):
    async def _make(owner=None, photos=1, **overrides):
        ad = await make_draft(owner=owner, **overrides)
        for position in range(photos):
            await service.add_photo(ad.user_id, ad.id, f"/uploads/{ad.id}/{position}.jpg", position)
        return await service.publish(ad.user_id, ad.id)
    return _make


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.email)}"}


@pytest.fixture
def alice_headers(seeded):
    return auth_headers(seeded.alice)


@pytest.fixture
def bob_headers(seeded):
    return auth_headers(seeded.bob)


@pytest.fixture
async def client(session_factory):
    from marketplace.main import app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
