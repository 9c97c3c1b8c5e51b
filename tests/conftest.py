"""Test fixtures for Memento."""

import os

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("ANTHROPIC_API_KEY", "")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "")

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from src.core.models import Base
from src.core.schemas.places import PlaceResult
from src.location.ledger import NotificationLedgerStore
from src.location.store import LocationStore
from src.pipeline.store import NotificationStore
from src.tasks.store import TaskStore

# Vienna, Stephansplatz
HOME_LAT = 48.2085
HOME_LNG = 16.3721


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed SQLite with a connection per session, for concurrent writers."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'memento.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def task_store(session_factory):
    return TaskStore(session_factory)


@pytest.fixture
def notification_store(session_factory):
    return NotificationStore(session_factory)


@pytest.fixture
def location_store(session_factory):
    return LocationStore(session_factory)


@pytest.fixture
def ledger_store(session_factory):
    return NotificationLedgerStore(session_factory)


def _make_place(index: int, *, lat: float = HOME_LAT, lng: float = HOME_LNG, **kwargs) -> PlaceResult:
    """A place roughly ``index`` * 111 m north of ``lat,lng``."""
    return PlaceResult(
        name=kwargs.pop("name", f"Apotheke {index}"),
        address=kwargs.pop("address", f"Street {index}"),
        lat=lat + 0.001 * index,
        lng=lng,
        place_id=kwargs.pop("place_id", f"place-{index}"),
        rating=kwargs.pop("rating", 4.2),
        open_now=kwargs.pop("open_now", True),
    )


@pytest.fixture
def make_place():
    return _make_place

