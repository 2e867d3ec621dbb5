"""
Root-level test fixtures shared across all tests.

This module provides:
- Test database setup (async SQLite in-memory)
- Settings built for tests (no Redis, deterministic thresholds)
- Service factories wired to the test database
- Occurrence factory that writes rows directly, bypassing ingestion
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from errorscope.config import Settings, load_settings
from errorscope.models import Base
from errorscope.models.application import Application
from errorscope.models.error_group import ErrorGroup, GroupStatus, Severity
from errorscope.models.occurrence import Occurrence
from errorscope.services.event_bus import EventBus
from errorscope.services.ingestion import IngestionService

# Import models so their tables are registered on Base.metadata
import errorscope.models.baseline  # noqa: F401
import errorscope.models.cascade_link  # noqa: F401

pytest_plugins = ("pytest_asyncio",)

# Fixed reference point; tests never depend on the wall clock
NOW = datetime(2024, 3, 1, 12, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================


def _enable_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create async SQLite in-memory engine for testing.

    Uses StaticPool to ensure same connection is reused within a test.
    Each test gets a fresh database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,  # Set to True for SQL debugging
    )
    _enable_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def test_session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def test_db(
    test_session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides async database session for testing.

    Each test gets a fresh database with all tables created.
    """
    async with test_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def file_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    File-backed SQLite engine with a real connection pool.

    Needed where several sessions must run concurrently (the in-memory
    StaticPool shares a single connection).
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'errorscope.db'}",
        connect_args={"timeout": 30},
    )
    _enable_foreign_keys(engine)

    # pysqlite defers BEGIN until the first write, which lets two writers
    # deadlock on lock upgrade; take the write lock up front instead
    @event.listens_for(engine.sync_engine, "connect")
    def disable_pysqlite_begin(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


# ============================================================================
# Settings and Services
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: SQLite, no Redis, small analytics windows."""
    return load_settings(
        database_url="sqlite+aiosqlite:///:memory:",
        environment="development",
        cascade_min_samples=5,
        cascade_min_confidence=0.5,
        cascade_lookback_hours=24,
        baseline_window_buckets=24,
        baseline_min_samples=6,
        baseline_cooldown_minutes=180,
        baseline_min_absolute_delta=5.0,
        baseline_max_tracked_groups=0,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> list:
    """Every event published on the test bus, in order."""
    events = []
    event_bus.subscribe(None, events.append)
    return events


@pytest.fixture
def ingestion_service(
    settings: Settings,
    test_session_maker: async_sessionmaker[AsyncSession],
    event_bus: EventBus,
) -> IngestionService:
    return IngestionService(settings, test_session_maker, event_bus=event_bus)


# ============================================================================
# Test Data Factories
# ============================================================================


class OccurrenceFactory:
    """
    Writes applications, groups and occurrences directly.

    Analytics tests need hundreds of rows at exact timestamps; going through
    ingestion for each would only slow them down.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._applications: dict[str, UUID] = {}

    async def application(self, name: str = "shop") -> UUID:
        if name not in self._applications:
            application = Application(id=uuid4(), name=name)
            self.db.add(application)
            await self.db.flush()
            self._applications[name] = application.id
        return self._applications[name]

    async def group(
        self,
        error_type: str = "ValueError",
        application: str = "shop",
        severity: Severity = Severity.HIGH,
        status: GroupStatus = GroupStatus.OPEN,
        first_seen: datetime = NOW - timedelta(days=1),
        last_seen: datetime = NOW,
        message: str = "",
        **kwargs,
    ) -> ErrorGroup:
        group = ErrorGroup(
            id=uuid4(),
            application_id=await self.application(application),
            fingerprint=uuid4().hex[:16],
            error_type=error_type,
            message=message or f"{error_type} raised",
            severity=severity,
            status=status,
            first_seen=first_seen,
            last_seen=last_seen,
            **kwargs,
        )
        self.db.add(group)
        await self.db.flush()
        return group

    async def occurrences(
        self,
        group: ErrorGroup,
        timestamps: list[datetime],
        **fields,
    ) -> None:
        for ts in timestamps:
            self.db.add(
                Occurrence(
                    group_id=group.id,
                    application_id=group.application_id,
                    occurred_at=ts,
                    **fields,
                )
            )
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()


@pytest.fixture
def factory(test_db: AsyncSession) -> OccurrenceFactory:
    return OccurrenceFactory(test_db)
