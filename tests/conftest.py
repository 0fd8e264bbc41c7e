"""Shared test fixtures for the async database, export collaborators and seeded products."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_export.core.config import Settings
from catalog_export.models.base import Base
from catalog_export.models.product import Product
from catalog_export.services.export_job_store import SqlExportJobStore
from catalog_export.services.product_source import SqlProductSource

InsertProducts = Callable[..., Awaitable[list[int]]]


@pytest.fixture
def settings() -> Settings:
    """Test application settings."""
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        export_chunk_size=1000,
        export_chunk_delay_ms=0,
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine shared by every session in a test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def job_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlExportJobStore:
    return SqlExportJobStore(session_factory)


@pytest.fixture
def product_source(session_factory: async_sessionmaker[AsyncSession]) -> SqlProductSource:
    return SqlProductSource(session_factory)


@pytest.fixture
def insert_products(session_factory: async_sessionmaker[AsyncSession]) -> InsertProducts:
    """Return a coroutine function that inserts ``count`` products and returns their ids."""

    async def _insert(
        count: int,
        *,
        name: str = "Widget",
        category: str = "Electronics",
        status: str = "active",
        price: float = 19.99,
    ) -> list[int]:
        async with session_factory() as session, session.begin():
            products = [
                Product(
                    name=f"{name} {i}",
                    category=category,
                    price=price,
                    quantity=i,
                    status=status,
                    created_at=datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
                )
                for i in range(count)
            ]
            session.add_all(products)
            await session.flush()
            return [p.id for p in products]

    return _insert
