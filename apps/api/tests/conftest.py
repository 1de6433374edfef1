import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loyaltymart_api.app import create_accrual_app, create_app
from loyaltymart_api.core.settings import Settings
from loyaltymart_api.db.base import Base
from loyaltymart_api.services.accrual import AccrualClient
from loyaltymart_api.services.rate_limit import SlidingWindowRateLimiter


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()


def build_test_settings(**overrides) -> Settings:
    values = {
        "tracing_enabled": False,
        "database_create_schema": False,
        "order_worker_count": 4,
        "order_queue_size": 8,
        "accrual_poll_interval_seconds": 0.01,
        "accrual_retry_interval_seconds": 0.01,
        "accrual_backoff_ceiling_seconds": 0.05,
        "accrual_max_attempts": 500,
        "accrual_processing_delay_seconds": 0.01,
        "accrual_processed_delay_seconds": 0.01,
        "reconciliation_sweep_enabled": False,
        "shutdown_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return build_test_settings()


@pytest_asyncio.fixture
async def make_session_factory(tmp_path):
    """Build session factories on temporary SQLite files with the schema created."""

    engines = []

    async def _make(name: str = "ledger") -> async_sessionmaker[AsyncSession]:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / name}.db", future=True)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        engines.append(engine)
        return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield _make
    finally:
        for engine in engines:
            await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(make_session_factory):
    return await make_session_factory("ledger")


@pytest_asyncio.fixture
async def accrual_app(make_session_factory, test_settings):
    factory = await make_session_factory("accrual")
    app = create_accrual_app(
        config=test_settings,
        session_factory=factory,
        rate_limiter=SlidingWindowRateLimiter(limit=10, window_seconds=60),
    )
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def accrual_client(accrual_app):
    transport = httpx.ASGITransport(app=accrual_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://accrual") as client:
        yield client


@pytest_asyncio.fixture
async def mart_app(session_factory, test_settings):
    """Mart app whose accrual service never knows about any order."""

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    poller_http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    app = create_app(
        config=test_settings,
        session_factory=session_factory,
        accrual_client=AccrualClient("http://accrual.test", http_client=poller_http),
    )
    async with app.router.lifespan_context(app):
        yield app
    await poller_http.aclose()


@pytest_asyncio.fixture
async def mart_client(mart_app):
    transport = httpx.ASGITransport(app=mart_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://mart") as client:
        yield client
