from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from loyaltymart_api.core.settings import Settings, settings
from loyaltymart_api.db.base import Base
from loyaltymart_api.db.session import build_engine, build_session_factory
from loyaltymart_api.domain.errors import PoolShutdownTimeoutError
from .api.dependencies.rate_limit import RateLimitExceededError, rate_limit_exceeded_handler
from .api.routes import accrual_api_router, api_router
from .core.logging import configure_logging
from .observability.pipeline import PipelineObservabilityStore
from .observability.tracing import configure_tracing
from .services.accrual import AccrualClient, AccrualOrderStore, MechanicCache
from .services.ledger import LedgerService
from .services.orders.lifecycle import AccrualOrderLifecycle, MartOrderLifecycle
from .services.rate_limit import RateLimiter, RedisSlidingWindowRateLimiter, SlidingWindowRateLimiter
from .workers import (
    AccrualCalculationProcessor,
    AccrualReconciliationProcessor,
    OrderWorkerPool,
    PendingOrderSweeper,
    PollingPolicy,
)


APP_VERSION = "0.1.0"


async def _load_pending_mart_orders(session: AsyncSession, limit: int) -> list[str]:
    return await LedgerService(session).list_pending_orders(limit=limit)


async def _load_pending_accrual_orders(session: AsyncSession, limit: int) -> list[str]:
    return await AccrualOrderStore(session).list_pending(limit=limit)


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def _open_store(
    config: Settings,
    database_url: str,
    session_factory: async_sessionmaker[AsyncSession] | None,
) -> tuple[AsyncEngine | None, async_sessionmaker[AsyncSession]]:
    if session_factory is not None:
        return None, session_factory
    engine = build_engine(database_url)
    if config.database_create_schema:
        await _create_schema(engine)
    return engine, build_session_factory(engine)


def _build_sweeper(
    config: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    pool: OrderWorkerPool,
    loader,
    name: str,
) -> PendingOrderSweeper | None:
    if not config.reconciliation_sweep_enabled:
        logger.info("Pending order sweeper disabled", reason="reconciliation_sweep_enabled is false")
        return None
    return PendingOrderSweeper(
        session_factory,
        pool,
        loader,
        interval_seconds=config.reconciliation_sweep_interval_seconds,
        limit=config.reconciliation_sweep_limit,
        name=name,
    )


async def _shutdown_lifecycle(lifecycle, config: Settings) -> None:
    try:
        await lifecycle.shutdown(config.shutdown_timeout_seconds)
    except PoolShutdownTimeoutError as exc:
        logger.error("Order pipeline did not drain before shutdown", pending=exc.pending, timeout=exc.timeout)


def _build_rate_limiter(config: Settings) -> RateLimiter:
    if config.rate_limit_backend == "redis":
        return RedisSlidingWindowRateLimiter.from_url(
            config.redis_url,
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
        )
    return SlidingWindowRateLimiter(
        limit=config.rate_limit_requests,
        window_seconds=config.rate_limit_window_seconds,
        max_clients=config.rate_limit_max_clients,
    )


def _new_app(title: str, service_name: str, config: Settings, lifespan) -> FastAPI:
    configure_logging(
        service_name=service_name,
        environment=config.environment,
        version=APP_VERSION,
        level=config.log_level,
    )

    app = FastAPI(
        title=title,
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if config.tracing_enabled:
        configure_tracing(
            app,
            service_name=service_name,
            service_version=APP_VERSION,
            environment=config.environment,
            otlp_endpoint=config.otel_exporter_otlp_endpoint,
            otlp_headers=config.otel_exporter_otlp_headers,
        )

    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": config.environment,
            "version": APP_VERSION,
        }

    return app


def create_app(
    *,
    config: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    accrual_client: AccrualClient | None = None,
    polling_policy: PollingPolicy | None = None,
) -> FastAPI:
    """Application factory for the user-facing mart service."""
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine, factory = await _open_store(config, config.database_url, session_factory)
        store = PipelineObservabilityStore()
        client = accrual_client or AccrualClient(
            config.accrual_system_address,
            timeout_seconds=config.accrual_request_timeout_seconds,
            default_retry_after_seconds=config.accrual_default_retry_after_seconds,
        )
        processor = AccrualReconciliationProcessor(
            factory,
            client,
            policy=polling_policy or PollingPolicy.from_settings(config),
            observability=store,
        )
        pool = OrderWorkerPool(
            processor,
            worker_count=config.order_worker_count,
            queue_size=config.order_queue_size,
            overflow_policy=config.order_overflow_policy,
            observability=store,
            name="mart-orders",
        )
        sweeper = _build_sweeper(config, factory, pool, _load_pending_mart_orders, "mart-orders")
        lifecycle = MartOrderLifecycle(factory, pool, sweeper=sweeper)

        app.state.session_factory = factory
        app.state.pipeline_store = store
        app.state.order_pool = pool
        app.state.accrual_client = client
        app.state.lifecycle = lifecycle

        await lifecycle.start()
        logger.info(
            "Mart order pipeline enabled",
            accrual_system_address=client.base_url,
            worker_count=config.order_worker_count,
            queue_size=config.order_queue_size,
        )
        try:
            yield
        finally:
            await _shutdown_lifecycle(lifecycle, config)
            app.state.lifecycle = None
            if accrual_client is None:
                await client.aclose()
            if engine is not None:
                await engine.dispose()

    app = _new_app("Loyaltymart API", "loyaltymart-api", config, lifespan)
    app.include_router(api_router)
    return app


def create_accrual_app(
    *,
    config: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Application factory for the accrual calculation service."""
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine, factory = await _open_store(config, config.accrual_database_url, session_factory)
        store = PipelineObservabilityStore()
        mechanic_cache = MechanicCache(factory, ttl_seconds=config.mechanic_cache_ttl_seconds)
        processor = AccrualCalculationProcessor(
            factory,
            mechanic_cache,
            processing_delay_seconds=config.accrual_processing_delay_seconds,
            processed_delay_seconds=config.accrual_processed_delay_seconds,
            observability=store,
        )
        pool = OrderWorkerPool(
            processor,
            worker_count=config.order_worker_count,
            queue_size=config.order_queue_size,
            overflow_policy=config.order_overflow_policy,
            observability=store,
            name="accrual-orders",
        )
        sweeper = _build_sweeper(config, factory, pool, _load_pending_accrual_orders, "accrual-orders")
        lifecycle = AccrualOrderLifecycle(factory, pool, mechanic_cache, sweeper=sweeper)
        limiter = rate_limiter or _build_rate_limiter(config)

        app.state.session_factory = factory
        app.state.pipeline_store = store
        app.state.order_pool = pool
        app.state.mechanic_cache = mechanic_cache
        app.state.rate_limiter = limiter
        app.state.trusted_proxies = tuple(config.rate_limit_trusted_proxies)
        app.state.lifecycle = lifecycle

        await lifecycle.start()
        logger.info(
            "Accrual order pipeline enabled",
            worker_count=config.order_worker_count,
            queue_size=config.order_queue_size,
            rate_limit_backend=config.rate_limit_backend if rate_limiter is None else "injected",
        )
        try:
            yield
        finally:
            await _shutdown_lifecycle(lifecycle, config)
            app.state.lifecycle = None
            if rate_limiter is None and isinstance(limiter, RedisSlidingWindowRateLimiter):
                await limiter.aclose()
            if engine is not None:
                await engine.dispose()

    app = _new_app("Loyaltymart Accrual API", "loyaltymart-accrual", config, lifespan)
    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    app.include_router(accrual_api_router)
    return app
