from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from rewardflow_api import __version__
from rewardflow_api.core.settings import settings
from rewardflow_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.conditions import ConditionEngine, SessionFactory, build_condition_engine


APP_VERSION = __version__


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine: ConditionEngine = app.state.condition_engine
    logger.info(
        "Condition engine ready",
        catalog_cache_ttl_seconds=engine.catalog_cache.ttl_seconds,
        catalog_cache_max_entries=engine.catalog_cache.max_entries,
        celery_enabled=bool(settings.celery_broker_url),
    )
    try:
        yield
    finally:
        engine.catalog_cache.clear()


def create_app(
    *,
    session_factory: SessionFactory | None = None,
    condition_engine: ConditionEngine | None = None,
) -> FastAPI:
    """Application factory for the RewardFlow condition engine service."""
    configure_logging(
        service_name="rewardflow-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="RewardFlow API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="rewardflow-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    factory = session_factory or async_session
    app.state.session_factory = factory
    app.state.condition_engine = condition_engine or build_condition_engine(factory, settings=settings)

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
