from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from webapp.shared.config import Settings, settings as default_settings
from webapp.shared.db import Database
from webapp.shared.http import SecurityHeadersMiddleware, install_error_handlers
from webapp.shared.logger import get_logger, setup_logging
from webapp.shared.metrics import ApiMetricsMiddleware, setup_metrics

# import models so they register with Base.metadata
from webapp.files import models as files_models  # noqa: F401
from webapp.health import models as health_models  # noqa: F401

# Routers Import
from webapp.files.api import router as files_router
from webapp.files.storage import build_object_store
from webapp.health.api import router as health_router

TAGS_METADATA = [
    {"name": "Files", "description": "Upload images, read metadata, delete"},
    {"name": "Health", "description": "Service health"},
]

logger = get_logger()


def _log_targets(settings: Settings) -> None:
    if settings.DATABASE_URL:
        logger.info("Using DATABASE_URL for the database connection")
    else:
        logger.info(
            f"Connecting to database at {settings.DB_HOST}:{settings.DB_PORT} with user "
            f"{settings.DB_USER or 'not set'} and database {settings.DB_NAME or 'not set'} "
            f"({settings.DB_DIALECT})"
        )
    logger.info(f"S3_BUCKET_NAME: {settings.S3_BUCKET_NAME}")


def _open_database(db: Database, settings: Settings) -> None:
    connected = db.connect_with_retry(
        retries=settings.DB_CONNECT_RETRIES,
        base_delay=settings.DB_RETRY_BASE_SECONDS,
        max_delay=settings.DB_RETRY_MAX_SECONDS,
    )
    if not connected or settings.is_test:
        return
    try:
        db.sync_schema()
    except SQLAlchemyError:
        logger.exception("Error syncing database")


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    object_store=None,
    metric_readers=(),
) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings)
    _log_targets(settings)

    database = database or Database.from_settings(settings)
    object_store = object_store or build_object_store(settings)
    meter_provider = setup_metrics(settings, metric_readers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # the reconnect loop sleeps, keep it off the event loop
        await run_in_threadpool(_open_database, database, settings)
        yield
        database.dispose()
        if meter_provider is not None:
            meter_provider.shutdown()

    app = FastAPI(
        title="webapp",
        version="1.0.0",
        description="Image upload API backed by S3 and a relational database.",
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = database
    app.state.object_store = object_store

    # last added runs first: metrics see the final response with headers applied
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(ApiMetricsMiddleware)
    install_error_handlers(app)

    app.include_router(health_router)
    app.include_router(files_router)
    return app


def run() -> None:
    import uvicorn

    uvicorn.run("webapp.main:create_app", factory=True, host="0.0.0.0", port=default_settings.PORT)
