from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from status_service.api.routes import events, metrics, status
from status_service.core.config import Settings, get_settings
from status_service.core.logging import configure_logging, init_tracer, shutdown_tracer
from status_service.events.consumer import TicketEventConsumer
from status_service.events.notifier import EventNotifier, InMemoryEventNotifier, WebhookEventNotifier
from status_service.metrics import metrics_registry
from status_service.statuses.dedup import DuplicateFilter
from status_service.statuses.repository import InMemoryStatusRepository, SQLStatusRepository
from status_service.statuses.service import StatusUpdateEngine


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_notifier(settings: Settings) -> EventNotifier:
    if settings.notifier_backend == "webhook":
        if not settings.notifier_webhook_url:
            raise ValueError("NOTIFIER_WEBHOOK_URL is required for the webhook notifier")
        return WebhookEventNotifier(
            settings.notifier_webhook_url,
            timeout=settings.notifier_timeout_seconds,
            headers={settings.internal_service_header: "true"},
        )
    return InMemoryEventNotifier()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.metrics_registry = metrics_registry

    db_engine = None
    if settings.storage_backend == "postgres":
        db_engine = create_async_engine(
            _to_asyncpg_dsn(settings.postgres_dsn),
            future=True,
            connect_args={
                "timeout": settings.db_connect_timeout_seconds,
                "command_timeout": settings.db_command_timeout_seconds,
            },
        )
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        repository = SQLStatusRepository(session_factory, engine=db_engine)
    else:
        logger.warning("Using in-memory status storage; records are lost on restart")
        repository = InMemoryStatusRepository()

    notifier = build_notifier(settings)
    try:
        await repository.ensure_schema()
    except Exception:
        await notifier.close()
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)
        raise

    engine = StatusUpdateEngine(
        repository,
        notifier,
        duplicate_filter=DuplicateFilter(timedelta(seconds=settings.duplicate_window_seconds)),
        metrics=metrics_registry,
        notifier_timeout=settings.notifier_timeout_seconds,
    )
    app.state.status_engine = engine
    app.state.event_consumer = TicketEventConsumer(engine, metrics=metrics_registry)
    logger.info(
        "Status service started (storage=%s, notifier=%s)", settings.storage_backend, settings.notifier_backend
    )
    try:
        yield
    finally:
        await notifier.close()
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(status.router)
    app.include_router(events.router)
    app.include_router(metrics.router)
    return app


app = create_app()
