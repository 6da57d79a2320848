import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from desk.api.routes import realtime as realtime_routes
from desk.api.routes import tickets
from desk.core.config import Settings, get_settings
from desk.core.logging import configure_logging, init_tracer, shutdown_tracer
from desk.metrics import metrics_registry, register_default_metrics
from desk.notifications import (
    HttpEmailChannel,
    HttpPushChannel,
    NotificationDispatcher,
    RealtimeHub,
    SqlDeliveryLedger,
    SqlUserDirectory,
)
from desk.tickets import EventBus, SqlAuditSink, TicketRepository, TicketService, TransitionValidator

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def _build_channels(settings: Settings) -> tuple[HttpPushChannel | None, HttpEmailChannel | None]:
    push = None
    if settings.push_gateway_url:
        push = HttpPushChannel(
            settings.push_gateway_url,
            api_key=settings.push_gateway_api_key,
            timeout=settings.notification_timeout_seconds,
        )
    else:
        logger.warning("PUSH_GATEWAY_URL is not set; push notifications are disabled")

    email = None
    if settings.email_api_url:
        email = HttpEmailChannel(
            settings.email_api_url,
            sender=settings.email_sender,
            api_key=settings.email_api_key,
            timeout=settings.notification_timeout_seconds,
        )
    else:
        logger.warning("EMAIL_API_URL is not set; email notifications are disabled")
    return push, email


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider
    register_default_metrics(metrics_registry)

    db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
    repository = TicketRepository(session_factory, engine=db_engine)
    if settings.create_schema_on_startup:
        await repository.ensure_schema()

    push, email = _build_channels(settings)
    realtime = RealtimeHub()
    directory = SqlUserDirectory(session_factory, presence=realtime)
    dispatcher = NotificationDispatcher(
        directory,
        realtime=realtime,
        push=push,
        email=email,
        ledger=SqlDeliveryLedger(session_factory),
        timeout=settings.notification_timeout_seconds,
        metrics=metrics_registry,
    )
    event_bus = EventBus()
    event_bus.subscribe(dispatcher.handle)

    app.state.realtime_hub = realtime
    app.state.notification_dispatcher = dispatcher
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory
    app.state.ticket_service = TicketService(
        repository,
        event_bus=event_bus,
        audit_sink=SqlAuditSink(session_factory),
        validator=TransitionValidator(reopen_window_days=settings.reopen_window_days),
        metrics=metrics_registry,
        ticket_number_prefix=settings.ticket_number_prefix,
        directory=directory,
    )
    try:
        yield
    finally:
        await event_bus.drain()
        for channel in (push, email):
            if channel is not None:
                await channel.aclose()
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(tickets.router)
    app.include_router(realtime_routes.router)
    return app


app = create_app()
