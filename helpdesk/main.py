import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from helpdesk.api.errors import register_exception_handlers
from helpdesk.api.routes import metrics, ping, tickets
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.dependencies.auth import DEMO_ACCOUNTS
from helpdesk.services.postgres import PostgresPool
from helpdesk.tickets import (
    AutoCloseSweeper,
    IdempotencyCache,
    InMemoryTicketRepository,
    TicketRepository,
    TicketService,
    TicketStore,
)
from helpdesk.users import InMemoryUserRepository, UserDirectory, UserRepository

logger = logging.getLogger(__name__)


async def build_stores(settings: Settings) -> tuple[TicketStore, UserDirectory, PostgresPool | None]:
    if settings.storage_backend == "memory":
        return InMemoryTicketRepository(), InMemoryUserRepository(), None

    postgres = PostgresPool(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
        command_timeout=settings.postgres_command_timeout,
    )
    pool = await postgres.get_pool()
    return TicketRepository(pool), UserRepository(pool), postgres


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    configure_logging(settings)
    tracer_provider = init_tracer(settings)

    ticket_store, users, postgres = await build_stores(settings)
    service = TicketService(ticket_store, users, sla_window=timedelta(hours=settings.sla_window_hours))
    await service.ensure_schema()
    for account in DEMO_ACCOUNTS.values():
        await users.add_user(account)

    sweeper = AutoCloseSweeper(ticket_store, interval_seconds=settings.auto_close_interval_seconds)
    app.state.ticket_service = service
    app.state.idempotency_cache = IdempotencyCache(settings.idempotency_ttl_seconds)
    app.state.auto_close_sweeper = sweeper
    if settings.auto_close_enabled:
        sweeper.start()
    logger.info("HelpDesk API started with %s storage", settings.storage_backend)
    try:
        yield
    finally:
        await sweeper.stop()
        if postgres is not None:
            await postgres.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(tickets.router)
    return app


app = create_app()
