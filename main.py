import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from anyio import to_thread
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server_hub.application.use_cases.notifications import archive_expired_notifications
from server_hub.config import Settings, get_settings
from server_hub.domain.exceptions import StoreUnavailable
from server_hub.infrastructure.database import SessionLocal, engine, initialize_database
from server_hub.infrastructure.notifications import (
    NotificationDelivery,
    build_notification_delivery,
)
from server_hub.interfaces.api.dependencies import resolve_identity
from server_hub.interfaces.api.routes import register_routes

logger = logging.getLogger(__name__)


def _archive_expired(retention_days: int) -> int:
    session = SessionLocal()
    try:
        return archive_expired_notifications(session, retention_days=retention_days)
    finally:
        session.close()


async def _run_maintenance(delivery: NotificationDelivery, settings: Settings) -> None:
    """Periodically drop idle connections and archive old notifications."""

    interval = settings.connection_idle_timeout_seconds / 2
    while True:
        await asyncio.sleep(interval)
        await delivery.expire_idle()
        try:
            await to_thread.run_sync(
                _archive_expired, settings.notification_retention_days
            )
        except StoreUnavailable as exc:
            logger.warning("Skipping notification retention run: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database on startup and release resources on shutdown."""

    initialize_database()
    delivery: NotificationDelivery = app.state.notification_delivery
    maintenance = asyncio.create_task(_run_maintenance(delivery, app.state.settings))
    yield
    maintenance.cancel()
    with suppress(asyncio.CancelledError):
        await maintenance
    await delivery.aclose()
    engine.dispose()


async def _store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning("Request to %s failed: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Notification store unavailable, retry later"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    app = FastAPI(title="Server Hub Notifications", lifespan=lifespan)
    app.state.settings = settings
    app.state.notification_delivery = build_notification_delivery(
        settings, SessionLocal, resolve_identity
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StoreUnavailable, _store_unavailable_handler)

    register_routes(app)
    return app


app = create_app()
