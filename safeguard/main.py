"""SafeGuard FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from safeguard.api import auth, contacts, health, sos, ws
from safeguard.core.config import settings
from safeguard.core.exceptions import TransportUnavailable
from safeguard.core.rate_limit import SlidingWindowLimiter
from safeguard.core.sos_policies import SOS_RATE_LIMIT, SOS_RATE_WINDOW_SECONDS
from safeguard.db.base import Base
from safeguard.db.session import engine
from safeguard.models import AuditEntry, Guardian, User  # noqa: F401 - register for create_all
from safeguard.services.guardian_service import GuardianDirectory
from safeguard.services.location_relay import LocationRelay
from safeguard.services.notification_service import NotificationDispatcher, build_transport
from safeguard.services.sos_service import SosSessionManager

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


def default_dispatcher() -> NotificationDispatcher:
    """Twilio dispatcher, or a log-only one when Twilio is not configured."""
    try:
        transport = build_transport(settings)
    except TransportUnavailable as e:
        logger.warning("%s; SOS notifications will only be logged", e)
        transport = None
    return NotificationDispatcher(transport)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    await app.state.sos.drain()


def create_app(
    dispatcher: NotificationDispatcher | None = None,
    limiter: SlidingWindowLimiter | None = None,
) -> FastAPI:
    """Build the app with its own relay, dispatcher and session manager."""
    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    directory = GuardianDirectory()
    app.state.directory = directory
    app.state.sos = SosSessionManager(
        directory=directory,
        dispatcher=dispatcher or default_dispatcher(),
        relay=LocationRelay(),
        limiter=limiter or SlidingWindowLimiter(SOS_RATE_LIMIT, SOS_RATE_WINDOW_SECONDS),
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(contacts.router)
    app.include_router(sos.router)
    app.include_router(ws.router)
    return app


app = create_app()
