"""FastAPI application for Tutorrito arrival notifications.

Wires the session lookup, composer, email transport and record store into
a DeliveryCoordinator and exposes it over HTTP to the separately hosted
front end.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from tutorrito import __version__
from tutorrito.core.config import Settings
from tutorrito.core.logging import configure_logging
from tutorrito.notifications.booking import BookingMailer
from tutorrito.notifications.composer import NotificationComposer
from tutorrito.notifications.coordinator import DeliveryCoordinator
from tutorrito.notifications.inbox import InboxService
from tutorrito.notifications.store import NotificationStore
from tutorrito.notifications.transport import EmailTransport, create_transport
from tutorrito.repositories.protocols import NotificationRepository, SessionRepository
from tutorrito.sessions.lookup import SessionLookup
from tutorrito.sessions.store import SessionStore
from tutorrito.web.notification_router import router as notification_router


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str = __version__


def create_app(
    settings: Settings | None = None,
    transport: EmailTransport | None = None,
    session_store: SessionRepository | None = None,
    notification_store: NotificationRepository | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can create isolated app instances
    with mock dependencies.

    Args:
        settings: Application settings. Defaults to Settings().
        transport: Optional pre-built email transport.
        session_store: Optional pre-built session repository.
        notification_store: Optional pre-built notification repository.

    Returns:
        A configured FastAPI instance.
    """
    if settings is None:
        settings = Settings()

    configure_logging(settings.log_level)

    db_manager = None
    if settings.db.database_url and (session_store is None or notification_store is None):
        from tutorrito.db.engine import DatabaseManager
        from tutorrito.repositories.postgres.notifications import PostgresNotificationRepository
        from tutorrito.repositories.postgres.sessions import PostgresSessionRepository

        db_manager = DatabaseManager(
            settings.db.database_url,
            echo=settings.db.echo,
            pool_size=settings.db.pool_size,
        )
        session_store = session_store or PostgresSessionRepository(db_manager)
        notification_store = notification_store or PostgresNotificationRepository(db_manager)

    if session_store is None:
        session_store = SessionStore()
    if notification_store is None:
        notification_store = NotificationStore()
    if transport is None:
        transport = create_transport(settings.email)

    composer = NotificationComposer(templates_path=settings.delivery.templates_path)
    coordinator = DeliveryCoordinator(
        lookup=SessionLookup(session_store),
        composer=composer,
        transport=transport,
        records=notification_store,
        sessions=session_store,
        config=settings.delivery,
    )
    inbox = InboxService(
        records=notification_store,
        profiles=session_store,
        composer=composer,
        transport=transport,
        email_config=settings.email,
        delivery_config=settings.delivery,
    )
    booking_mailer = BookingMailer(
        composer=composer,
        transport=transport,
        admin_email=settings.email.admin_email,
        config=settings.delivery,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await coordinator.drain()
        await transport.close()
        if db_manager is not None:
            await db_manager.close()

    app = FastAPI(
        title="Tutorrito Notifications",
        description="Notifications for tutoring sessions",
        version=__version__,
        lifespan=lifespan,
    )

    # Front end is hosted separately; preflight is answered by the middleware.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allow_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=settings.cors.allow_headers,
    )

    app.state.settings = settings
    app.state.session_store = session_store
    app.state.notification_store = notification_store
    app.state.email_transport = transport
    app.state.delivery_coordinator = coordinator
    app.state.inbox_service = inbox
    app.state.booking_mailer = booking_mailer
    if db_manager is not None:
        app.state.db_manager = db_manager

    app.include_router(notification_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy", service="tutorrito-notifications")

    return app
