from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import HTTPException as FastAPIHTTPException

from careslot.cache.cache_service import redis_cache
from careslot.core.clients import build_collaborators
from careslot.core.logger import setup_logging
from careslot.middleware.cors import configure_cors
from careslot.middleware.logging import RequestLoggerMiddleware
from careslot.middleware import error_handler
from careslot.services.notification_service import Notifier
from careslot.services.payment_gateway import PaymentGateway
from careslot.services.video_service import RoomProvisioner
from careslot.utils.errors import SchedulingError

# Routers
from careslot.routers import appointments as appointments_router
from careslot.routers import availability as availability_router
from careslot.routers import health as health_router
from careslot.routers import payments as payments_router
from careslot.routers import settings as settings_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await redis_cache.close()


def create_app(
    payment_gateway: Optional[PaymentGateway] = None,
    room_provisioner: Optional[RoomProvisioner] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    External collaborators are built once here and shared by every request;
    tests pass fakes in.
    """
    setup_logging()
    description = (
        "CareSlot consultation scheduling API.\n\n"
        "Provider availability, slot listing, booking, payment reconciliation, "
        "cancellation with refunds and video session access."
    )

    openapi_tags = [
        {"name": "availability", "description": "Weekly availability rules and bookable slots."},
        {"name": "appointments", "description": "Booking, cancellation and consultation sessions."},
        {"name": "payments", "description": "Payment initialization, callback and webhook."},
        {"name": "settings", "description": "Consultation fee and length managed by administrators."},
        {"name": "health", "description": "Health checks and service status endpoints."},
    ]

    app = FastAPI(
        title="CareSlot API",
        version="0.1.0",
        description=description,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.collaborators = build_collaborators(payment_gateway, room_provisioner, notifier)

    # Middleware
    configure_cors(app)
    app.add_middleware(RequestLoggerMiddleware)

    # Exception handlers
    app.add_exception_handler(FastAPIHTTPException, error_handler.http_exception_handler)
    app.add_exception_handler(SchedulingError, error_handler.scheduling_exception_handler)

    # Include routers
    app.include_router(health_router.router)
    app.include_router(availability_router.router)
    app.include_router(appointments_router.router)
    app.include_router(payments_router.router)
    app.include_router(settings_router.router)

    return app


app = create_app()
