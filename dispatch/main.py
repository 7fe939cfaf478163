"""
Ticket Dispatch Service

Dispatches counter tickets to agents:
- General and personal queues with priority ordering
- Workload-based auto-assignment
- Mid-service hand-off (derivation) to another agent or back to the queue

Built with FastAPI for async request handling.
"""
import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from dispatch import __version__
from dispatch.core.config import settings
from dispatch.core.exceptions import (
    AgentBusy,
    AgentInactive,
    DispatchError,
    InvalidTicketState,
    NotFound,
    QueueFull,
    StoreUnavailable,
)
from dispatch.api import admin, derivations, employees, queues, tickets
from dispatch.models import database
import logging

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = (
    (NotFound, 404),
    (InvalidTicketState, 409),
    (AgentBusy, 409),
    (AgentInactive, 422),
    (QueueFull, 422),
    (StoreUnavailable, 503),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    from dispatch.services.desk import ServiceDesk
    from dispatch.services.events import event_bus
    from dispatch.services.notifications import notification_service

    # Track service health
    app.state.db_healthy = False
    app.state.redis_healthy = False

    # Initialize database with error handling
    logger.info("Initializing database...")
    try:
        await database.init_db()
        app.state.db_healthy = True
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        logger.warning("App will start in degraded mode - ticket operations will fail")

    # Change events for other processes
    logger.info("Connecting to Redis...")
    await event_bus.connect()
    app.state.redis_healthy = event_bus.enabled
    if not event_bus.enabled:
        logger.warning("App will start without cross-process change events")

    desk = ServiceDesk(
        database.async_session_maker,
        event_bus=event_bus if event_bus.enabled else None,
        notifications=notification_service,
    )
    app.state.desk = desk

    if app.state.db_healthy:
        try:
            snapshot = await desk.index.start()
            logger.info(
                f"Dispatch index warm: {len(snapshot.tickets)} tickets, {len(snapshot.employees)} employees"
            )
        except DispatchError as e:
            logger.error(f"Dispatch index warm-up failed: {e}")

    # Writes from other processes only reach us over Redis
    listener = None
    if app.state.redis_healthy:
        listener = asyncio.create_task(event_bus.listen(desk.index.on_remote_change))

    if app.state.db_healthy and app.state.redis_healthy:
        logger.info("All services initialized successfully!")
    else:
        logger.warning(
            f"App started in degraded mode - DB: {app.state.db_healthy}, Redis: {app.state.redis_healthy}"
        )

    yield

    # Shutdown
    logger.info("Shutting down services...")
    if listener is not None:
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
    desk.index.stop()
    try:
        await event_bus.close()
    except Exception as e:
        logger.error(f"Error closing Redis: {e}")
    await database.dispose_engine()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Ticket Dispatch",
    description="Counter ticket queues, auto-assignment and derivation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
    max_age=600  # Cache preflight requests for 10 minutes
)

# Rate limiting exception handler
app.state.limiter = employees.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Map the dispatch error taxonomy to HTTP status codes."""
    status_code = next((code for cls, code in ERROR_STATUS_CODES if isinstance(exc, cls)), 400)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include routers
app.include_router(tickets.router)
app.include_router(employees.router)
app.include_router(queues.router)
app.include_router(derivations.router)
app.include_router(admin.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "Ticket Dispatch",
        "version": __version__
    }


@app.get("/health")
async def health(request: Request):
    """Detailed health check."""
    db_healthy = getattr(request.app.state, 'db_healthy', False)
    redis_healthy = getattr(request.app.state, 'redis_healthy', False)

    # Redis only carries change events; the service works without it
    status = "healthy" if db_healthy else "degraded"

    desk = getattr(request.app.state, 'desk', None)
    index_warm = bool(desk and desk.index.warm)

    return {
        "status": status,
        "environment": settings.environment,
        "services": {
            "database": "connected" if db_healthy else "disconnected",
            "redis_events": "connected" if redis_healthy else "unavailable",
        },
        "features": {
            "auto_assignment": True,
            "derivation": True,
            "cross_process_events": redis_healthy,
            "dispatch_index": index_warm,
        },
    }


def run():
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run("dispatch.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
