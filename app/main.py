import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import discoveries, health, keywords, runs
from app.config import settings
from app.services.listener.services import get_listener_services, reset_listener_services

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    services = get_listener_services()
    seeded = services.keywords.ensure_seeded()
    if seeded:
        logger.info("listener.keywords.seeded", extra={"added": seeded})

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    reset_listener_services()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Buying-signal listener for Hacker News and tech RSS feeds",
    lifespan=lifespan,
    debug=settings.debug,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request with its status and latency."""
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "http.request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return response


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(discoveries.router, prefix="/api/listener", tags=["discoveries"])
app.include_router(keywords.router, prefix="/api/listener", tags=["keywords"])
app.include_router(runs.router, prefix="/api/listener", tags=["runs"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.environment,
    }
