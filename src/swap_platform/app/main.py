"""FastAPI application entry point for the Swap Platform API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from swap_platform.app.config import get_settings
from swap_platform.domain.schemas import HealthResponse
from swap_platform.infra.database import async_session, init_db
from swap_platform.services.lifecycle_sweeper import lifecycle_sweeper_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and start the lifecycle sweeper."""
    await init_db()

    sweeper_task = None
    if settings.sweeper_enabled:
        sweeper_task = asyncio.create_task(
            lifecycle_sweeper_loop(async_session, settings.sweep_interval_seconds)
        )
        logger.info("Lifecycle sweeper started: every %ds", settings.sweep_interval_seconds)
    yield
    if sweeper_task is not None:
        sweeper_task.cancel()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Swap Platform API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware — allow all origins in debug mode for LAN/IP access
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from swap_platform.app.routes.auth import router as auth_router
from swap_platform.app.routes.listings import router as listings_router
from swap_platform.app.routes.matching import router as matching_router
from swap_platform.app.routes.admin import router as admin_router
from swap_platform.app.routes.notifications import router as notifications_router
from swap_platform.app.routes.scheduler import router as scheduler_router

app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(matching_router)
app.include_router(admin_router)
app.include_router(notifications_router)
app.include_router(scheduler_router)


@app.get("/health", tags=["health"], response_model=HealthResponse)
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "swap-platform"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "swap_platform.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
