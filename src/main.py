"""Health Genie API: FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.config import get_settings
from src.routers import health, sync, vitals
from src.wearables.service import HealthGenie

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthgenie")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks.

    Builds the service container unless one was injected via ``create_app``.
    """
    settings = get_settings()
    logger.info(
        "Starting Health Genie API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    if getattr(app.state, "genie", None) is None:
        app.state.genie = HealthGenie.from_settings(settings)
    genie: HealthGenie = app.state.genie
    await genie.startup()
    yield
    await genie.shutdown()
    logger.info("Health Genie API shut down")


# ---------- App factory ----------

def create_app(genie: HealthGenie | None = None) -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Health Genie API",
        description=(
            "Wearable biometrics core: bounded local history, durable sync "
            "to the remote backend, and instant and long-term wellness scores."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.genie = genie

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(vitals.router, prefix=v1_prefix)
    app.include_router(sync.router, prefix=v1_prefix)

    return app


app = create_app()
