"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from src.dependencies import AppSettings, Genie

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthgenie.health")


@router.get("/health")
def health_check(genie: Genie, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports local store reachability and whether writes are halted.
    """
    db_ok = False
    try:
        genie.store.count()
        db_ok = True
    except SQLAlchemyError as exc:
        logger.warning("Health check store probe failed: %s", exc)

    healthy = db_ok and not genie.store.halted
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "store_halted": genie.store.halted,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
