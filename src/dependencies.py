"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.wearables.service import HealthGenie


def get_genie(request: Request) -> HealthGenie:
    """Return the service container built by the app lifespan."""
    genie: HealthGenie | None = getattr(request.app.state, "genie", None)
    if genie is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return genie


# Annotated shortcuts for route signatures
Genie = Annotated[HealthGenie, Depends(get_genie)]
AppSettings = Annotated[Settings, Depends(get_settings)]
