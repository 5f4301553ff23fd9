"""Health check route."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from ..schemas import HealthResponse

logger = logging.getLogger(__name__)


def register_health_routes(app: FastAPI) -> None:
    """Register the health endpoint."""

    @app.get("/health", response_model=HealthResponse)
    async def health() -> JSONResponse:
        """Return scheduler status; 503 when the orchestrator failed to initialize."""
        scheduler = app.state.scheduler
        try:
            status = HealthResponse(**scheduler.get_status())
        except Exception as exc:  # pragma: no cover - runtime diagnostics
            logger.exception("Failed to fetch scheduler status: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse(
            status_code=200 if status.healthy else 503,
            content=status.model_dump(),
        )
