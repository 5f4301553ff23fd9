"""Analytics and progress routes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException

logger = logging.getLogger(__name__)


def register_report_routes(app: FastAPI) -> None:
    """Register analytics/progress endpoints.

    Reads wait for any running detection/sync cycle to finish.
    """

    @app.get("/stats")
    async def get_stats() -> Dict[str, Any]:
        """Return the analytics payload."""
        scheduler = app.state.scheduler
        try:
            return await asyncio.to_thread(scheduler.get_analytics)
        except Exception as exc:
            logger.exception("Failed to generate analytics: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.get("/progress")
    async def get_progress() -> Dict[str, Any]:
        """Return the current progress report."""
        scheduler = app.state.scheduler
        try:
            report = await asyncio.to_thread(scheduler.get_progress_report)
            return report.to_dict()
        except Exception as exc:
            logger.exception("Failed to generate progress report: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
