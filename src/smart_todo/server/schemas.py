"""Pydantic schemas for the health/status server."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SchedulerSettings(BaseModel):
    """Effective scheduler intervals."""

    detect_interval_seconds: float
    sync_interval_seconds: float
    file_watch_enabled: bool
    auto_complete_threshold: float


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str = Field(..., description="healthy or unhealthy")
    state: str = Field(..., description="Scheduler lifecycle state")
    healthy: bool
    uptime_seconds: float
    last_detection: Optional[str] = None
    last_sync: Optional[str] = None
    detections: int = 0
    auto_completions: int = 0
    errors: int = 0
    skipped_cycles: int = 0
    memory_rss_mb: Optional[float] = Field(default=None, description="Resident set size in MB")
    config: SchedulerSettings
