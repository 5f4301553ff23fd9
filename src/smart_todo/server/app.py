"""FastAPI application bootstrap."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .routes import register_health_routes, register_report_routes


def create_app(scheduler: Any) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        scheduler: BackgroundScheduler whose status and orchestrator are exposed.
    """
    app = FastAPI(title="Smart Todo Health API", version="1.0.0")
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Not found", "path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    register_health_routes(app)
    register_report_routes(app)

    return app
