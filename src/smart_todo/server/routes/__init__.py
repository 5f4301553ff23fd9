"""Route registration helpers."""

from .health import register_health_routes
from .reports import register_report_routes

__all__ = ["register_health_routes", "register_report_routes"]
