"""Health/status HTTP surface for the background scheduler."""

from .app import create_app
from .run import HealthServer

__all__ = ["create_app", "HealthServer"]
