"""API routers package."""

from yieldrouter.api.routers import manager

__all__ = ["manager"]
