"""HTTP API for the yield manager."""

from yieldrouter.api.app import create_app

__all__ = ["create_app"]
