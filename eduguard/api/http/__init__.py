"""HTTP transport: REST routes under /api."""

from .routes import router

__all__ = ["router"]
