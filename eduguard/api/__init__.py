"""
API Module

FastAPI application factory, routes, and rate-limit middleware.
"""

from .app import create_app

__all__ = ["create_app"]
