"""
Utilities Module

Shared helpers that are not specific to security or audit logic.
"""

from .periodic import PeriodicWorker

__all__ = ["PeriodicWorker"]
