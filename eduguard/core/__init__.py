"""
Core Module

Provides foundational utilities including configuration management,
logging setup, custom exceptions, and application constants.
"""

from .exceptions import (
    EduGuardException,
    ConfigurationError,
    AuditSinkError,
    AuditQueryError,
    RateLimitExceeded,
    SecurityBlocked,
)
from .config import Config, SecurityLevel, SecuritySettings, config
from .logging_config import setup_logging, configure_logging_from_config

__all__ = [
    "EduGuardException",
    "ConfigurationError",
    "AuditSinkError",
    "AuditQueryError",
    "RateLimitExceeded",
    "SecurityBlocked",
    "Config",
    "SecurityLevel",
    "SecuritySettings",
    "config",
    "setup_logging",
    "configure_logging_from_config",
]
