"""
Security Module

Rate limiting, threat detection, input validation, and the
SecurityContext facade that ties them to audit logging.
"""

from .rate_limiter import RateLimiter, RateLimitRecord, get_client_identifier
from .threat_detector import (
    ThreatDetector,
    detect_xss,
    detect_sql_injection,
    sanitize_html,
)
from .validators import InputValidator
from .context import SecurityContext

__all__ = [
    "RateLimiter",
    "RateLimitRecord",
    "get_client_identifier",
    "ThreatDetector",
    "detect_xss",
    "detect_sql_injection",
    "sanitize_html",
    "InputValidator",
    "SecurityContext",
]
