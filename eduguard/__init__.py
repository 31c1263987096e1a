"""
EduGuard - security & audit event pipeline.

Rate limiting, XSS / SQL-injection detection and sanitization, input
validation, and batched audit logging with a local fallback store.
"""

__version__ = "1.0.0"
