"""
Models Module

Pydantic models for request/response validation and serialization.
"""

from .events import (
    AuditAction,
    AuditEvent,
    AuditResource,
    ResourceType,
    SECURITY_ACTIONS,
    ANONYMOUS_USER,
    normalize_metadata,
)

from .requests import (
    InputKind,
    ExportFormat,
    FileMetadata,
    AuditLogFilter,
    AuditExportOptions,
    ValidateInputRequest,
    LogEventRequest,
)

from .responses import (
    BaseResponse,
    ErrorResponse,
    HealthResponse,
    ValidationIssue,
    ValidationResult,
    RateLimitInfo,
    ViolationType,
    SecurityViolation,
    AuditStats,
    AuditEventsResponse,
    ViolationsResponse,
)

__all__ = [
    # Events
    "AuditAction",
    "AuditEvent",
    "AuditResource",
    "ResourceType",
    "SECURITY_ACTIONS",
    "ANONYMOUS_USER",
    "normalize_metadata",
    # Requests
    "InputKind",
    "ExportFormat",
    "FileMetadata",
    "AuditLogFilter",
    "AuditExportOptions",
    "ValidateInputRequest",
    "LogEventRequest",
    # Responses
    "BaseResponse",
    "ErrorResponse",
    "HealthResponse",
    "ValidationIssue",
    "ValidationResult",
    "RateLimitInfo",
    "ViolationType",
    "SecurityViolation",
    "AuditStats",
    "AuditEventsResponse",
    "ViolationsResponse",
]
