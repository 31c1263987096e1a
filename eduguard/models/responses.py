"""
Response Models

Pydantic models for values returned by the security facade and the
audit query service, and for HTTP responses.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from eduguard.models.events import AuditEvent


class BaseResponse(BaseModel):
    """Base response model for all API responses."""

    success: bool = Field(
        ...,
        description="Whether the operation was successful"
    )
    message: Optional[str] = Field(
        default=None,
        description="Human-readable message"
    )


class ErrorResponse(BaseModel):
    """Error response model."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": "RateLimitExceeded",
                    "message": "Rate limit exceeded",
                    "details": {"retry_after": 42.0}
                }
            ]
        }
    )

    error: str
    message: str
    details: Optional[Dict[str, Any]] = None


class HealthResponse(BaseResponse):
    """Health check response."""

    version: str
    status: str = "ok"
    pending_events: int = 0
    fallback_events: int = 0


class ValidationIssue(BaseModel):
    """One problem found while validating a field."""

    field: str
    code: str
    message: str


class ValidationResult(BaseModel):
    """
    Verdict of a validation call.

    ``sanitized_value`` is a candidate the caller may persist instead of
    the raw input; it is only set when the input is valid.
    """

    is_valid: bool
    sanitized_value: Optional[Any] = None
    errors: List[ValidationIssue] = Field(default_factory=list)

    @classmethod
    def ok(cls, value: Any) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=value, errors=[])

    @classmethod
    def fail(cls, *errors: ValidationIssue) -> "ValidationResult":
        return cls(is_valid=False, errors=list(errors))

    @property
    def error_codes(self) -> List[str]:
        return [e.code for e in self.errors]


class RateLimitInfo(BaseModel):
    """Outcome of a rate-limit check."""

    remaining: int
    reset_time: datetime
    blocked: bool

    @property
    def retry_after(self) -> float:
        """Seconds until the window resets (0 if already reset)."""
        delta = (self.reset_time - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, delta)


class ViolationType(str, Enum):
    RATE_LIMIT = "rate_limit"
    INVALID_INPUT = "invalid_input"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class SecurityViolation(BaseModel):
    """Transient record of a detected violation, kept for live display."""

    type: ViolationType
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    client_id: Optional[str] = None


class AuditStats(BaseModel):
    """Aggregates over persisted audit events."""

    total_events: int = 0
    events_by_action: Dict[str, int] = Field(default_factory=dict)
    events_by_resource: Dict[str, int] = Field(default_factory=dict)
    events_by_user: Dict[str, int] = Field(default_factory=dict)
    success_rate: float = 0.0
    recent_activity: List[AuditEvent] = Field(default_factory=list)
    security_events: List[AuditEvent] = Field(default_factory=list)


class AuditEventsResponse(BaseResponse):
    """Response of GET /audit/events."""

    events: List[AuditEvent]
    count: int


class ViolationsResponse(BaseResponse):
    violations: List[SecurityViolation]
    blocked: bool = False
