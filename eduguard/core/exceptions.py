"""
Custom Exceptions Module

Defines the exception hierarchy for the eduguard security and audit pipeline.

All application-specific exceptions inherit from EduGuardException
for easier error handling and filtering. Input validation failures are
NOT exceptions: they are returned as ValidationResult values.
"""

from typing import Optional, Dict, Any


class EduGuardException(Exception):
    """
    Base exception for all eduguard errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for API responses.

        Returns:
            Dictionary with error information
        """
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(EduGuardException):
    """
    Raised when configuration is invalid or missing.

    Examples:
    - Explicit configuration file not found
    - Invalid YAML
    - Out-of-range security settings
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if config_key:
            error_details['config_key'] = config_key

        super().__init__(message, error_details)


class AuditSinkError(EduGuardException):
    """
    Raised by an audit sink when a bulk write or a read fails.

    The batch processor catches this on the write path and routes the
    batch to the fallback store; it never reaches the audited call site.

    Attributes:
        status_code: HTTP status code from the backing store (if any)
        response_body: Response body from the backing store (if any)
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if status_code:
            error_details['status_code'] = status_code
        if response_body:
            error_details['response_body'] = response_body[:500]

        super().__init__(message, error_details)
        self.status_code = status_code
        self.response_body = response_body


class AuditQueryError(EduGuardException):
    """Raised when persisted audit events cannot be read, filtered or exported."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, details)


class RateLimitExceeded(EduGuardException):
    """
    Raised by the HTTP adapter when a client is over its rate limit.

    The library itself reports exceedance as ``blocked=True``; only the
    HTTP layer turns it into an exception.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if retry_after:
            error_details['retry_after'] = retry_after

        super().__init__(message, error_details)
        self.retry_after = retry_after


class SecurityBlocked(EduGuardException):
    """
    Raised by the HTTP adapter when the security level is critical and
    the client is blocked; callers must halt processing until reset.
    """

    def __init__(
        self,
        message: str = "Access temporarily blocked",
        client_id: Optional[str] = None,
        retry_after: Optional[float] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if client_id:
            error_details['client_id'] = client_id
        if retry_after:
            error_details['retry_after'] = retry_after

        super().__init__(message, error_details)
        self.retry_after = retry_after
