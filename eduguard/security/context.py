"""
Security Context

The single facade application code talks to: validate input, check rate
limits, report audited actions, and ask whether a client is blocked.

Every violation the facade detects is kept in a short in-memory history
for live display and, when audit logging is enabled, enqueued as an
audit event. Checks that pass (or fail without a threat) are audited as
PERMISSION_CHECK events unless ``audit_checks`` is off.
"""

import time
from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from loguru import logger

from eduguard.audit.service import AuditService
from eduguard.audit.sinks import AuditSink, create_sink
from eduguard.core.config import Config, SecurityLevel, SecuritySettings
from eduguard.core.constants import MAX_VIOLATION_HISTORY
from eduguard.core.logging_config import add_client_context, preview
from eduguard.models.events import ANONYMOUS_USER, AuditAction, AuditEvent, AuditResource, ResourceType
from eduguard.models.requests import AuditExportOptions, AuditLogFilter, InputKind
from eduguard.models.responses import (
    AuditStats,
    RateLimitInfo,
    SecurityViolation,
    ValidationIssue,
    ValidationResult,
    ViolationType,
)
from eduguard.security.rate_limiter import RateLimiter
from eduguard.security.threat_detector import ThreatDetector
from eduguard.security.validators import SUSPICIOUS_PATTERN, InputValidator, has_threat


VIOLATION_ACTIONS = {
    ViolationType.RATE_LIMIT: AuditAction.RATE_LIMIT_EXCEEDED,
    ViolationType.SUSPICIOUS_ACTIVITY: AuditAction.SUSPICIOUS_ACTIVITY,
    ViolationType.INVALID_INPUT: AuditAction.SECURITY_VIOLATION,
}

BLOCKING_LEVELS = frozenset({SecurityLevel.HIGH, SecurityLevel.CRITICAL})

INPUT_CHECK = "input_validation"
RATE_LIMIT_CHECK = "rate_limit"


class SecurityContext:
    """
    Facade over the rate limiter, input validator and audit service.

    Example:
        >>> security = SecurityContext(SecuritySettings(security_level="critical"))
        >>> security.start()
        >>> info = security.check_rate_limit("ip:10.0.0.7", endpoint="/api/chat")
        >>> if security.should_halt("ip:10.0.0.7"):
        ...     # stop processing until the window resets
        >>> security.shutdown()
    """

    def __init__(
        self,
        settings: Optional[SecuritySettings] = None,
        audit: Optional[AuditService] = None,
        sink: Optional[AuditSink] = None,
        limiter: Optional[RateLimiter] = None,
        detector: Optional[ThreatDetector] = None,
        on_violation: Optional[Callable[[SecurityViolation], None]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize security context.

        Args:
            settings: Validated settings (defaults if omitted)
            audit: Audit service; built from ``settings`` and ``sink`` if omitted
            sink: Audit sink for the default audit service
            limiter: Rate limiter; built from ``settings`` if omitted
            detector: Threat detector shared with the validator
            on_violation: Called with every recorded violation
            clock: Time source returning epoch seconds, shared with the limiter
        """
        self.settings = settings if settings is not None else SecuritySettings()
        self._clock = clock or time.time
        if limiter is None:
            limiter = RateLimiter(
                max_requests=self.settings.max_requests,
                window_ms=self.settings.window_ms,
                clock=self._clock
            )
        self.limiter = limiter
        self.detector = detector if detector is not None else ThreatDetector(
            probe_threshold=self.settings.probe_threshold,
            probe_window_ms=self.settings.probe_window_ms
        )
        self.validator = InputValidator(self.settings, self.detector)
        self.audit = audit if audit is not None else AuditService.from_settings(self.settings, sink)
        self.on_violation = on_violation

        self._violations: Deque[SecurityViolation] = deque(maxlen=MAX_VIOLATION_HISTORY)
        # client_id -> epoch seconds at which the block lifts
        self._blocked_until: Dict[str, float] = {}
        self._lock = Lock()

    @classmethod
    def from_config(cls, config_obj: Config, **kwargs: Any) -> "SecurityContext":
        """Build the context from the ``security`` and ``audit_sink`` config sections."""
        settings = SecuritySettings.from_config(config_obj)
        sink = kwargs.pop("sink", None)
        if sink is None:
            sink = create_sink(config_obj)
        return cls(settings=settings, sink=sink, **kwargs)

    @property
    def security_level(self) -> SecurityLevel:
        return self.settings.security_level

    # ===== Lifecycle =====

    def start(self) -> None:
        """Start the audit flush worker and the rate-limit sweep."""
        self.audit.start()
        self.limiter.start_cleanup(self.settings.cleanup_interval_ms)
        logger.info(f"Security context started (level={self.security_level.value})")

    def shutdown(self) -> None:
        """Cancel background work and flush pending audit events."""
        self.limiter.stop_cleanup()
        self.audit.stop()
        logger.info("Security context shut down")

    def __enter__(self) -> "SecurityContext":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    # ===== Input validation =====

    def validate_input(
        self,
        value: Any,
        kind: Union[InputKind, str] = InputKind.GENERIC,
        client_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> ValidationResult:
        """
        Validate input; threats are recorded as violations, every other
        outcome is audited as a check.

        Text is also fed to the probe heuristic for ``client_id``; a
        suspicious result turns the verdict invalid with SUSPICIOUS_PATTERN.
        """
        if not self.settings.enable_input_validation:
            return ValidationResult.ok(value)

        result = self.validator.validate(kind, value)
        client_id = client_id or ANONYMOUS_USER
        kind_name = str(getattr(kind, "value", kind))

        if isinstance(value, str) and self.detector.detect_suspicious_activity(client_id, value):
            errors = list(result.errors)
            if SUSPICIOUS_PATTERN not in result.error_codes:
                errors.append(ValidationIssue(
                    field="input",
                    code=SUSPICIOUS_PATTERN,
                    message="Input contains suspicious patterns"
                ))
            self._record_violation(
                ViolationType.SUSPICIOUS_ACTIVITY,
                "Suspicious input pattern detected",
                {"input": preview(value), "kind": kind_name},
                client_id=client_id,
                user_id=user_id
            )
            return ValidationResult.fail(*errors)

        if isinstance(value, str) and has_threat(result):
            self._record_violation(
                ViolationType.INVALID_INPUT,
                "Malicious input rejected",
                {"input": preview(value), "codes": result.error_codes},
                client_id=client_id,
                user_id=user_id
            )
        else:
            self._audit_check(
                INPUT_CHECK,
                result.is_valid,
                {"kind": kind_name, "codes": result.error_codes},
                client_id=client_id,
                user_id=user_id
            )

        return result

    # ===== Rate limiting =====

    def check_rate_limit(self, client_id: str, endpoint: str = "", user_id: Optional[str] = None) -> RateLimitInfo:
        """Count a request for ``client_id``; a blocked verdict blocks the client until the window resets."""
        if not self.settings.enable_rate_limit:
            return self.limiter.permissive()

        info = self.limiter.check(client_id)
        if info.blocked:
            self._block(client_id, info.reset_time.timestamp())
            self._record_violation(
                ViolationType.RATE_LIMIT,
                "Rate limit exceeded",
                {"endpoint": endpoint, "client_id": client_id},
                client_id=client_id,
                user_id=user_id
            )
        else:
            self._audit_check(
                RATE_LIMIT_CHECK,
                True,
                {"endpoint": endpoint, "remaining": info.remaining},
                client_id=client_id,
                user_id=user_id
            )
        return info

    def rate_limit_status(self, client_id: str) -> RateLimitInfo:
        """Current window for ``client_id`` without counting a request."""
        if not self.settings.enable_rate_limit:
            return self.limiter.permissive()
        return self.limiter.status(client_id)

    def _block(self, client_id: str, until: float) -> None:
        with self._lock:
            self._blocked_until[client_id] = max(until, self._blocked_until.get(client_id, 0.0))

    def is_blocked(self, client_id: str) -> bool:
        """True while a rate-limit or suspicious-activity block on ``client_id`` is active."""
        with self._lock:
            until = self._blocked_until.get(client_id)
            if until is None:
                return False
            if self._clock() >= until:
                del self._blocked_until[client_id]
                return False
            return True

    def blocked_until(self, client_id: str) -> Optional[datetime]:
        with self._lock:
            until = self._blocked_until.get(client_id)
        if until is None or not self.is_blocked(client_id):
            return None
        return datetime.fromtimestamp(until, tz=timezone.utc)

    def should_halt(self, client_id: str) -> bool:
        """Callers must stop processing: the client is blocked and the level is critical."""
        return self.security_level == SecurityLevel.CRITICAL and self.is_blocked(client_id)

    # ===== Violations =====

    @property
    def violations(self) -> List[SecurityViolation]:
        """The most recent violations, oldest first."""
        with self._lock:
            return list(self._violations)

    def _record_violation(
        self,
        violation_type: ViolationType,
        message: str,
        details: Dict[str, Any],
        client_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> SecurityViolation:
        violation = SecurityViolation(
            type=violation_type,
            message=message,
            details=details,
            client_id=client_id
        )
        with self._lock:
            self._violations.append(violation)

        add_client_context(client_id or ANONYMOUS_USER).warning(
            f"Security violation ({violation_type.value}): {message}"
        )

        if (
            violation_type == ViolationType.SUSPICIOUS_ACTIVITY
            and client_id
            and self.security_level in BLOCKING_LEVELS
        ):
            self._block(client_id, self._clock() + self.settings.window_ms / 1000.0)

        if self.on_violation is not None:
            try:
                self.on_violation(violation)
            except Exception as e:
                logger.error(f"Violation callback failed: {type(e).__name__}: {e}")

        if self.settings.enable_audit_logging:
            self.audit.log_security_event(
                user_id=user_id,
                action=VIOLATION_ACTIONS[violation_type],
                resource_id=violation_type.value,
                success=False,
                error_message=message,
                details=dict(details, client_id=client_id)
            )

        return violation

    def _audit_check(
        self,
        check: str,
        success: bool,
        details: Dict[str, Any],
        client_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> None:
        if not (self.settings.enable_audit_logging and self.settings.audit_checks):
            return
        self.audit.log_security_event(
            user_id=user_id,
            action=AuditAction.PERMISSION_CHECK,
            resource_id=check,
            success=success,
            error_message=None if success else f"{check} check failed",
            details=dict(details, client_id=client_id)
        )

    # ===== Audit logging =====

    def log_event(self, event: AuditEvent) -> Optional[AuditEvent]:
        """Enqueue an audit event; returns None when audit logging is disabled."""
        if not self.settings.enable_audit_logging:
            return None
        return self.audit.log_event(event)

    def log_security_event(
        self,
        action: AuditAction,
        resource: str,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """Record an application-reported security event against a named system resource."""
        if not self.settings.enable_audit_logging:
            return None
        if error_message:
            success = False
        return self.log_event(AuditEvent(
            user_id=user_id,
            action=action,
            resource=AuditResource(type=ResourceType.SYSTEM, name=resource),
            resource_id=resource,
            success=success,
            error_message=error_message,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent
        ))

    # ===== Read path =====

    def query_events(self, filter: Optional[AuditLogFilter] = None) -> List[AuditEvent]:
        return self.audit.query(filter)

    def get_stats(self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> AuditStats:
        return self.audit.stats(date_from, date_to)

    def export_events(self, options: Optional[AuditExportOptions] = None) -> str:
        return self.audit.export(options)

    def fallback_events(self) -> List[AuditEvent]:
        return self.audit.fallback_events()
