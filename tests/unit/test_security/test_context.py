"""
Unit tests for the SecurityContext facade.

The audit processor is not started; tests flush explicitly.
"""

import pytest
from eduguard.audit.sinks import InMemoryAuditSink
from eduguard.core.config import Config, SecuritySettings
from eduguard.models.events import AuditAction, AuditEvent, AuditResource, ResourceType
from eduguard.models.requests import AuditLogFilter, InputKind
from eduguard.models.responses import ViolationType
from eduguard.security.context import SecurityContext
from eduguard.security.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return InMemoryAuditSink()


def make_context(sink, clock, **overrides):
    settings = SecuritySettings(**dict({"max_requests": 3, "window_ms": 1000}, **overrides))
    return SecurityContext(settings, sink=sink, clock=clock)


class TestRateLimit:
    """Tests for check_rate_limit and blocking."""

    def test_exceeding_limit_records_violation(self, sink, clock):
        """Test that a blocked check is recorded and audited."""
        security = make_context(sink, clock)

        verdicts = [security.check_rate_limit("c1", endpoint="/chat").blocked for _ in range(4)]
        assert verdicts == [False, False, False, True]
        assert security.is_blocked("c1")

        assert [v.type for v in security.violations] == [ViolationType.RATE_LIMIT]

        security.audit.flush()
        [record] = [r for r in sink.records if r["action"] == AuditAction.RATE_LIMIT_EXCEEDED.value]
        assert record["success"] is False
        assert record["user_id"] == "anonymous"
        assert record["details"]["endpoint"] == "/chat"

    def test_block_lifts_when_window_resets(self, sink, clock):
        """Test that is_blocked clears once the window is over."""
        security = make_context(sink, clock)
        for _ in range(4):
            security.check_rate_limit("c1")

        clock.now += 1.0
        assert not security.is_blocked("c1")
        assert security.check_rate_limit("c1").blocked is False

    def test_should_halt_only_at_critical(self, sink, clock):
        """Test that halting requires both a block and the critical level."""
        medium = make_context(sink, clock)
        critical = make_context(sink, clock, security_level="critical")

        for security in (medium, critical):
            for _ in range(4):
                security.check_rate_limit("c1")

        assert medium.is_blocked("c1") and not medium.should_halt("c1")
        assert critical.should_halt("c1")
        assert not critical.should_halt("other")

    def test_disabled_rate_limit_is_permissive(self, sink, clock):
        """Test that a disabled limiter admits everything."""
        security = make_context(sink, clock, enable_rate_limit=False)

        for _ in range(10):
            info = security.check_rate_limit("c1")

        assert info.blocked is False
        assert info.remaining == 3
        assert security.violations == []

    def test_status_does_not_consume(self, sink, clock):
        """Test rate_limit_status leaves the counter alone."""
        security = make_context(sink, clock)
        security.check_rate_limit("c1")
        assert security.rate_limit_status("c1").remaining == 2
        assert security.rate_limit_status("c1").remaining == 2


class TestValidateInput:
    """Tests for validate_input."""

    def test_valid_input(self, sink, clock):
        """Test that clean input passes without violations."""
        security = make_context(sink, clock)
        result = security.validate_input("What is photosynthesis?", client_id="c1")
        assert result.is_valid
        assert security.violations == []

    def test_malicious_input_is_invalid_input_violation(self, sink, clock):
        """Test that a non-probe threat is recorded as invalid_input."""
        security = make_context(sink, clock)
        result = security.validate_input("admin'--", client_id="c1")

        assert result.error_codes == ["SQL_INJECTION"]
        assert [v.type for v in security.violations] == [ViolationType.INVALID_INPUT]

        security.audit.flush()
        assert sink.records[0]["action"] == AuditAction.SECURITY_VIOLATION.value

    def test_attack_payload_is_suspicious_activity(self, sink, clock):
        """Test that a probe payload adds SUSPICIOUS_PATTERN and is audited as suspicious."""
        security = make_context(sink, clock)
        result = security.validate_input("<script>alert(1)</script>", client_id="c1")

        assert not result.is_valid
        assert result.error_codes == ["XSS_ATTEMPT", "SUSPICIOUS_PATTERN"]
        assert [v.type for v in security.violations] == [ViolationType.SUSPICIOUS_ACTIVITY]

        security.audit.flush()
        assert sink.records[0]["action"] == AuditAction.SUSPICIOUS_ACTIVITY.value

    def test_suspicious_activity_blocks_at_high(self, sink, clock):
        """Test that suspicious activity blocks the client from level high upwards."""
        medium = make_context(sink, clock)
        high = make_context(sink, clock, security_level="high")

        medium.validate_input("x UNION SELECT 1", client_id="c1")
        high.validate_input("x UNION SELECT 1", client_id="c1")

        assert not medium.is_blocked("c1")
        assert high.is_blocked("c1")

    def test_validation_disabled(self, sink, clock):
        """Test that disabled validation returns the value unchanged."""
        security = make_context(sink, clock, enable_input_validation=False)
        result = security.validate_input("<script>alert(1)</script>")
        assert result.is_valid
        assert result.sanitized_value == "<script>alert(1)</script>"
        assert security.violations == []

    def test_title_kind(self, sink, clock):
        """Test that the kind is forwarded to the validator."""
        security = make_context(sink, clock)
        result = security.validate_input("Bad/Title", kind=InputKind.TITLE)
        assert result.error_codes == ["INVALID_CHARACTERS"]
        assert security.violations == []


class TestViolations:
    """Tests for the violation history and callback."""

    def test_history_keeps_last_ten(self, sink, clock):
        """Test that only the last 10 violations are kept."""
        security = make_context(sink, clock, max_requests=1)
        for _ in range(13):
            security.check_rate_limit("c1")

        assert len(security.violations) == 10

    def test_callback_receives_violation(self, sink, clock):
        """Test that on_violation is called for each violation."""
        seen = []
        security = make_context(sink, clock)
        security.on_violation = seen.append

        security.validate_input("admin'--", client_id="c1")
        assert len(seen) == 1
        assert seen[0].client_id == "c1"

    def test_failing_callback_does_not_break_check(self, sink, clock):
        """Test that a raising callback is contained."""
        def explode(violation):
            raise RuntimeError("boom")

        security = make_context(sink, clock, max_requests=1)
        security.on_violation = explode

        security.check_rate_limit("c1")
        assert security.check_rate_limit("c1").blocked is True


class TestAuditLogging:
    """Tests for log_event and the read passthroughs."""

    def test_log_event_and_query(self, sink, clock):
        """Test that logged events can be queried after a flush."""
        security = make_context(sink, clock)
        stamped = security.log_event(AuditEvent(
            user_id="u1",
            action=AuditAction.DOCUMENT_VIEW,
            resource=AuditResource(type=ResourceType.DOCUMENT, name="Syllabus"),
            resource_id="doc-1",
            success=True
        ))
        assert stamped.timestamp is not None

        security.audit.flush()
        [event] = security.query_events(AuditLogFilter(user_id="u1"))
        assert event.action == AuditAction.DOCUMENT_VIEW
        assert security.get_stats().total_events == 1

    def test_log_security_event(self, sink, clock):
        """Test that an error message marks the security event as failed."""
        security = make_context(sink, clock)
        event = security.log_security_event(
            AuditAction.UNAUTHORIZED_ACCESS,
            "admin_console",
            details={"path": "/admin"},
            error_message="Missing role"
        )

        assert event.success is False
        assert event.resource.name == "admin_console"
        assert event.is_security_event

    def test_audit_logging_disabled(self, sink, clock):
        """Test that disabled audit logging is a no-op returning None."""
        security = make_context(sink, clock, enable_audit_logging=False, max_requests=1)

        assert security.log_security_event(AuditAction.USER_LOGIN, "login") is None
        security.check_rate_limit("c1")
        security.check_rate_limit("c1")

        assert security.audit.flush() == 0
        assert len(sink) == 0
        assert len(security.violations) == 1


class TestInjection:
    """Tests for injected collaborators."""

    def test_empty_limiter_is_kept(self, sink, clock):
        """Test that an injected limiter with no records is used as given."""
        limiter = RateLimiter(max_requests=2, window_ms=1000, clock=clock)
        security = SecurityContext(SecuritySettings(), sink=sink, limiter=limiter, clock=clock)

        assert security.limiter is limiter
        verdicts = [security.check_rate_limit("c1").blocked for _ in range(3)]
        assert verdicts == [False, False, True]

    def test_empty_sink_is_kept_by_from_config(self, tmp_path, monkeypatch):
        """Test that from_config uses an injected empty sink instead of building one."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("EDUGUARD_CONFIG", raising=False)
        monkeypatch.setenv("EDUGUARD_SINK_URL", "https://audit.example.org")
        sink = InMemoryAuditSink()

        security = SecurityContext.from_config(Config(), sink=sink)

        assert security.audit.sink is sink


class TestCheckAuditing:
    """Tests for auditing the outcome of every check."""

    def test_passing_checks_are_audited(self, sink, clock):
        """Test that passing validation and rate-limit checks enqueue audit events."""
        security = make_context(sink, clock)

        security.validate_input("hello world", client_id="c1", user_id="u1")
        security.check_rate_limit("c1", endpoint="/chat")
        security.audit.flush()

        records = sorted(sink.records, key=lambda r: r["resource_id"])
        assert [r["resource_id"] for r in records] == ["input_validation", "rate_limit"]
        assert all(r["action"] == AuditAction.PERMISSION_CHECK.value for r in records)
        assert all(r["success"] is True for r in records)
        assert records[0]["user_id"] == "u1"
        assert records[1]["details"]["endpoint"] == "/chat"

    def test_invalid_non_threat_input_is_audited_as_failed_check(self, sink, clock):
        """Test that a rule failure without a threat is a failed check, not a violation."""
        security = make_context(sink, clock)

        security.validate_input("Bad/Title", kind=InputKind.TITLE, client_id="c1")
        security.audit.flush()

        [record] = sink.records
        assert record["action"] == AuditAction.PERMISSION_CHECK.value
        assert record["success"] is False
        assert record["details"]["codes"] == '["INVALID_CHARACTERS"]'
        assert security.violations == []

    def test_threat_is_audited_once(self, sink, clock):
        """Test that a rejected threat produces only the violation event."""
        security = make_context(sink, clock)

        security.validate_input("admin'--", client_id="c1")
        security.audit.flush()

        assert [r["action"] for r in sink.records] == [AuditAction.SECURITY_VIOLATION.value]

    def test_audit_checks_off(self, sink, clock):
        """Test that only violations are audited when audit_checks is off."""
        security = make_context(sink, clock, audit_checks=False, max_requests=1)

        security.validate_input("hello world", client_id="c1")
        security.check_rate_limit("c1")
        security.check_rate_limit("c1")
        security.audit.flush()

        assert [r["action"] for r in sink.records] == [AuditAction.RATE_LIMIT_EXCEEDED.value]
