"""
Unit tests for the audit batch processor.

Tests size-triggered flushing, fallback routing on failure and timeout,
flush exclusivity, timestamp ordering and fallback redelivery.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from eduguard.audit.fallback import LocalFallbackStore
from eduguard.audit.processor import AuditBatchProcessor
from eduguard.audit.sinks import InMemoryAuditSink
from eduguard.core.exceptions import AuditSinkError
from eduguard.models.events import AuditAction, AuditEvent, AuditResource, ResourceType


def make_event(user_id: str = "u1", action: AuditAction = AuditAction.DOCUMENT_VIEW) -> AuditEvent:
    return AuditEvent(
        user_id=user_id,
        action=action,
        resource=AuditResource(type=ResourceType.DOCUMENT, name="Syllabus"),
        resource_id="doc-1",
        success=True
    )


class RecordingSink(InMemoryAuditSink):
    """In-memory sink that remembers the size of every insert call."""

    def __init__(self):
        super().__init__()
        self.calls = []

    def insert(self, records):
        self.calls.append(len(records))
        super().insert(records)


class FailingSink(InMemoryAuditSink):
    def __init__(self, error=None):
        super().__init__()
        self.error = error or AuditSinkError("store unavailable")

    def insert(self, records):
        raise self.error


class HangingSink(InMemoryAuditSink):
    """Sink whose insert blocks until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def insert(self, records):
        self.release.wait(timeout=5)


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def fallback():
    return LocalFallbackStore(capacity=100)


class TestBatching:
    """Tests for size- and call-triggered flushing."""

    def test_batch_size_triggers_single_write(self, fallback):
        """Test that reaching batch_size causes exactly one bulk insert."""
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=3, flush_interval_ms=60000)
        processor.start()
        try:
            for _ in range(3):
                processor.enqueue(make_event())

            assert wait_for(lambda: len(sink) == 3)
            assert sink.calls == [3]
            assert processor.pending_count == 0
        finally:
            processor.stop()

    def test_enqueue_does_not_write(self, fallback):
        """Test that below batch_size nothing is written until a flush."""
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=10)

        processor.enqueue(make_event())
        processor.enqueue(make_event())

        assert sink.calls == []
        assert processor.pending_count == 2
        assert processor.flush() == 2
        assert sink.calls == [2]

    def test_flush_splits_into_batches(self, fallback):
        """Test that no bulk write carries more than batch_size records."""
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=4)

        for _ in range(10):
            processor.enqueue(make_event())
        processor.flush()

        assert wait_for(lambda: len(sink) == 10)
        assert max(sink.calls) <= 4
        assert processor.pending_count == 0

    def test_batch_size_flushes_without_worker(self, fallback):
        """Test that reaching batch_size flushes even if start was never called."""
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=3, flush_interval_ms=60000)

        for _ in range(3):
            processor.enqueue(make_event())

        assert wait_for(lambda: len(sink) == 3)
        assert sink.calls == [3]
        assert processor.pending_count == 0
        assert not processor.running

    def test_flush_empty_queue(self, fallback):
        """Test that flushing an empty queue is a no-op."""
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback)
        assert processor.flush() == 0
        assert sink.calls == []

    def test_stop_flushes_pending(self, fallback):
        """Test that stop writes whatever is still queued."""
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=10)
        processor.start()
        processor.enqueue(make_event())
        processor.enqueue(make_event())

        processor.stop()

        assert len(sink) == 2
        assert not processor.running

    def test_invalid_batch_size(self):
        """Test that a non-positive batch size is rejected."""
        with pytest.raises(ValueError):
            AuditBatchProcessor(InMemoryAuditSink(), batch_size=0)


class TestFallbackRouting:
    """Tests for failed and timed-out writes."""

    def test_failed_write_goes_to_fallback(self, fallback):
        """Test that every event of a failed batch lands in the fallback store."""
        processor = AuditBatchProcessor(FailingSink(), fallback, batch_size=10)

        for i in range(5):
            processor.enqueue(make_event(user_id=f"u{i}"))
        processor.flush()

        assert [r["user_id"] for r in fallback.items()] == ["u0", "u1", "u2", "u3", "u4"]
        stats = processor.stats()
        assert stats["failures"] == 1
        assert stats["fallback"] == 5
        assert stats["flushed"] == 0

    def test_unexpected_sink_exception_goes_to_fallback(self, fallback):
        """Test that non-sink exceptions are treated as failed writes."""
        processor = AuditBatchProcessor(FailingSink(RuntimeError("boom")), fallback)

        processor.enqueue(make_event())
        processor.flush()

        assert len(fallback) == 1

    def test_timeout_goes_to_fallback(self, fallback):
        """Test that a write exceeding write_timeout_ms is routed to fallback."""
        sink = HangingSink()
        processor = AuditBatchProcessor(sink, fallback, write_timeout_ms=50)
        try:
            processor.enqueue(make_event())
            started = time.monotonic()
            processor.flush()

            assert time.monotonic() - started < 2.0
            assert len(fallback) == 1
        finally:
            sink.release.set()
            processor.stop()

    def test_enqueue_never_raises_on_sink_failure(self, fallback):
        """Test that callers are shielded from persistence errors."""
        processor = AuditBatchProcessor(FailingSink(), fallback, batch_size=1)
        processor.start()
        try:
            stamped = processor.enqueue(make_event())
            assert stamped.timestamp is not None
            assert wait_for(lambda: len(fallback) == 1)
        finally:
            processor.stop()


class TestFlushExclusivity:
    """Tests for the non-reentrant flush."""

    def test_concurrent_flush_returns_zero(self, fallback):
        """Test that a flush started during another flush returns 0."""
        processor = None
        nested = []

        class ReentrantSink(InMemoryAuditSink):
            def insert(self, records):
                nested.append(processor.flush())
                super().insert(records)

        sink = ReentrantSink()
        processor = AuditBatchProcessor(sink, fallback)
        processor.enqueue(make_event())

        assert processor.flush() == 1
        assert nested == [0]
        assert len(sink) == 1


class TestTimestamps:
    """Tests for enqueue timestamps."""

    def test_timestamps_are_non_decreasing(self, fallback):
        """Test that a clock going backwards never produces earlier timestamps."""
        base = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        times = iter([base, base - timedelta(seconds=5), base + timedelta(seconds=1)])
        processor = AuditBatchProcessor(InMemoryAuditSink(), fallback, clock=lambda: next(times))

        stamps = [processor.enqueue(make_event()).timestamp for _ in range(3)]

        assert stamps == [base, base, base + timedelta(seconds=1)]

    def test_input_event_untouched(self, fallback):
        """Test that enqueue returns a stamped copy."""
        processor = AuditBatchProcessor(InMemoryAuditSink(), fallback)
        event = make_event()

        stamped = processor.enqueue(event)

        assert event.timestamp is None
        assert stamped.timestamp is not None
        assert stamped.user_id == event.user_id

    def test_persisted_order_follows_enqueue_order(self, fallback):
        """Test that records carry created_at in enqueue order."""
        sink = InMemoryAuditSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=2)
        for i in range(5):
            processor.enqueue(make_event(user_id=f"u{i}"))
        processor.flush()

        assert wait_for(lambda: len(sink) == 5)
        records = sink.records
        assert [r["user_id"] for r in records] == ["u0", "u1", "u2", "u3", "u4"]
        created = [r["created_at"] for r in records]
        assert created == sorted(created)


class TestRedelivery:
    """Tests for moving fallback records back to the sink."""

    def test_redeliver_to_recovered_sink(self, fallback):
        """Test that fallback records are written and removed."""
        fallback.extend([make_event(user_id=f"u{i}").to_record() for i in range(3)])
        sink = RecordingSink()
        processor = AuditBatchProcessor(sink, fallback, batch_size=2)

        assert processor.redeliver_fallback() == 3
        assert len(fallback) == 0
        assert sink.calls == [2, 1]
        assert processor.stats()["redelivered"] == 3

    def test_redeliver_keeps_records_on_failure(self, fallback):
        """Test that nothing leaves the fallback store while the sink fails."""
        fallback.extend([make_event().to_record() for _ in range(3)])
        processor = AuditBatchProcessor(FailingSink(), fallback)

        assert processor.redeliver_fallback() == 0
        assert len(fallback) == 3

    def test_from_settings(self):
        """Test that processor settings come from SecuritySettings."""
        from eduguard.core.config import SecuritySettings

        settings = SecuritySettings(batch_size=7, fallback_capacity=5, write_timeout_ms=2000)
        processor = AuditBatchProcessor.from_settings(settings, InMemoryAuditSink())

        assert processor.batch_size == 7
        assert processor.write_timeout == 2.0
        assert processor.fallback.capacity == 5
