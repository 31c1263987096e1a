"""
Audit Batch Processor

Buffers audit events in memory and writes them to the sink in batches.

- ``enqueue`` only appends to the queue and stamps the event
- A flush is triggered when the queue reaches ``batch_size`` (the
  background worker is woken, or a one-off flush thread is started if
  the worker is not running) or every ``flush_interval_ms``
- Each bulk write is bounded by ``write_timeout_ms``
- A failed or timed-out batch is appended, event by event, to the local
  fallback store; callers never see persistence errors

Delivery is at-least-once to some store: a write that times out but
later lands server-side may be duplicated by redelivery.
"""

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from threading import Lock, Thread
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger

from eduguard.audit.fallback import LocalFallbackStore
from eduguard.audit.sinks import AuditSink
from eduguard.core.config import SecuritySettings
from eduguard.core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL_MS,
    DEFAULT_QUEUE_WARNING_SIZE,
    DEFAULT_WRITE_TIMEOUT_MS,
)
from eduguard.core.exceptions import AuditSinkError
from eduguard.models.events import AuditEvent
from eduguard.observability.tracing import get_tracer
from eduguard.utils.periodic import PeriodicWorker

tracer = get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditBatchProcessor:
    """
    Size-or-time batching writer in front of an AuditSink.

    Example:
        >>> processor = AuditBatchProcessor(InMemoryAuditSink(), batch_size=10)
        >>> processor.start()
        >>> processor.enqueue(event)
        >>> processor.stop()   # cancels the timer and flushes what is left
    """

    def __init__(
        self,
        sink: AuditSink,
        fallback: Optional[LocalFallbackStore] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        write_timeout_ms: int = DEFAULT_WRITE_TIMEOUT_MS,
        queue_warning_size: int = DEFAULT_QUEUE_WARNING_SIZE,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize batch processor.

        Args:
            sink: Store the batches are written to
            fallback: Store failed batches are routed to (default: in-memory)
            batch_size: Queue length that triggers a flush, and the bulk write size
            flush_interval_ms: Period of the time-based flush
            write_timeout_ms: Upper bound on a single bulk write
            queue_warning_size: Queue length at which growth is logged
            clock: Source of UTC timestamps for enqueued events
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.sink = sink
        self.fallback = fallback if fallback is not None else LocalFallbackStore()
        self.batch_size = batch_size
        self.flush_interval_ms = flush_interval_ms
        self.write_timeout = write_timeout_ms / 1000.0
        self.queue_warning_size = queue_warning_size
        self._clock = clock or _utcnow

        self._queue: Deque[AuditEvent] = deque()
        self._queue_lock = Lock()
        self._flush_lock = Lock()
        self._last_timestamp: Optional[datetime] = None

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = Lock()
        self._worker = PeriodicWorker(
            self.flush,
            interval=flush_interval_ms / 1000.0,
            name="audit-flush"
        )

        self._counters: Dict[str, int] = {
            "enqueued": 0,
            "flushed": 0,
            "fallback": 0,
            "flushes": 0,
            "failures": 0,
            "redelivered": 0,
        }

    @classmethod
    def from_settings(
        cls,
        settings: SecuritySettings,
        sink: AuditSink,
        fallback: Optional[LocalFallbackStore] = None
    ) -> "AuditBatchProcessor":
        if fallback is None:
            fallback = LocalFallbackStore(
                path=settings.fallback_path,
                capacity=settings.fallback_capacity
            )
        return cls(
            sink=sink,
            fallback=fallback,
            batch_size=settings.batch_size,
            flush_interval_ms=settings.flush_interval_ms,
            write_timeout_ms=settings.write_timeout_ms,
            queue_warning_size=settings.queue_warning_size
        )

    # ===== Lifecycle =====

    def start(self) -> None:
        """Start the background flush worker."""
        self._worker.start()
        logger.info(
            f"Audit batch processor started (batch_size={self.batch_size}, "
            f"flush_interval={self.flush_interval_ms}ms)"
        )

    def stop(self) -> None:
        """Cancel the flush worker, flush what is queued, release the writer thread."""
        self._worker.stop()
        flushed = self.flush()
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
        logger.info(f"Audit batch processor stopped ({flushed} events flushed on shutdown)")

    @property
    def running(self) -> bool:
        return self._worker.running

    def __enter__(self) -> "AuditBatchProcessor":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # ===== Queue =====

    def enqueue(self, event: AuditEvent) -> AuditEvent:
        """
        Stamp ``event`` with the enqueue time and append it to the queue.

        Timestamps never go backwards within one processor, even if the
        wall clock does.

        Returns:
            The stamped event as it will be persisted
        """
        with self._queue_lock:
            now = self._clock()
            if self._last_timestamp is not None and now < self._last_timestamp:
                now = self._last_timestamp
            self._last_timestamp = now

            stamped = event.model_copy(update={"timestamp": now})
            self._queue.append(stamped)
            self._counters["enqueued"] += 1
            size = len(self._queue)

        if size >= self.queue_warning_size and size % self.queue_warning_size == 0:
            logger.warning(f"Audit queue is growing: {size} events pending")

        if size >= self.batch_size:
            if self._worker.running:
                self._worker.wake()
            elif not self._flush_lock.locked():
                Thread(target=self.flush, name="audit-flush-now", daemon=True).start()

        return stamped

    @property
    def pending_count(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    # ===== Flush =====

    def flush(self) -> int:
        """
        Drain the queue in batches of up to ``batch_size``.

        Only one flush runs at a time; a call made while another flush is
        in progress returns 0 immediately.

        Returns:
            Number of events taken off the queue
        """
        if not self._flush_lock.acquire(blocking=False):
            return 0

        try:
            taken = 0
            while True:
                with self._queue_lock:
                    if not self._queue:
                        break
                    count = min(self.batch_size, len(self._queue))
                    batch = [self._queue.popleft() for _ in range(count)]

                taken += len(batch)
                self._write_batch(batch)

            return taken
        finally:
            self._flush_lock.release()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-writer")
            return self._executor

    def _insert(self, records: List[Dict[str, Any]]) -> None:
        """
        Run one bulk insert with the write timeout.

        Raises:
            AuditSinkError: On timeout or any sink failure
        """
        future = self._get_executor().submit(self.sink.insert, records)
        try:
            future.result(timeout=self.write_timeout)
        except FuturesTimeout:
            future.cancel()
            raise AuditSinkError(
                f"Audit write timed out after {self.write_timeout:.1f}s",
                details={"records": len(records)}
            )
        except AuditSinkError:
            raise
        except Exception as e:
            raise AuditSinkError(
                f"Audit write failed: {type(e).__name__}: {e}",
                details={"records": len(records)}
            ) from e

    def _write_batch(self, batch: List[AuditEvent]) -> None:
        records = [event.to_record() for event in batch]

        with tracer.start_as_current_span("audit.flush_batch") as span:
            span.set_attribute("audit.batch_size", len(records))
            try:
                self._insert(records)
            except AuditSinkError as e:
                span.set_attribute("audit.fallback", True)
                self.fallback.extend(records)
                with self._queue_lock:
                    self._counters["flushes"] += 1
                    self._counters["failures"] += 1
                    self._counters["fallback"] += len(records)
                logger.error(
                    f"Failed to write {len(records)} audit events, "
                    f"routed to fallback store: {e.message}"
                )
                return

        with self._queue_lock:
            self._counters["flushes"] += 1
            self._counters["flushed"] += len(records)
        logger.debug(f"Flushed {len(records)} audit events")

    def redeliver_fallback(self) -> int:
        """
        Move records from the fallback store back to the sink.

        Records leave the fallback store only after their batch was
        written; the first failed batch stops redelivery.

        Returns:
            Number of records redelivered
        """
        if not self._flush_lock.acquire(blocking=False):
            return 0

        try:
            delivered = 0
            while True:
                records = self.fallback.peek(self.batch_size)
                if not records:
                    break
                try:
                    self._insert(records)
                except AuditSinkError as e:
                    logger.warning(f"Fallback redelivery stopped after {delivered} records: {e.message}")
                    break
                delivered += self.fallback.discard(records)

            if delivered:
                with self._queue_lock:
                    self._counters["redelivered"] += delivered
                logger.info(f"Redelivered {delivered} audit events from the fallback store")
            return delivered
        finally:
            self._flush_lock.release()

    def stats(self) -> Dict[str, int]:
        """Counters plus current queue and fallback sizes."""
        with self._queue_lock:
            result = dict(self._counters)
            result["pending"] = len(self._queue)
        result["fallback_size"] = len(self.fallback)
        return result
