"""
Rate Limiting Module

Provides per-client fixed-window rate limiting for client actions.

Each client identifier gets one counter record. A window starts with the
first request after the previous window expired; every request increments
the counter and requests beyond ``max_requests`` are reported as blocked
until the window resets.

This is a fixed-window counter, not a sliding window or token bucket: a
client can get up to ``2 * max_requests`` through around a window
boundary. That is the accepted policy.
"""

import time
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Optional
from dataclasses import dataclass
from loguru import logger

from eduguard.core.constants import DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_MS
from eduguard.models.responses import RateLimitInfo
from eduguard.utils.periodic import PeriodicWorker


@dataclass
class RateLimitRecord:
    """
    Counter state for one client.

    Attributes:
        window_start: Start of the current window (epoch seconds)
        count: Requests seen in the current window
        limit: Requests allowed per window
        window_ms: Window length in milliseconds
    """
    window_start: float
    count: int
    limit: int
    window_ms: int

    @property
    def window_end(self) -> float:
        return self.window_start + self.window_ms / 1000.0

    def expired(self, now: float) -> bool:
        return now >= self.window_end


class RateLimiter:
    """
    Fixed-window rate limiter.

    Thread-safe for concurrent use; ``check`` never raises.

    Example:
        >>> limiter = RateLimiter(max_requests=100, window_ms=15 * 60 * 1000)
        >>> info = limiter.check('ip:10.0.0.7')
        >>> if info.blocked:
        ...     # Reject with 429 Too Many Requests
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize rate limiter.

        Args:
            max_requests: Number of requests allowed per window
            window_ms: Window length in milliseconds
            clock: Time source returning epoch seconds (default: time.time)
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")

        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock or time.time
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = Lock()
        self._sweeper: Optional[PeriodicWorker] = None

        logger.info(
            f"Rate limiter initialized: {max_requests} requests per {window_ms / 1000:.0f} seconds"
        )

    def check(self, client_id: str) -> RateLimitInfo:
        """
        Count a request for ``client_id`` and decide whether it is admitted.

        1. Start a new window if there is no record or the window expired
        2. Increment the counter
        3. blocked = count > max_requests

        Args:
            client_id: Identifier for rate limiting (e.g., user ID, IP address)

        Returns:
            RateLimitInfo with remaining requests, reset time and the verdict

        Example:
            >>> limiter = RateLimiter(max_requests=3, window_ms=1000)
            >>> [limiter.check('c1').blocked for _ in range(4)]
            [False, False, False, True]
        """
        with self._lock:
            now = self._clock()
            record = self._records.get(client_id)

            if record is None or record.expired(now):
                record = RateLimitRecord(
                    window_start=now,
                    count=0,
                    limit=self.max_requests,
                    window_ms=self.window_ms
                )
                self._records[client_id] = record

            record.count += 1
            count, limit = record.count, record.limit
            blocked = count > limit
            remaining = max(0, limit - count)
            reset_at = record.window_end

        if blocked:
            logger.warning(
                f"Rate limit exceeded for '{client_id}': "
                f"{count} requests, limit {limit}"
            )

        return RateLimitInfo(
            remaining=remaining,
            reset_time=datetime.fromtimestamp(reset_at, tz=timezone.utc),
            blocked=blocked
        )

    def permissive(self) -> RateLimitInfo:
        """Result reported when rate limiting is disabled."""
        reset_at = self._clock() + self.window_ms / 1000.0
        return RateLimitInfo(
            remaining=self.max_requests,
            reset_time=datetime.fromtimestamp(reset_at, tz=timezone.utc),
            blocked=False
        )

    def status(self, client_id: str) -> RateLimitInfo:
        """Report the client's current window without counting a request."""
        with self._lock:
            now = self._clock()
            record = self._records.get(client_id)
            if record is None or record.expired(now):
                return RateLimitInfo(
                    remaining=self.max_requests,
                    reset_time=datetime.fromtimestamp(now + self.window_ms / 1000.0, tz=timezone.utc),
                    blocked=False
                )
            return RateLimitInfo(
                remaining=max(0, record.limit - record.count),
                reset_time=datetime.fromtimestamp(record.window_end, tz=timezone.utc),
                blocked=record.count > record.limit
            )

    def get_record(self, client_id: str) -> Optional[RateLimitRecord]:
        """Return a copy of the client's current record, if any."""
        with self._lock:
            record = self._records.get(client_id)
            if record is None:
                return None
            return RateLimitRecord(
                window_start=record.window_start,
                count=record.count,
                limit=record.limit,
                window_ms=record.window_ms
            )

    def reset(self, client_id: str) -> None:
        """
        Reset rate limit for a specific key.

        Useful for testing or manual override.
        """
        with self._lock:
            if client_id in self._records:
                del self._records[client_id]
                logger.info(f"Rate limit reset for '{client_id}'")

    def cleanup_expired(self) -> int:
        """
        Remove records whose window has expired.

        Records inside their active window are never removed, so the
        sweep only bounds memory and never changes a verdict.

        Returns:
            Number of records removed
        """
        with self._lock:
            now = self._clock()
            expired = [
                client_id for client_id, record in self._records.items()
                if record.expired(now)
            ]

            for client_id in expired:
                del self._records[client_id]

        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired rate limit records")

        return len(expired)

    def start_cleanup(self, interval_ms: int = 60000) -> None:
        """Start the periodic sweep of expired records."""
        if self._sweeper is None:
            self._sweeper = PeriodicWorker(
                self.cleanup_expired,
                interval=interval_ms / 1000.0,
                name="rate-limit-sweep"
            )
        self._sweeper.start()

    def stop_cleanup(self) -> None:
        """Cancel the periodic sweep."""
        if self._sweeper is not None:
            self._sweeper.stop()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def get_client_identifier(request) -> str:
    """
    Extract client identifier from request for rate limiting.

    Priority:
    1. User ID from authentication (if available)
    2. Explicit client id header
    3. IP address from request

    Args:
        request: FastAPI / Starlette request object

    Returns:
        Client identifier string
    """
    user_id = getattr(request.state, 'user_id', None)
    if user_id:
        return f"user:{user_id}"

    header_id = request.headers.get('x-client-id')
    if header_id:
        return f"client:{header_id[:64]}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"
