"""
Periodic Worker Module

Background daemon thread that runs a callable every ``interval`` seconds,
can be woken early, and can be cancelled at shutdown.

Used for the audit flush timer and the rate-limit record sweep.
"""

import threading
from typing import Callable, Optional
from loguru import logger


class PeriodicWorker:
    """
    Run ``func`` on a daemon thread every ``interval`` seconds.

    ``wake()`` runs the function as soon as the thread is free instead of
    waiting for the interval. Exceptions raised by ``func`` are logged and
    the loop keeps going.

    Example:
        >>> worker = PeriodicWorker(limiter.cleanup_expired, interval=60.0, name="rate-limit-sweep")
        >>> worker.start()
        >>> worker.stop()
    """

    def __init__(self, func: Callable[[], object], interval: float, name: str = "periodic-worker"):
        if interval <= 0:
            raise ValueError("Interval must be positive")

        self._func = func
        self.interval = interval
        self.name = name
        self._wake_event = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread (no-op if already running)."""
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._wake_event.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
            logger.debug(f"{self.name} started (interval={self.interval}s)")

    def wake(self) -> None:
        """Ask the worker to run now."""
        self._wake_event.set()

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the worker and wait for the thread to exit."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._wake_event.set()

        if thread is not threading.current_thread():
            thread.join(timeout=timeout)

        with self._lock:
            self._thread = None
        logger.debug(f"{self.name} stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.wait(timeout=self.interval)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            try:
                self._func()
            except Exception as e:
                logger.error(f"{self.name} iteration failed: {type(e).__name__}: {e}")
