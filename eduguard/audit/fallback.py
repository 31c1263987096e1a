"""
Local Fallback Store

Bounded, durable holding area for audit records whose bulk write to the
sink failed. Records are kept in insertion order in memory and mirrored
to a JSON file that is rewritten atomically on every change. When the
store is full the oldest record is dropped and a warning is logged.
"""

import json
import os
import tempfile
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Dict, Iterable, List, Optional

from loguru import logger

from eduguard.core.constants import DEFAULT_FALLBACK_CAPACITY


class LocalFallbackStore:
    """
    Capacity-bounded fallback store.

    Args:
        path: JSON file to mirror the store to (None keeps it in memory only)
        capacity: Maximum number of records kept

    Example:
        >>> store = LocalFallbackStore("audit_fallback.json", capacity=100)
        >>> store.append(event.to_record())
        >>> len(store)
        1
    """

    def __init__(self, path: Optional[str] = None, capacity: int = DEFAULT_FALLBACK_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")

        self.capacity = capacity
        self.path = Path(path) if path else None
        self._records: Deque[Dict[str, Any]] = deque()
        self._lock = Lock()
        self.evicted = 0

        if self.path is not None:
            self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, 'r') as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read audit fallback file {self.path}: {e}")
            return

        if not isinstance(stored, list):
            logger.error(f"Ignoring audit fallback file {self.path}: expected a JSON list")
            return

        for record in stored[-self.capacity:]:
            if isinstance(record, dict):
                self._records.append(record)

        if self._records:
            logger.info(f"Loaded {len(self._records)} audit records from fallback file {self.path}")

    def _persist(self) -> None:
        """Rewrite the mirror file; called with the lock held."""
        if self.path is None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, 'w') as f:
                json.dump(list(self._records), f, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            # In-memory copy is still authoritative for this process
            logger.error(f"Could not write audit fallback file {self.path}: {e}")

    def _add(self, record: Dict[str, Any]) -> None:
        if len(self._records) >= self.capacity:
            dropped = self._records.popleft()
            self.evicted += 1
            logger.warning(
                f"Audit fallback store full ({self.capacity}); dropping oldest record "
                f"action={dropped.get('action')} created_at={dropped.get('created_at')}"
            )
        self._records.append(dict(record))

    def append(self, record: Dict[str, Any]) -> None:
        """Add one record, evicting the oldest if the store is full."""
        with self._lock:
            self._add(record)
            self._persist()

    def extend(self, records: Iterable[Dict[str, Any]]) -> None:
        """Add records one by one in order, with a single file write."""
        with self._lock:
            for record in records:
                self._add(record)
            self._persist()

    def items(self) -> List[Dict[str, Any]]:
        """Snapshot of the stored records, oldest first."""
        with self._lock:
            return [dict(r) for r in self._records]

    def peek(self, limit: int) -> List[Dict[str, Any]]:
        """The ``limit`` oldest records, without removing them."""
        with self._lock:
            return [dict(r) for _, r in zip(range(limit), self._records)]

    def discard(self, records: List[Dict[str, Any]]) -> int:
        """
        Remove records previously returned by ``peek``.

        Only records still at the head of the store are removed; ones that
        were evicted in the meantime are skipped.

        Returns:
            Number of records removed
        """
        with self._lock:
            removed = 0
            for record in records:
                if self._records and self._records[0] == record:
                    self._records.popleft()
                    removed += 1
            if removed:
                self._persist()
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
