"""
Audit Sink Module

Persistence collaborators for audit events. A sink stores records in the
shape produced by ``AuditEvent.to_record()`` and reads them back newest
first; it never updates or deletes.

- InMemoryAuditSink: thread-safe list, the default and the test double
- RestAuditSink: PostgREST-style ``audit_logs`` table over httpx
"""

import json
import os
from abc import ABC, abstractmethod
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from eduguard.core.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SINK_TABLE,
)
from eduguard.core.exceptions import AuditSinkError, ConfigurationError
from eduguard.models.events import parse_timestamp
from eduguard.models.requests import AuditLogFilter


class AuditSink(ABC):
    """Append-only store of audit records."""

    @abstractmethod
    def insert(self, records: List[Dict[str, Any]]) -> None:
        """
        Persist a batch of records in one write.

        Raises:
            AuditSinkError: If the batch could not be stored
        """

    @abstractmethod
    def select(self, filter: AuditLogFilter) -> List[Dict[str, Any]]:
        """
        Return records matching ``filter``, ordered by created_at descending.

        Raises:
            AuditSinkError: If the store cannot be read
        """

    def close(self) -> None:
        """Release any resources held by the sink."""


def _created_at(record: Dict[str, Any]) -> datetime:
    return parse_timestamp(record["created_at"])


def record_matches(record: Dict[str, Any], filter: AuditLogFilter) -> bool:
    """Check a stored record against every predicate set on ``filter``."""
    if filter.user_id is not None and record.get("user_id") != filter.user_id:
        return False
    if filter.action is not None and record.get("action") != filter.action.value:
        return False
    if filter.success is not None and bool(record.get("success")) != filter.success:
        return False
    if filter.date_from is not None or filter.date_to is not None:
        created_at = _created_at(record)
        if filter.date_from is not None and created_at < filter.date_from:
            return False
        if filter.date_to is not None and created_at > filter.date_to:
            return False
    return True


class InMemoryAuditSink(AuditSink):
    """
    Audit sink backed by a list.

    Example:
        >>> sink = InMemoryAuditSink()
        >>> sink.insert([event.to_record()])
        >>> sink.select(AuditLogFilter(user_id="u1"))
    """

    def __init__(self):
        self._records: List[Dict[str, Any]] = []
        self._lock = Lock()

    def insert(self, records: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._records.extend(dict(r) for r in records)

    def select(self, filter: AuditLogFilter) -> List[Dict[str, Any]]:
        with self._lock:
            matching = [dict(r) for r in self._records if record_matches(r, filter)]

        matching.sort(key=_created_at, reverse=True)
        return matching[filter.offset:filter.offset + filter.limit]

    @property
    def records(self) -> List[Dict[str, Any]]:
        """Snapshot of every stored record, in insertion order."""
        with self._lock:
            return [dict(r) for r in self._records]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RestAuditSink(AuditSink):
    """
    Audit sink writing to a PostgREST-style table endpoint.

    Records are POSTed as a JSON array to ``{base_url}/rest/v1/{table}``;
    reads use the ``eq.``/``gte.``/``lte.`` filter operators with
    ``order=created_at.desc``, ``limit`` and ``offset``.

    Example:
        >>> sink = RestAuditSink("https://db.example.org", api_key="...")
        >>> sink.insert([event.to_record()])
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        table: str = DEFAULT_SINK_TABLE,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize REST sink.

        Args:
            base_url: Base URL of the REST endpoint (without /rest/v1)
            api_key: Key sent as ``apikey`` header and bearer token
            table: Table name
            timeout: Request timeout in seconds (None = default)
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        if not base_url:
            raise ConfigurationError("REST audit sink requires a base_url", config_key="audit_sink.base_url")

        self.base_url = base_url.rstrip("/")
        self.table = table
        self.endpoint = f"{self.base_url}/rest/v1/{table}"

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.Client(
            headers=headers,
            timeout=httpx.Timeout(
                timeout=timeout or DEFAULT_REQUEST_TIMEOUT,
                connect=DEFAULT_CONNECT_TIMEOUT
            ),
            transport=transport
        )

        logger.info(f"REST audit sink initialized: {self.endpoint}")

    @staticmethod
    def _encode(record: Dict[str, Any]) -> Dict[str, Any]:
        encoded = dict(record)
        for key in ("details", "metadata"):
            encoded[key] = json.dumps(encoded.get(key) or {})
        return encoded

    @staticmethod
    def _decode(row: Dict[str, Any]) -> Dict[str, Any]:
        decoded = dict(row)
        for key in ("details", "metadata"):
            value = decoded.get(key)
            if isinstance(value, str):
                try:
                    decoded[key] = json.loads(value)
                except json.JSONDecodeError:
                    decoded[key] = {"raw": value}
        return decoded

    def insert(self, records: List[Dict[str, Any]]) -> None:
        if not records:
            return

        try:
            response = self._client.post(
                self.endpoint,
                json=[self._encode(r) for r in records],
                headers={"Prefer": "return=minimal"}
            )
        except httpx.HTTPError as e:
            raise AuditSinkError(
                f"Audit insert failed: {type(e).__name__}: {e}",
                details={"endpoint": self.endpoint, "records": len(records)}
            ) from e

        if response.status_code >= 300:
            raise AuditSinkError(
                f"Audit insert rejected with HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                details={"endpoint": self.endpoint, "records": len(records)}
            )

        logger.debug(f"Inserted {len(records)} audit records into {self.table}")

    def _params(self, filter: AuditLogFilter) -> List[tuple]:
        params = []
        if filter.user_id is not None:
            params.append(("user_id", f"eq.{filter.user_id}"))
        if filter.action is not None:
            params.append(("action", f"eq.{filter.action.value}"))
        if filter.success is not None:
            params.append(("success", f"eq.{str(filter.success).lower()}"))
        if filter.date_from is not None:
            params.append(("created_at", f"gte.{filter.date_from.isoformat()}"))
        if filter.date_to is not None:
            params.append(("created_at", f"lte.{filter.date_to.isoformat()}"))
        params.extend([
            ("select", "*"),
            ("order", "created_at.desc"),
            ("limit", str(filter.limit)),
            ("offset", str(filter.offset)),
        ])
        return params

    def select(self, filter: AuditLogFilter) -> List[Dict[str, Any]]:
        try:
            response = self._client.get(self.endpoint, params=self._params(filter))
        except httpx.HTTPError as e:
            raise AuditSinkError(
                f"Audit read failed: {type(e).__name__}: {e}",
                details={"endpoint": self.endpoint}
            ) from e

        if response.status_code != 200:
            raise AuditSinkError(
                f"Audit read rejected with HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                details={"endpoint": self.endpoint}
            )

        try:
            rows = response.json()
        except ValueError as e:
            raise AuditSinkError(
                "Audit read returned invalid JSON",
                status_code=response.status_code,
                response_body=response.text
            ) from e

        return [self._decode(row) for row in rows]

    def close(self) -> None:
        if not self._client.is_closed:
            self._client.close()
            logger.debug("REST audit sink client closed")


def create_sink(config_obj) -> AuditSink:
    """
    Build the sink described by the ``audit_sink`` section of a Config.

    EDUGUARD_SINK_URL / EDUGUARD_SINK_KEY from the environment take
    precedence over the file values.
    """
    sink_type = config_obj.get('audit_sink.type', default='memory', expected_type=str).lower()
    base_url = os.getenv('EDUGUARD_SINK_URL') or config_obj.get('audit_sink.base_url', default='')
    api_key = os.getenv('EDUGUARD_SINK_KEY') or config_obj.get('audit_sink.api_key', default='')

    if os.getenv('EDUGUARD_SINK_URL') and sink_type == 'memory':
        sink_type = 'rest'

    if sink_type == 'memory':
        logger.info("Using in-memory audit sink")
        return InMemoryAuditSink()
    if sink_type == 'rest':
        return RestAuditSink(
            base_url=base_url,
            api_key=api_key or None,
            table=config_obj.get('audit_sink.table', default=DEFAULT_SINK_TABLE, expected_type=str)
        )

    raise ConfigurationError(
        f"Unknown audit sink type: {sink_type}",
        config_key='audit_sink.type'
    )
