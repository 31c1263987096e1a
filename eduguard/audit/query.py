"""
Audit Query Service

Read path over persisted audit events: filtered and paged queries,
aggregate statistics, and JSON / CSV export.

Unlike the write path, read failures are reported to the caller as
AuditQueryError.
"""

import csv
import io
import json
from collections import Counter
from datetime import datetime
from typing import List, Optional

from loguru import logger

from eduguard.audit.sinks import AuditSink
from eduguard.core.constants import EXPORT_LIMIT, MAX_QUERY_LIMIT, RECENT_EVENTS_LIMIT
from eduguard.core.exceptions import AuditQueryError, AuditSinkError
from eduguard.models.events import AuditEvent, ensure_utc
from eduguard.models.requests import AuditExportOptions, AuditLogFilter, ExportFormat
from eduguard.models.responses import AuditStats


CSV_HEADERS = [
    "Timestamp",
    "User ID",
    "Action",
    "Resource Type",
    "Resource ID",
    "Success",
    "IP Address",
    "User Agent",
    "Error Message",
]


class AuditQueryService:
    """
    Query, aggregate and export audit events stored in a sink.

    Example:
        >>> service = AuditQueryService(sink)
        >>> service.query(AuditLogFilter(user_id="u1", limit=20))
        >>> service.stats().success_rate
        100.0
    """

    def __init__(self, sink: AuditSink, page_size: int = MAX_QUERY_LIMIT):
        if not 1 <= page_size <= MAX_QUERY_LIMIT:
            raise ValueError(f"page_size must be between 1 and {MAX_QUERY_LIMIT}")
        self.sink = sink
        self.page_size = page_size

    def query(self, filter: Optional[AuditLogFilter] = None) -> List[AuditEvent]:
        """
        Return events matching ``filter``, newest first.

        Raises:
            AuditQueryError: If the sink cannot be read or returns bad rows
        """
        filter = filter or AuditLogFilter()
        try:
            records = self.sink.select(filter)
        except AuditSinkError as e:
            raise AuditQueryError(f"Failed to read audit events: {e.message}", details=e.details) from e

        try:
            events = [AuditEvent.from_record(r) for r in records]
        except (KeyError, ValueError) as e:
            raise AuditQueryError(f"Invalid audit record returned by sink: {e}") from e

        logger.debug(f"Audit query returned {len(events)} events")
        return events

    def stats(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> AuditStats:
        """
        Aggregate every event in the optional date range.

        The sink is read page by page until it is exhausted. ``success_rate``
        is a percentage (0-100), and 0 when there are no events.
        """
        by_action: Counter = Counter()
        by_resource: Counter = Counter()
        by_user: Counter = Counter()
        recent: List[AuditEvent] = []
        security_events: List[AuditEvent] = []
        total = successful = 0

        offset = 0
        while True:
            page = self.query(AuditLogFilter(
                date_from=ensure_utc(date_from),
                date_to=ensure_utc(date_to),
                limit=self.page_size,
                offset=offset
            ))

            for event in page:
                total += 1
                successful += event.success
                by_action[event.action.value] += 1
                by_resource[event.resource.type.value] += 1
                by_user[event.user_id] += 1
                if len(recent) < RECENT_EVENTS_LIMIT:
                    recent.append(event)
                if event.is_security_event and len(security_events) < RECENT_EVENTS_LIMIT:
                    security_events.append(event)

            if len(page) < self.page_size:
                break
            offset += len(page)

        if total == 0:
            return AuditStats()

        return AuditStats(
            total_events=total,
            events_by_action=dict(by_action),
            events_by_resource=dict(by_resource),
            events_by_user=dict(by_user),
            success_rate=successful / total * 100,
            recent_activity=recent,
            security_events=security_events
        )

    def export(self, options: Optional[AuditExportOptions] = None) -> str:
        """
        Export events as JSON (indent 2) or CSV.

        At most EXPORT_LIMIT events are read; ``actions``, ``resources``
        and ``user_ids`` further restrict the result.
        """
        options = options or AuditExportOptions()
        events = self.query(AuditLogFilter(
            date_from=options.date_from,
            date_to=options.date_to,
            limit=EXPORT_LIMIT
        ))

        if options.actions:
            events = [e for e in events if e.action in options.actions]
        if options.resources:
            events = [e for e in events if e.resource.type in options.resources]
        if options.user_ids:
            events = [e for e in events if e.user_id in options.user_ids]

        logger.info(f"Exporting {len(events)} audit events as {options.format.value}")

        if options.format == ExportFormat.CSV:
            return self._to_csv(events, options.include_metadata)
        return json.dumps([e.model_dump(mode="json") for e in events], indent=2)

    @staticmethod
    def _to_csv(events: List[AuditEvent], include_metadata: bool = False) -> str:
        headers = list(CSV_HEADERS)
        if include_metadata:
            headers.append("Metadata")

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(headers)

        for event in events:
            row = [
                event.timestamp.isoformat() if event.timestamp else "",
                event.user_id,
                event.action.value,
                event.resource.type.value,
                event.resource_id,
                str(event.success).lower(),
                event.ip_address or "",
                event.user_agent or "",
                event.error_message or "",
            ]
            if include_metadata:
                row.append(json.dumps(event.metadata))
            writer.writerow(row)

        return buffer.getvalue()
