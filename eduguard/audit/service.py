"""
Audit Service

Composition of the batch processor (write path) and the query service
(read path), with typed helpers for the events the platform records
most often.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from eduguard.audit.fallback import LocalFallbackStore
from eduguard.audit.processor import AuditBatchProcessor
from eduguard.audit.query import AuditQueryService
from eduguard.audit.sinks import AuditSink, InMemoryAuditSink
from eduguard.core.config import SecuritySettings
from eduguard.core.logging_config import add_user_context
from eduguard.models.events import AuditAction, AuditEvent, AuditResource, ResourceType
from eduguard.models.requests import AuditExportOptions, AuditLogFilter
from eduguard.models.responses import AuditStats


class AuditService:
    """
    Audit logging and querying over one sink.

    Example:
        >>> audit = AuditService.from_settings(SecuritySettings(), InMemoryAuditSink())
        >>> audit.start()
        >>> audit.log_document_access("u1", "doc-42", AuditAction.DOCUMENT_VIEW)
        >>> audit.stop()
    """

    def __init__(self, processor: AuditBatchProcessor, query_service: Optional[AuditQueryService] = None):
        self.processor = processor
        self.queries = query_service or AuditQueryService(processor.sink)

    @classmethod
    def from_settings(
        cls,
        settings: SecuritySettings,
        sink: Optional[AuditSink] = None,
        fallback: Optional[LocalFallbackStore] = None
    ) -> "AuditService":
        sink = sink if sink is not None else InMemoryAuditSink()
        return cls(AuditBatchProcessor.from_settings(settings, sink, fallback))

    @property
    def sink(self) -> AuditSink:
        return self.processor.sink

    @property
    def fallback(self) -> LocalFallbackStore:
        return self.processor.fallback

    # ===== Lifecycle =====

    def start(self) -> None:
        self.processor.start()

    def stop(self) -> None:
        self.processor.stop()
        self.sink.close()

    def flush(self) -> int:
        return self.processor.flush()

    # ===== Write path =====

    def log_event(self, event: AuditEvent) -> AuditEvent:
        """Enqueue an event; returns it stamped with its timestamp."""
        stamped = self.processor.enqueue(event)
        add_user_context(stamped.user_id).debug(f"Audit event queued: {stamped.action.value}")
        return stamped

    def log_document_access(
        self,
        user_id: str,
        document_id: str,
        action: AuditAction,
        success: bool = True,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AuditEvent:
        """Record a document operation; ``details['document_title']`` names the resource."""
        details = details or {}
        return self.log_event(AuditEvent(
            user_id=user_id,
            action=action,
            resource=AuditResource(type=ResourceType.DOCUMENT, name=details.get("document_title")),
            resource_id=document_id,
            success=success,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent
        ))

    def log_permission_change(
        self,
        user_id: str,
        target_resource_id: str,
        action: AuditAction,
        details: Dict[str, Any],
        success: bool = True,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AuditEvent:
        """Record a grant, revoke or update of a permission."""
        return self.log_event(AuditEvent(
            user_id=user_id,
            action=action,
            resource=AuditResource(type=ResourceType.PERMISSION, name=details.get("resource_name")),
            resource_id=target_resource_id,
            success=success,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent
        ))

    def log_chat_interaction(
        self,
        user_id: str,
        session_id: str,
        action: AuditAction,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AuditEvent:
        return self.log_event(AuditEvent(
            user_id=user_id,
            action=action,
            resource=AuditResource(type=ResourceType.CHAT, name=f"Session {session_id}"),
            resource_id=session_id,
            success=True,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent
        ))

    def log_security_event(
        self,
        user_id: Optional[str],
        action: AuditAction,
        resource_id: str = "",
        success: bool = False,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AuditEvent:
        """Record a security-relevant event against the system resource."""
        if success and error_message:
            logger.debug(f"Dropping error message from successful security event {action.value}")
            error_message = None

        return self.log_event(AuditEvent(
            user_id=user_id,
            action=action,
            resource=AuditResource(type=ResourceType.SYSTEM, name="Security Event"),
            resource_id=resource_id,
            success=success,
            error_message=error_message,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent
        ))

    # ===== Read path =====

    def query(self, filter: Optional[AuditLogFilter] = None) -> List[AuditEvent]:
        return self.queries.query(filter)

    def stats(self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> AuditStats:
        return self.queries.stats(date_from, date_to)

    def export(self, options: Optional[AuditExportOptions] = None) -> str:
        return self.queries.export(options)

    def fallback_events(self) -> List[AuditEvent]:
        """Events currently held in the local fallback store, oldest first."""
        events = []
        for record in self.fallback.items():
            try:
                events.append(AuditEvent.from_record(record))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed fallback record: {e}")
        return events

    def redeliver_fallback(self) -> int:
        return self.processor.redeliver_fallback()
