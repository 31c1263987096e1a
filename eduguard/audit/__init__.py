"""
Audit Module

Batched, fallback-protected audit logging and the query / export read path.
"""

from .sinks import AuditSink, InMemoryAuditSink, RestAuditSink, create_sink
from .fallback import LocalFallbackStore
from .processor import AuditBatchProcessor
from .query import AuditQueryService
from .service import AuditService

__all__ = [
    "AuditSink",
    "InMemoryAuditSink",
    "RestAuditSink",
    "create_sink",
    "LocalFallbackStore",
    "AuditBatchProcessor",
    "AuditQueryService",
    "AuditService",
]
