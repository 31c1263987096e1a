"""
Audit Event Model

Immutable audit event records, the closed action/resource vocabularies,
bounded metadata normalization, and the conversion to and from the
storage shape of the ``audit_logs`` table.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from eduguard.core.constants import (
    MAX_METADATA_DEPTH,
    MAX_METADATA_KEYS,
    MAX_METADATA_STRING_LENGTH,
)


class ResourceType(str, Enum):
    """Kind of object an audited action was performed on."""

    DOCUMENT = "document"
    FOLDER = "folder"
    PERMISSION = "permission"
    CHAT = "chat"
    SEARCH = "search"
    USER = "user"
    SYSTEM = "system"


class AuditAction(str, Enum):
    """Closed set of audited actions."""

    # Document actions
    DOCUMENT_CREATE = "document_create"
    DOCUMENT_VIEW = "document_view"
    DOCUMENT_UPDATE = "document_update"
    DOCUMENT_DELETE = "document_delete"
    DOCUMENT_DOWNLOAD = "document_download"
    DOCUMENT_UPLOAD = "document_upload"
    DOCUMENT_PROCESS = "document_process"

    # Folder actions
    FOLDER_CREATE = "folder_create"
    FOLDER_VIEW = "folder_view"
    FOLDER_UPDATE = "folder_update"
    FOLDER_DELETE = "folder_delete"
    FOLDER_MOVE = "folder_move"

    # Permission actions
    PERMISSION_GRANT = "permission_grant"
    PERMISSION_REVOKE = "permission_revoke"
    PERMISSION_UPDATE = "permission_update"
    PERMISSION_CHECK = "permission_check"
    BULK_PERMISSION_ASSIGN = "bulk_permission_assign"

    # Chat actions
    CHAT_START = "chat_start"
    CHAT_MESSAGE = "chat_message"
    CHAT_SEARCH = "chat_search"
    CHAT_EXPORT = "chat_export"

    # Search actions
    SEARCH_EXECUTE = "search_execute"
    SEARCH_FILTER = "search_filter"

    # User actions
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_PROFILE_UPDATE = "user_profile_update"

    # System actions
    SYSTEM_BACKUP = "system_backup"
    SYSTEM_MAINTENANCE = "system_maintenance"
    SYSTEM_ERROR = "system_error"

    # Security actions
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    SECURITY_VIOLATION = "security_violation"


SECURITY_ACTIONS = frozenset({
    AuditAction.UNAUTHORIZED_ACCESS,
    AuditAction.RATE_LIMIT_EXCEEDED,
    AuditAction.SUSPICIOUS_ACTIVITY,
    AuditAction.SECURITY_VIOLATION,
})

ANONYMOUS_USER = "anonymous"

MetadataValue = Union[str, int, float, bool, None, Dict[str, "MetadataValue"]]

TRUNCATED_MARKER = "[truncated]"


def _normalize_value(value: Any, depth: int, max_depth: int, max_keys: int, max_string: int) -> MetadataValue:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else value[:max_string] + "..."
    if isinstance(value, Enum):
        return _normalize_value(value.value, depth, max_depth, max_keys, max_string)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        if depth >= max_depth:
            return TRUNCATED_MARKER
        return normalize_metadata(value, max_depth, max_keys, max_string, _depth=depth + 1)
    if isinstance(value, (list, tuple, set)):
        text = json.dumps(list(value), default=str)
        return text if len(text) <= max_string else text[:max_string] + "..."
    return _normalize_value(str(value), depth, max_depth, max_keys, max_string)


def normalize_metadata(
    data: Optional[Dict[Any, Any]],
    max_depth: int = MAX_METADATA_DEPTH,
    max_keys: int = MAX_METADATA_KEYS,
    max_string: int = MAX_METADATA_STRING_LENGTH,
    _depth: int = 1,
) -> Dict[str, MetadataValue]:
    """
    Reduce an arbitrary mapping to a bounded JSON-safe map.

    Keys become strings; values are restricted to str/int/float/bool/None
    or nested maps. Maps nested deeper than ``max_depth`` are replaced by
    a marker, maps with more than ``max_keys`` entries keep the first
    ``max_keys`` and record how many were dropped, long strings are cut,
    and sequences or unknown objects are stringified. Never raises.

    Example:
        >>> normalize_metadata({"tags": ["a", "b"], "n": 1})
        {'tags': '["a", "b"]', 'n': 1}
    """
    if not data:
        return {}
    if not isinstance(data, dict):
        return {"value": _normalize_value(data, _depth, max_depth, max_keys, max_string)}

    result: Dict[str, MetadataValue] = {}
    items = list(data.items())
    for key, value in items[:max_keys]:
        result[str(key)] = _normalize_value(value, _depth, max_depth, max_keys, max_string)
    if len(items) > max_keys:
        result["_truncated_keys"] = len(items) - max_keys
    return result


class AuditResource(BaseModel):
    """The object an audited action was performed on."""

    model_config = ConfigDict(frozen=True)

    type: ResourceType
    name: Optional[str] = None
    path: Optional[str] = None


class AuditEvent(BaseModel):
    """
    Immutable record of one user or system action and its outcome.

    ``timestamp`` is left empty at the call site and assigned by the
    batch processor when the event is enqueued.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    user_id: str = ANONYMOUS_USER
    action: AuditAction
    resource: AuditResource
    resource_id: str = ""
    success: bool
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator('user_id', mode='before')
    @classmethod
    def default_anonymous(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return ANONYMOUS_USER
        return v

    @field_validator('resource_id', mode='before')
    @classmethod
    def empty_resource_id(cls, v: Any) -> Any:
        return "" if v is None else str(v)

    @field_validator('details', 'metadata', mode='before')
    @classmethod
    def bound_metadata(cls, v: Any) -> Dict[str, Any]:
        return normalize_metadata(v)

    @model_validator(mode='after')
    def error_only_on_failure(self) -> "AuditEvent":
        if self.success and self.error_message:
            raise ValueError("error_message is only allowed when success is False")
        return self

    @property
    def is_security_event(self) -> bool:
        return self.action in SECURITY_ACTIONS

    def to_record(self) -> Dict[str, Any]:
        """
        Convert to the storage shape of the audit_logs table.

        ``details`` and ``metadata`` stay as maps; the sink decides how
        to encode them (JSON columns for the REST sink).
        """
        created_at = self.timestamp or datetime.now(timezone.utc)
        return {
            "user_id": self.user_id,
            "action": self.action.value,
            "resource_type": self.resource.type.value,
            "resource_id": self.resource_id,
            "resource_name": self.resource.name,
            "success": self.success,
            "error_message": self.error_message,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": dict(self.details),
            "metadata": dict(self.metadata),
            "created_at": created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AuditEvent":
        """Rebuild an event from a stored audit_logs row."""
        details = record.get("details") or {}
        metadata = record.get("metadata") or {}
        if isinstance(details, str):
            details = json.loads(details)
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        created_at = record.get("created_at")
        if isinstance(created_at, str):
            created_at = parse_timestamp(created_at)

        success = bool(record.get("success"))
        return cls(
            user_id=record.get("user_id"),
            action=AuditAction(record["action"]),
            resource=AuditResource(
                type=ResourceType(record.get("resource_type") or ResourceType.SYSTEM.value),
                name=record.get("resource_name"),
            ),
            resource_id=record.get("resource_id") or "",
            success=success,
            error_message=None if success else record.get("error_message"),
            details=details,
            metadata=metadata,
            ip_address=record.get("ip_address"),
            user_agent=record.get("user_agent"),
            timestamp=created_at,
        )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes so comparisons never mix kinds."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
