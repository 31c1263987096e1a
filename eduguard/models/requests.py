"""
Request Models

Pydantic models for audit filters, export options, file metadata,
and the bodies accepted by the HTTP adapter.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from eduguard.models.events import AuditAction, ResourceType, ensure_utc
from eduguard.core.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT


class InputKind(str, Enum):
    """Field family an input is validated as."""

    GENERIC = "generic"
    TITLE = "title"
    CONTENT = "content"
    FILE = "file"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


class FileMetadata(BaseModel):
    """Metadata of an uploaded file; ``type`` is accepted as an alias of ``mime_type``."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str
    size: int
    mime_type: str = Field(alias="type")


class AuditLogFilter(BaseModel):
    """
    Conjunction of optional predicates over persisted audit events.

    Results are paged with ``limit`` + ``offset`` and ordered newest first.
    """

    user_id: Optional[str] = None
    action: Optional[AuditAction] = None
    success: Optional[bool] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT)
    offset: int = Field(default=0, ge=0)

    @field_validator('date_from', 'date_to')
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode='after')
    def check_range(self) -> "AuditLogFilter":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be later than date_to")
        return self


class AuditExportOptions(BaseModel):
    """Options for exporting audit events as JSON or CSV."""

    format: ExportFormat = ExportFormat.JSON
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    actions: Optional[List[AuditAction]] = None
    resources: Optional[List[ResourceType]] = None
    user_ids: Optional[List[str]] = None
    include_metadata: bool = False

    @field_validator('date_from', 'date_to')
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class ValidateInputRequest(BaseModel):
    """Body of POST /security/validate."""

    kind: InputKind = InputKind.GENERIC
    value: Any = Field(..., description="Text to validate, or file metadata for kind=file")


class LogEventRequest(BaseModel):
    """Body of POST /audit/events."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: Optional[str] = None
    action: AuditAction
    resource_type: ResourceType = ResourceType.SYSTEM
    resource_name: Optional[str] = Field(default=None, max_length=255)
    resource_id: str = Field(default="", max_length=255)
    success: bool = True
    error_message: Optional[str] = Field(default=None, max_length=2000)
    details: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
