"""
HTTP Routes

RESTful API endpoint definitions over the SecurityContext facade.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from loguru import logger
from pydantic import ValidationError

from eduguard.core.constants import APP_VERSION, MAX_QUERY_LIMIT, DEFAULT_QUERY_LIMIT
from eduguard.models.events import AuditAction, AuditEvent, AuditResource
from eduguard.models.requests import (
    AuditExportOptions,
    AuditLogFilter,
    ExportFormat,
    LogEventRequest,
    ValidateInputRequest,
)
from eduguard.models.responses import (
    AuditEventsResponse,
    AuditStats,
    BaseResponse,
    HealthResponse,
    ValidationResult,
    ViolationsResponse,
)
from eduguard.security.context import SecurityContext
from eduguard.security.rate_limiter import get_client_identifier


# Create router
router = APIRouter()


def get_security(request: Request) -> SecurityContext:
    """Dependency returning the application's SecurityContext."""
    return request.app.state.security


def _unprocessable(e: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=e.errors(include_url=False, include_context=False, include_input=False)
    )


@router.get("/health", response_model=HealthResponse)
async def health(security: SecurityContext = Depends(get_security)):
    """
    Health check endpoint.

    Returns server status, version, and the audit backlog.
    """
    return {
        "success": True,
        "version": APP_VERSION,
        "status": "ok",
        "message": "Server is healthy",
        "pending_events": security.audit.processor.pending_count,
        "fallback_events": len(security.audit.fallback),
    }


# ===== Security Endpoints =====

@router.post("/security/validate", response_model=ValidationResult)
async def validate_input(
    body: ValidateInputRequest,
    request: Request,
    security: SecurityContext = Depends(get_security)
):
    """
    Validate a value as generic text, title, content, or file metadata.

    Always answers 200; the verdict is in ``is_valid`` and ``errors``.
    """
    return security.validate_input(
        body.value,
        kind=body.kind,
        client_id=get_client_identifier(request),
        user_id=getattr(request.state, "user_id", None)
    )


@router.get("/security/rate-limit")
async def rate_limit_status(request: Request, security: SecurityContext = Depends(get_security)):
    """Current rate-limit window of the calling client."""
    client_id = get_client_identifier(request)
    info = security.rate_limit_status(client_id)
    return {
        "success": True,
        "client_id": client_id,
        "remaining": info.remaining,
        "reset_time": info.reset_time,
        "blocked": info.blocked or security.is_blocked(client_id),
        "security_level": security.security_level.value,
    }


@router.get("/security/violations", response_model=ViolationsResponse)
async def violations(request: Request, security: SecurityContext = Depends(get_security)):
    """Most recent security violations (last 10)."""
    return {
        "success": True,
        "violations": security.violations,
        "blocked": security.is_blocked(get_client_identifier(request)),
    }


# ===== Audit Endpoints =====

@router.post("/audit/events", response_model=BaseResponse, status_code=status.HTTP_202_ACCEPTED)
def log_event(
    body: LogEventRequest,
    request: Request,
    security: SecurityContext = Depends(get_security)
):
    """
    Report an audited action.

    The event is queued and written in the next batch.
    """
    try:
        event = AuditEvent(
            user_id=body.user_id,
            action=body.action,
            resource=AuditResource(type=body.resource_type, name=body.resource_name),
            resource_id=body.resource_id,
            success=body.success,
            error_message=body.error_message,
            details=body.details,
            metadata=body.metadata,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent")
        )
    except ValidationError as e:
        raise _unprocessable(e)

    if security.log_event(event) is None:
        return {"success": True, "message": "Audit logging is disabled"}

    return {"success": True, "message": f"Audit event {event.action.value} queued"}


@router.get("/audit/events", response_model=AuditEventsResponse)
def list_events(
    user_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    success: Optional[bool] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    offset: int = Query(default=0, ge=0),
    security: SecurityContext = Depends(get_security)
):
    """Query persisted audit events, newest first."""
    try:
        filter = AuditLogFilter(
            user_id=user_id,
            action=action,
            success=success,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset
        )
    except ValidationError as e:
        raise _unprocessable(e)

    events = security.query_events(filter)
    return {"success": True, "events": events, "count": len(events)}


@router.get("/audit/stats", response_model=AuditStats)
def audit_stats(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    security: SecurityContext = Depends(get_security)
):
    """Aggregate statistics over persisted audit events."""
    return security.get_stats(date_from, date_to)


@router.post("/audit/export")
def export_events(body: AuditExportOptions, security: SecurityContext = Depends(get_security)):
    """
    Export audit events as a JSON or CSV attachment.
    """
    payload = security.export_events(body)

    if body.format == ExportFormat.CSV:
        media_type, extension = "text/csv", "csv"
    else:
        media_type, extension = "application/json", "json"

    filename = f"audit-export-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}.{extension}"
    logger.info(f"Audit export generated: {filename}")

    return Response(
        content=payload,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get("/audit/fallback", response_model=AuditEventsResponse)
def fallback_events(security: SecurityContext = Depends(get_security)):
    """Events held in the local fallback store after failed writes."""
    events = security.fallback_events()
    return {"success": True, "events": events, "count": len(events)}


@router.post("/audit/fallback/redeliver", response_model=BaseResponse)
def redeliver_fallback(security: SecurityContext = Depends(get_security)):
    """Retry writing fallback events to the audit sink."""
    delivered = security.audit.redeliver_fallback()
    return {
        "success": True,
        "message": f"Redelivered {delivered} events, {len(security.audit.fallback)} remaining"
    }
