"""
Security API Routes — אירועי אבטחה, דוחות ובדיקת חסימה
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.api.dependencies.admin_auth import require_admin_api_key
from whatsapp_guard.api.dependencies.integrations import get_integration_or_404
from whatsapp_guard.core.config import settings
from whatsapp_guard.core.exceptions import ValidationException
from whatsapp_guard.core.validation import PhoneNumberValidator
from whatsapp_guard.db.database import get_db
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.db.models.security_event import SecurityEventType, SecuritySeverity
from whatsapp_guard.domain.services.security_audit_service import SecurityAuditService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class SecurityEventResponse(BaseModel):
    id: str
    event_type: SecurityEventType
    severity: SecuritySeverity
    integration_id: Optional[str]
    phone_number: Optional[str]
    details: dict[str, Any]
    created_at: datetime
    resolved: bool
    resolved_at: Optional[datetime]
    resolved_by: Optional[str]
    notes: Optional[str]

    class Config:
        from_attributes = True


class PhoneNumberCountResponse(BaseModel):
    phone_number: str
    count: int

    class Config:
        from_attributes = True


class SecurityReportResponse(BaseModel):
    """דוח אבטחה לטווח תאריכים"""
    integration_id: str
    date_from: datetime
    date_to: datetime
    summary: dict[str, int]
    critical_events: List[SecurityEventResponse]
    top_phone_numbers: List[PhoneNumberCountResponse]
    recommendations: List[str]


class BlockStatusResponse(BaseModel):
    phone_number: str
    blocked: bool


class ResolveEventRequest(BaseModel):
    resolved_by: str = Field(..., min_length=1, max_length=36)
    notes: Optional[str] = Field(None, max_length=2000)


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """העמודות שמורות כ-naive UTC; תאריך עם אזור זמן מומר"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.get("/{integration_id}/security/events", response_model=List[SecurityEventResponse])
async def get_security_events(
    event_type: Optional[List[SecurityEventType]] = Query(None),
    severity: Optional[List[SecuritySeverity]] = Query(None),
    resolved: Optional[bool] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: int = Query(settings.SECURITY_EVENTS_DEFAULT_LIMIT, ge=1, le=1000),
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> List[SecurityEventResponse]:
    """Security events of an integration, newest first"""
    events = await SecurityAuditService(db).get_security_events(
        integration.id,
        event_types=event_type,
        severities=severity,
        resolved=resolved,
        start_date=_to_naive_utc(date_from),
        end_date=_to_naive_utc(date_to),
        limit=limit,
    )
    return [SecurityEventResponse.model_validate(e) for e in events]


@router.get("/{integration_id}/security/report", response_model=SecurityReportResponse)
async def get_security_report(
    date_from: datetime,
    date_to: datetime,
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> SecurityReportResponse:
    """Security report for [date_from, date_to] (inclusive)"""
    start = _to_naive_utc(date_from)
    end = _to_naive_utc(date_to)
    if start > end:
        raise ValidationException("date_from must not be after date_to", field="date_from")

    report = await SecurityAuditService(db).generate_security_report(integration.id, start, end)
    return SecurityReportResponse(
        integration_id=integration.id,
        date_from=start,
        date_to=end,
        summary=report.summary,
        critical_events=[SecurityEventResponse.model_validate(e) for e in report.critical_events],
        top_phone_numbers=[PhoneNumberCountResponse.model_validate(p) for p in report.top_phone_numbers],
        recommendations=report.recommendations,
    )


@router.get("/{integration_id}/security/blocked/{phone_number}", response_model=BlockStatusResponse)
async def get_block_status(
    phone_number: str = Path(..., max_length=32),
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> BlockStatusResponse:
    if not PhoneNumberValidator.validate(phone_number):
        raise ValidationException("Invalid phone number format", field="phone_number")
    blocked = await SecurityAuditService(db).is_phone_number_blocked(phone_number, integration.id)
    return BlockStatusResponse(
        phone_number=PhoneNumberValidator.normalize(phone_number),
        blocked=blocked,
    )


@router.post(
    "/{integration_id}/security/events/{event_id}/resolve",
    response_model=SecurityEventResponse,
)
async def resolve_security_event(
    body: ResolveEventRequest,
    event_id: str = Path(..., max_length=36),
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> SecurityEventResponse:
    """סימון אירוע כמטופל"""
    event = await SecurityAuditService(db).resolve_security_event(
        event_id,
        resolved_by=body.resolved_by,
        notes=body.notes,
        integration_id=integration.id,
    )
    return SecurityEventResponse.model_validate(event)
