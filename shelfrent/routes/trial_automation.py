"""
API endpoints for trial automation, vendor trial actions and operational alerts
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import JobOverlap, NotFound
from ..domain.contracts.service import ContractLifecycleService
from ..services.alerting import list_open_alerts, resolve_alert
from ..services.notification_service import get_dispatcher
from ..services.trial_automation import TrialAutomationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Trial automation"])
vendors_router = APIRouter(prefix="/vendors", tags=["Vendors"])


class ScanRunRequest(BaseModel):
    today: Optional[date] = None
    force: bool = False


class ScanSummaryResponse(BaseModel):
    skipped: bool
    started_contracts: int
    vendors_processed: int
    reminders_sent: int
    expired: int
    converted: int
    dispatch_failures: int
    errors: list[dict]


class SchedulerStatusResponse(BaseModel):
    job: str
    inProgress: bool
    startedAt: Optional[datetime] = None
    lastRunAt: Optional[datetime] = None
    lastFinishedAt: Optional[datetime] = None
    consecutiveOverlaps: int
    lastSummary: Optional[dict[str, Any]] = None


class AlertResponse(BaseModel):
    id: int
    kind: str
    message: str
    details: Optional[dict[str, Any]] = None
    createdAt: Optional[datetime] = None
    resolvedAt: Optional[datetime] = None


class TrialExtendRequest(BaseModel):
    days: int = Field(..., gt=0)
    performedBy: str
    reason: Optional[str] = None


class VendorTrialResponse(BaseModel):
    vendorId: int
    name: str
    conversionRequestedAt: Optional[datetime] = None
    trialConversionDate: Optional[date] = None
    sevenDayReminderSent: bool
    threeDayReminderSent: bool
    oneDayReminderSent: bool
    expirationNotificationSent: bool
    automationNotes: Optional[str] = None


def get_trial_service(db: Session = Depends(get_db)) -> TrialAutomationService:
    return TrialAutomationService(db, dispatcher=get_dispatcher())


def to_vendor_trial_response(vendor) -> VendorTrialResponse:
    return VendorTrialResponse(
        vendorId=vendor.id,
        name=vendor.name,
        conversionRequestedAt=vendor.conversion_requested_at,
        trialConversionDate=vendor.trial_conversion_date,
        sevenDayReminderSent=vendor.seven_day_reminder_sent,
        threeDayReminderSent=vendor.three_day_reminder_sent,
        oneDayReminderSent=vendor.one_day_reminder_sent,
        expirationNotificationSent=vendor.expiration_notification_sent,
        automationNotes=vendor.automation_notes,
    )


# ============================================================================
# TRIAL SCAN
# ============================================================================


@router.post("/trial-scan/run", response_model=ScanSummaryResponse)
async def run_trial_scan(
    data: Optional[ScanRunRequest] = None,
    service: TrialAutomationService = Depends(get_trial_service),
):
    """Manually trigger the trial scan (normally run by the daily cron job)"""
    data = data or ScanRunRequest()
    summary = await service.run_trial_scan(today=data.today, force=data.force)
    if summary.skipped:
        raise JobOverlap("Trial scan already in progress")
    return ScanSummaryResponse(**summary.to_dict())


@router.get("/trial-scan/status", response_model=SchedulerStatusResponse)
async def get_trial_scan_status(service: TrialAutomationService = Depends(get_trial_service)):
    return SchedulerStatusResponse(**service.get_scheduler_status())


@router.get("/trial-scan/metrics")
async def get_trial_metrics(
    today: Optional[date] = Query(None),
    service: TrialAutomationService = Depends(get_trial_service),
):
    return service.trial_metrics(today)


# ============================================================================
# ALERTS
# ============================================================================


@router.get("/alerts", response_model=list[AlertResponse])
async def get_alerts(kind: Optional[str] = Query(None), db: Session = Depends(get_db)):
    return [
        AlertResponse(
            id=a.id,
            kind=a.kind,
            message=a.message,
            details=a.details,
            createdAt=a.created_at,
            resolvedAt=a.resolved_at,
        )
        for a in list_open_alerts(db, kind)
    ]


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_operational_alert(alert_id: int, db: Session = Depends(get_db)):
    alert = resolve_alert(db, alert_id)
    if not alert:
        raise NotFound(f"Alert {alert_id} not found")
    return AlertResponse(
        id=alert.id,
        kind=alert.kind,
        message=alert.message,
        details=alert.details,
        createdAt=alert.created_at,
        resolvedAt=alert.resolved_at,
    )


# ============================================================================
# VENDOR TRIAL ACTIONS
# ============================================================================


@vendors_router.post("/{vendor_id}/trial/convert", response_model=VendorTrialResponse)
async def request_trial_conversion(vendor_id: int, db: Session = Depends(get_db)):
    """Record that the vendor keeps renting once the trial ends"""
    vendor = ContractLifecycleService(db).request_conversion(vendor_id)
    return to_vendor_trial_response(vendor)


@vendors_router.post("/{vendor_id}/trial/extend", response_model=VendorTrialResponse)
async def extend_vendor_trial(
    vendor_id: int,
    data: TrialExtendRequest,
    service: TrialAutomationService = Depends(get_trial_service),
):
    vendor = service.extend_trial(vendor_id, data.days, data.performedBy, data.reason)
    return to_vendor_trial_response(vendor)
