"""
Trial automation - daily scan over trial contracts

Starts contracts whose start date has arrived, sends the 7/3/1-day trial
reminders and the expiration notice, and expires or converts trials once
the payment obligation date is reached.

Should be run once a day (arq cron, see worker.py). Re-running on the same
day is harmless: each reminder flag flips false -> true only after the
notification was accepted, and a reminder is never sent twice.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import (
    FRONTEND_URL,
    SCHEDULER_OVERLAP_ALERT_THRESHOLD,
    SCHEDULER_STALE_LOCK_MINUTES,
    TRIAL_REMINDER_THRESHOLDS,
)
from ..domain.contracts.repository import ContractRepository
from ..domain.contracts.service import ContractLifecycleService
from ..errors import InvalidRequest, InvalidTransition, JobOverlap, NotFound
from ..models import Contract, ContractState, SchedulerJob, Vendor
from .alerting import raise_alert

logger = logging.getLogger(__name__)

TRIAL_SCAN_JOB = "trial_scan"

# Trial contracts that have not been converted or ended yet
OPEN_TRIAL_STATES = (ContractState.SCHEDULED, ContractState.TRIAL_ACTIVE)

REMINDER_FLAGS = {
    7: "seven_day_reminder_sent",
    3: "three_day_reminder_sent",
    1: "one_day_reminder_sent",
    0: "expiration_notification_sent",
}

REMINDER_KINDS = {
    7: "trial_reminder_7d",
    3: "trial_reminder_3d",
    1: "trial_reminder_1d",
}


@dataclass
class ScanSummary:
    skipped: bool = False
    started_contracts: int = 0
    vendors_processed: int = 0
    reminders_sent: int = 0
    expired: int = 0
    converted: int = 0
    dispatch_failures: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def notification_kind(threshold: int, vendor: Vendor) -> str:
    if threshold == 0:
        return "trial_converted" if vendor.conversion_requested_at else "trial_expired"
    return REMINDER_KINDS[threshold]


def due_thresholds(days_remaining: int, vendor: Vendor) -> list[int]:
    """Thresholds that have been reached but not yet notified, most urgent first"""
    return sorted(
        t
        for t in TRIAL_REMINDER_THRESHOLDS
        if days_remaining <= t and not getattr(vendor, REMINDER_FLAGS[t])
    )


class TrialAutomationService:
    def __init__(self, db: Session, dispatcher=None):
        if dispatcher is None:
            from .notification_service import get_dispatcher

            dispatcher = get_dispatcher()
        self.db = db
        self.dispatcher = dispatcher
        self.lifecycle = ContractLifecycleService(db, dispatcher=dispatcher)
        self.repo = ContractRepository()

    # ------------------------------------------------------------------
    # Job marker
    # ------------------------------------------------------------------

    def _get_job(self) -> SchedulerJob:
        job = self.db.query(SchedulerJob).filter(SchedulerJob.name == TRIAL_SCAN_JOB).first()
        if job:
            return job
        try:
            self.db.add(SchedulerJob(name=TRIAL_SCAN_JOB, in_progress=False, consecutive_overlaps=0))
            self.db.commit()
        except IntegrityError:
            # Created concurrently
            self.db.rollback()
        return self.db.query(SchedulerJob).filter(SchedulerJob.name == TRIAL_SCAN_JOB).one()

    def _acquire(self, now: datetime, force: bool = False) -> bool:
        """Compare-and-set the in-progress marker; takes over stale markers"""
        job = self._get_job()
        stale_before = now - timedelta(minutes=SCHEDULER_STALE_LOCK_MINUTES)
        held_since = job.started_at if job.in_progress else None

        query = self.db.query(SchedulerJob).filter(SchedulerJob.name == TRIAL_SCAN_JOB)
        if not force:
            query = query.filter(
                (SchedulerJob.in_progress.is_(False)) | (SchedulerJob.started_at < stale_before)
            )
        acquired = query.update(
            {
                SchedulerJob.in_progress: True,
                SchedulerJob.started_at: now,
                SchedulerJob.last_run_at: now,
                SchedulerJob.consecutive_overlaps: 0,
            },
            synchronize_session=False,
        )
        self.db.commit()

        if acquired == 1:
            if held_since is not None:
                logger.warning(
                    f"⚠️ Taking over trial scan marker held since {held_since} "
                    f"({'forced' if force else 'stale'})"
                )
            return True

        self.db.query(SchedulerJob).filter(SchedulerJob.name == TRIAL_SCAN_JOB).update(
            {SchedulerJob.consecutive_overlaps: SchedulerJob.consecutive_overlaps + 1},
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(job)

        overlap = JobOverlap(
            f"Trial scan already running since {job.started_at}, skipping this run",
            {"startedAt": job.started_at.isoformat() if job.started_at else None},
        )
        logger.warning(f"⚠️ {overlap.message} ({job.consecutive_overlaps} consecutive)")
        if job.consecutive_overlaps >= SCHEDULER_OVERLAP_ALERT_THRESHOLD:
            raise_alert(
                self.db,
                "job_overlap",
                f"Trial scan skipped {job.consecutive_overlaps} times in a row",
                {"job": TRIAL_SCAN_JOB, "startedAt": overlap.details["startedAt"]},
            )
        return False

    def _release(self, summary: ScanSummary) -> None:
        self.db.rollback()
        self.db.query(SchedulerJob).filter(SchedulerJob.name == TRIAL_SCAN_JOB).update(
            {
                SchedulerJob.in_progress: False,
                SchedulerJob.last_finished_at: datetime.utcnow(),
                SchedulerJob.last_summary: summary.to_dict(),
            },
            synchronize_session=False,
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    async def run_trial_scan(self, today: Optional[date] = None, force: bool = False) -> ScanSummary:
        """
        Run the daily trial scan.

        Args:
            today: Scan date (defaults to the current date)
            force: Take over the job marker even if it is not stale

        Returns:
            ScanSummary with counts and per-account errors. A skipped run
            (another scan in progress) returns skipped=True.
        """
        today = today or date.today()
        now = datetime.utcnow()

        if not self._acquire(now, force):
            return ScanSummary(skipped=True)

        summary = ScanSummary()
        logger.info(f"🔄 Trial scan started for {today}")
        try:
            self._start_due_contracts(today, summary)

            for contract_id in self._open_trial_contract_ids():
                try:
                    await self._process_trial(contract_id, today, summary)
                except Exception as e:
                    self.db.rollback()
                    contract = self.db.get(Contract, contract_id)
                    summary.errors.append(
                        {
                            "vendorId": contract.vendor_id if contract else None,
                            "contractId": contract_id,
                            "error": str(e),
                        }
                    )
                    logger.error(f"❌ Trial scan failed for contract {contract_id}: {e}")
        finally:
            self._release(summary)

        logger.info(f"📊 Trial scan summary: {summary.to_dict()}")
        return summary

    def _start_due_contracts(self, today: date, summary: ScanSummary) -> None:
        for contract in self.repo.get_due_scheduled_contracts(self.db, today):
            try:
                self.lifecycle.start_due(contract.id, today)
                summary.started_contracts += 1
            except Exception as e:
                self.db.rollback()
                summary.errors.append(
                    {"vendorId": contract.vendor_id, "contractId": contract.id, "error": str(e)}
                )
                logger.error(f"❌ Failed to start contract {contract.id}: {e}")

    def _open_trial_contract_ids(self) -> list[int]:
        """One open trial contract per vendor, the one ending first"""
        rows = (
            self.db.query(Contract.id, Contract.vendor_id)
            .filter(
                Contract.is_trial_booking.is_(True),
                Contract.state.in_(OPEN_TRIAL_STATES),
                Contract.payment_obligation_start_date.isnot(None),
            )
            .order_by(Contract.payment_obligation_start_date.asc(), Contract.id.asc())
            .all()
        )
        seen = set()
        contract_ids = []
        for contract_id, vendor_id in rows:
            if vendor_id in seen:
                continue
            seen.add(vendor_id)
            contract_ids.append(contract_id)
        return contract_ids

    async def _process_trial(self, contract_id: int, today: date, summary: ScanSummary) -> None:
        contract = self.repo.get_contract(self.db, contract_id)
        vendor = contract.vendor
        summary.vendors_processed += 1

        trial_end = contract.payment_obligation_start_date
        days_remaining = (trial_end - today).days
        due = due_thresholds(days_remaining, vendor)

        if due:
            threshold = due[0]
            kind = notification_kind(threshold, vendor)
            payload = {
                "vendorName": vendor.name,
                "contractId": contract.id,
                "trialEndDate": trial_end.isoformat(),
                "daysRemaining": max(days_remaining, 0),
                "url": f"{FRONTEND_URL}/contracts/{contract.id}",
            }
            result = await self.dispatcher.dispatch(
                self.db,
                kind,
                vendor.id,
                payload,
                dedupe_key=f"{kind}:{contract.id}:{trial_end.isoformat()}",
            )
            if not result.accepted:
                # Flags stay unset so the next run retries
                summary.dispatch_failures += 1
                logger.warning(f"⚠️ {kind} for vendor {vendor.id} not accepted, will retry next run")
                return

            for t in due:
                setattr(vendor, REMINDER_FLAGS[t], True)
            vendor.last_reminder_sent_at = datetime.utcnow()
            summary.reminders_sent += 1
            logger.info(f"📧 {kind} sent to vendor {vendor.id} ({days_remaining} day(s) remaining)")

        if days_remaining <= 0 and vendor.expiration_notification_sent:
            # The flag change above is committed together with the transition
            if vendor.conversion_requested_at:
                self.lifecycle.advance_to_active(contract.id, today)
                summary.converted += 1
            else:
                self.lifecycle.expire(contract.id, today)
                summary.expired += 1
        elif due:
            self.db.commit()

    # ------------------------------------------------------------------
    # Status / admin
    # ------------------------------------------------------------------

    def get_scheduler_status(self) -> dict:
        job = self._get_job()
        return {
            "job": job.name,
            "inProgress": job.in_progress,
            "startedAt": job.started_at,
            "lastRunAt": job.last_run_at,
            "lastFinishedAt": job.last_finished_at,
            "consecutiveOverlaps": job.consecutive_overlaps,
            "lastSummary": job.last_summary,
        }

    def extend_trial(
        self, vendor_id: int, days: int, performed_by: str, reason: Optional[str] = None
    ) -> Vendor:
        """Push the trial end of the vendor's open trial contracts and reset reminders"""
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise InvalidRequest("Extension must be a positive number of days")
        vendor = self.repo.get_vendor(self.db, vendor_id)
        if not vendor:
            raise NotFound(f"Vendor {vendor_id} not found")

        contracts = (
            self.db.query(Contract)
            .filter(
                Contract.vendor_id == vendor_id,
                Contract.is_trial_booking.is_(True),
                Contract.state.in_(OPEN_TRIAL_STATES),
            )
            .all()
        )
        if not contracts:
            raise InvalidRequest(f"Vendor {vendor_id} has no open trial to extend")

        for contract in contracts:
            contract.payment_obligation_start_date = contract.payment_obligation_start_date + timedelta(days=days)
        for flag in REMINDER_FLAGS.values():
            setattr(vendor, flag, False)

        note = f"Trial extended by {days} days by {performed_by} on {datetime.utcnow().isoformat()}"
        if reason:
            note += f" - Reason: {reason}"
        vendor.automation_notes = f"{vendor.automation_notes}\n{note}" if vendor.automation_notes else note

        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise InvalidTransition(f"Could not extend trial for vendor {vendor_id}: {e}") from e
        self.db.refresh(vendor)
        logger.info(f"✅ {note} (vendor {vendor_id})")
        return vendor

    def trial_metrics(self, today: Optional[date] = None) -> dict:
        today = today or date.today()

        def count_trials(*criteria) -> int:
            return (
                self.db.query(func.count(Contract.id))
                .filter(Contract.is_trial_booking.is_(True), *criteria)
                .scalar()
                or 0
            )

        def expiring_within(days: int) -> int:
            return count_trials(
                Contract.state == ContractState.TRIAL_ACTIVE,
                Contract.payment_obligation_start_date >= today,
                Contract.payment_obligation_start_date <= today + timedelta(days=days),
            )

        def vendors_flagged(flag: str) -> int:
            return self.db.query(func.count(Vendor.id)).filter(getattr(Vendor, flag).is_(True)).scalar() or 0

        total = count_trials()
        converted = count_trials(Contract.trial_conversion_date.isnot(None))
        return {
            "totalTrials": total,
            "activeTrials": count_trials(Contract.state == ContractState.TRIAL_ACTIVE),
            "scheduledTrials": count_trials(Contract.state == ContractState.SCHEDULED),
            "expiredTrials": count_trials(Contract.state == ContractState.EXPIRED),
            "convertedTrials": converted,
            "conversionRate": round(converted / total * 100, 1) if total else 0.0,
            "upcomingExpirations": {
                "next1Day": expiring_within(1),
                "next3Days": expiring_within(3),
                "next7Days": expiring_within(7),
            },
            "reminderStats": {
                "sevenDaySent": vendors_flagged("seven_day_reminder_sent"),
                "threeDaySent": vendors_flagged("three_day_reminder_sent"),
                "oneDaySent": vendors_flagged("one_day_reminder_sent"),
                "expirationSent": vendors_flagged("expiration_notification_sent"),
            },
        }
