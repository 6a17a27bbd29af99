"""
ARQ Background Worker
Delivers queued notifications and runs the daily trial scan
"""

import logging
import os

from arq import Retry
from arq.cron import cron

from . import models  # noqa: F401 - register models before any database operations
from .config import (
    NOTIFICATION_BACKOFF_SECONDS,
    NOTIFICATION_MAX_TRIES,
    TRIAL_SCAN_HOUR,
    TRIAL_SCAN_MINUTE,
)
from .database import SessionLocal
from .queue import get_redis_settings

logger = logging.getLogger(__name__)


def retry_delay(job_try: int) -> int:
    """Exponential backoff in seconds for the given (1-based) try"""
    return NOTIFICATION_BACKOFF_SECONDS * 2 ** (job_try - 1)


async def deliver_notification_task(ctx, kind: str, vendor_id: int, payload: dict):
    """
    Deliver one queued notification.

    Failed deliveries are retried with exponential backoff; after the final
    try the failure is escalated as an operational alert.
    """
    from .services.alerting import raise_alert
    from .services.notification_service import NotificationDispatcher

    job_try = ctx.get("job_try", 1)
    logger.info(f"📧 ARQ Worker: delivering {kind} to vendor {vendor_id} (try {job_try})")

    db = SessionLocal()
    try:
        await NotificationDispatcher().send_now(db, kind, vendor_id, payload)
        logger.info(f"✅ {kind} delivered to vendor {vendor_id}")
        return {"status": "sent", "kind": kind, "vendorId": vendor_id}
    except Exception as e:
        if job_try < NOTIFICATION_MAX_TRIES:
            delay = retry_delay(job_try)
            logger.warning(f"⚠️ Delivery of {kind} to vendor {vendor_id} failed ({e}), retrying in {delay}s")
            raise Retry(defer=delay) from e

        logger.error(f"❌ Delivery of {kind} to vendor {vendor_id} failed after {job_try} tries: {e}")
        raise_alert(
            db,
            "dispatch_failed",
            f"Notification {kind} for vendor {vendor_id} could not be delivered",
            {"kind": kind, "vendorId": vendor_id, "tries": job_try, "error": str(e)},
        )
        return {"status": "failed", "kind": kind, "vendorId": vendor_id, "error": str(e)}
    finally:
        db.close()


async def trial_scan_task(ctx):
    """
    Daily cron job for trial automation.
    - Contracts: scheduled → trial_active/active (when start date arrives)
    - Vendors: 7/3/1-day reminders and the expiration notice
    - Trials: trial_active → active/expired (when the trial ends)
    """
    from .services.notification_service import NotificationDispatcher
    from .services.trial_automation import TrialAutomationService

    logger.info("🔄 Starting daily trial scan")

    async def worker_pool():
        return ctx["redis"]

    db = SessionLocal()
    try:
        service = TrialAutomationService(db, dispatcher=NotificationDispatcher(pool_getter=worker_pool))
        summary = await service.run_trial_scan()
        logger.info(f"Trial scan complete: {summary.to_dict()}")
        return summary.to_dict()
    except Exception as e:
        logger.error(f"❌ Trial scan failed: {str(e)}")
        raise
    finally:
        db.close()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [
        deliver_notification_task,
        trial_scan_task,
    ]
    redis_settings = get_redis_settings()

    max_jobs = int(os.getenv("ARQ_MAX_JOBS", "20"))
    job_timeout = int(os.getenv("ARQ_JOB_TIMEOUT", "600"))
    keep_result = int(os.getenv("ARQ_KEEP_RESULT", "86400"))  # dedupes same-day re-enqueues

    health_check_interval = 60

    max_tries = NOTIFICATION_MAX_TRIES

    cron_jobs = [
        cron(trial_scan_task, hour=TRIAL_SCAN_HOUR, minute=TRIAL_SCAN_MINUTE, unique=True),
    ]

    logger.info(f"🔧 ARQ Worker configured: max_jobs={max_jobs}, timeout={job_timeout}s")
