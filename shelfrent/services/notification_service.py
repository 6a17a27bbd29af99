"""
Notification dispatcher
Hands named notifications to the durable ARQ queue; the worker delivers them
with retries. Falls back to a synchronous best-effort send and finally to an
operational alert, so a notification is never dropped silently.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ..errors import DispatchUnavailable, NotFound
from ..models import Vendor
from .alerting import raise_alert

logger = logging.getLogger(__name__)

DELIVERY_TASK = "deliver_notification_task"


@dataclass
class DispatchResult:
    accepted: bool
    channel: str  # "queue", "direct" or "failed"
    job_id: Optional[str] = None
    error: Optional[str] = None


class NotificationDispatcher:
    """Fire-and-forget delivery of named notifications to vendors"""

    def __init__(self, pool_getter=None):
        if pool_getter is None:
            from ..queue import get_queue_pool

            pool_getter = get_queue_pool
        self._pool_getter = pool_getter

    async def enqueue(
        self,
        kind: str,
        recipient_vendor_id: int,
        payload: dict,
        dedupe_key: Optional[str] = None,
    ) -> str:
        """
        Enqueue a notification on the durable queue.

        Args:
            kind: Notification name (e.g. "trial_reminder_7d")
            recipient_vendor_id: Vendor receiving the notification
            payload: Structured data for the notification
            dedupe_key: Optional job id; enqueueing the same key twice is a no-op

        Returns:
            Job id

        Raises:
            DispatchUnavailable: if the queue cannot be reached
        """
        try:
            pool = await self._pool_getter()
            job = await pool.enqueue_job(
                DELIVERY_TASK, kind, recipient_vendor_id, payload, _job_id=dedupe_key
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ Notification queue unavailable for {kind} → vendor {recipient_vendor_id}: {e}")
            raise DispatchUnavailable(f"Notification queue unavailable: {e}") from e

        if job is None:
            # Same job id already queued or finished
            logger.info(f"ℹ️ Notification {dedupe_key} already queued, skipping duplicate")
            return dedupe_key

        logger.info(f"📬 Queued {kind} notification for vendor {recipient_vendor_id} (job {job.job_id})")
        return job.job_id

    async def send_now(self, db: Session, kind: str, recipient_vendor_id: int, payload: dict) -> dict:
        """Deliver synchronously, bypassing the queue"""
        from ..email_service import send_notification_email

        vendor = db.query(Vendor).filter(Vendor.id == recipient_vendor_id).first()
        if not vendor:
            raise NotFound(f"Vendor {recipient_vendor_id} not found")
        return await send_notification_email(to=vendor.email, kind=kind, payload=payload)

    async def dispatch(
        self,
        db: Session,
        kind: str,
        recipient_vendor_id: int,
        payload: dict,
        dedupe_key: Optional[str] = None,
    ) -> DispatchResult:
        """
        Queue a notification, falling back to a direct send and then to an
        operational alert. Never raises for delivery problems.
        """
        try:
            job_id = await self.enqueue(kind, recipient_vendor_id, payload, dedupe_key=dedupe_key)
            return DispatchResult(accepted=True, channel="queue", job_id=job_id)
        except DispatchUnavailable as queue_error:
            try:
                await self.send_now(db, kind, recipient_vendor_id, payload)
                logger.info(f"✅ Sent {kind} directly to vendor {recipient_vendor_id} (queue down)")
                return DispatchResult(accepted=True, channel="direct")
            except Exception as send_error:
                message = (
                    f"Notification {kind} for vendor {recipient_vendor_id} could not be queued "
                    f"or sent directly"
                )
                raise_alert(
                    db,
                    "dispatch_unavailable",
                    message,
                    {
                        "kind": kind,
                        "vendorId": recipient_vendor_id,
                        "queueError": str(queue_error),
                        "sendError": str(send_error),
                    },
                )
                return DispatchResult(accepted=False, channel="failed", error=str(send_error))


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency / module-level accessor"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
