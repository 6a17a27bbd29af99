"""
Operational alerting
Persists alerts for the admin dashboard and escalates them by log and email
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..config import ADMIN_ALERT_EMAIL
from ..models import OperationalAlert

logger = logging.getLogger(__name__)


def raise_alert(db: Session, kind: str, message: str, details: Optional[dict] = None) -> OperationalAlert:
    """Record an operational alert and notify administrators"""
    alert = OperationalAlert(kind=kind, message=message, details=details or {})
    db.add(alert)
    db.commit()
    db.refresh(alert)

    logger.critical(f"🚨 Operational alert [{kind}]: {message} {details or ''}")

    if ADMIN_ALERT_EMAIL:
        from ..email_service import deliver_email, render_payload

        try:
            deliver_email(
                to=ADMIN_ALERT_EMAIL,
                subject=f"[Shelfrent] {kind}",
                html_content=render_payload(
                    "operational_alert", {"message": message, **(details or {})}
                ),
            )
        except Exception as e:
            # The persisted alert remains the source of truth
            logger.error(f"❌ Failed to email operational alert {alert.id}: {e}")

    return alert


def list_open_alerts(db: Session, kind: Optional[str] = None) -> list[OperationalAlert]:
    query = db.query(OperationalAlert).filter(OperationalAlert.resolved_at.is_(None))
    if kind:
        query = query.filter(OperationalAlert.kind == kind)
    return query.order_by(OperationalAlert.created_at.desc(), OperationalAlert.id.desc()).all()


def resolve_alert(db: Session, alert_id: int) -> Optional[OperationalAlert]:
    alert = db.query(OperationalAlert).filter(OperationalAlert.id == alert_id).first()
    if alert and alert.resolved_at is None:
        alert.resolved_at = datetime.utcnow()
        db.commit()
        db.refresh(alert)
        logger.info(f"✅ Operational alert {alert_id} resolved")
    return alert
