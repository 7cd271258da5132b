import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from .models import Notification

logger = logging.getLogger(__name__)


def notify_driver(
    db: Session,
    driver_id: int,
    title: str,
    body: str,
    data: Optional[Dict] = None
) -> Notification:
    """Record a notification for a driver.

    The row is the driver's notification history; push delivery is handled
    by the messaging gateway reading from it. Added to the caller's session
    so it commits with the state change that caused it.
    """
    notification = Notification(
        driver_id=driver_id,
        title=title,
        body=body,
        data=data or {},
    )
    db.add(notification)
    logger.info(f"Notification queued for driver {driver_id}: {title}")
    return notification


def get_driver_notifications(db: Session, driver_id: int, limit: int = 50) -> List[Notification]:
    return db.query(Notification).filter(
        Notification.driver_id == driver_id
    ).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
