import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import config
from ..ingestion import assignment_locks
from ..lifecycle import accepts_telemetry, flag_fraud
from ..models import Assignment, FraudReason
from ..persistence import get_last_assignment_position, lock_assignment
from ..timeutil import utcnow

logger = logging.getLogger(__name__)


def last_activity(db: Session, assignment: Assignment) -> Optional[datetime]:
    """Latest of the last ping, the installation and the last fraud dismissal."""
    last_ping = get_last_assignment_position(db, assignment.id)
    anchor = last_ping.ts if last_ping is not None else assignment.installed_at
    if assignment.resumed_at is not None and (anchor is None or assignment.resumed_at > anchor):
        anchor = assignment.resumed_at
    return anchor


def check_inactivity(db: Session, assignment_id: int, now: Optional[datetime] = None) -> bool:
    """Flag an active assignment as fraud when telemetry stopped too long ago.

    Shares the ingestion lock so a batch arriving meanwhile is seen.
    Returns True when the assignment was flagged.
    """
    now = now or utcnow()
    threshold = timedelta(hours=config.inactivity_threshold_hours)

    with assignment_locks.hold(assignment_id):
        try:
            assignment = lock_assignment(db, assignment_id)
            if assignment is None or not accepts_telemetry(assignment.status):
                db.rollback()
                return False

            anchor = last_activity(db, assignment)
            if anchor is None:
                logger.warning(f"Assignment {assignment_id} is active without an installation date")
                db.rollback()
                return False

            idle = now - anchor
            if idle <= threshold:
                db.rollback()
                logger.info(f"Inactivity check OK for assignment {assignment_id}")
                return False

            logger.warning(
                f"Inactivity: driver {assignment.driver_id} silent for "
                f"{idle.total_seconds() / 3600:.1f}h on assignment {assignment_id}"
            )
            flag_fraud(
                db,
                assignment,
                FraudReason.INACTIVITY,
                details={
                    "idle_hours": round(idle.total_seconds() / 3600, 2),
                    "last_seen": anchor.isoformat(),
                },
                now=now,
            )
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
