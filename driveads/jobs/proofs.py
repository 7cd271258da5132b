"""Proof obligations raised by the lifecycle scans."""
import logging
import random
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..config import config
from ..lifecycle import TELEMETRY_STATUSES, accepts_telemetry, raise_proof_obligation
from ..models import Assignment, AssignmentStatus, CampaignStatus, ProofObligation
from ..notifications import notify_driver
from ..persistence import lock_assignment
from ..timeutil import utcnow

logger = logging.getLogger(__name__)


def list_cycle_candidates(db: Session) -> List[int]:
    rows = db.query(Assignment.id).filter(
        Assignment.status == AssignmentStatus.ACTIVE,
        Assignment.installed_at.isnot(None),
        Assignment.proof_status != ProofObligation.PENDING_FINAL
    ).order_by(Assignment.id).all()
    return [row.id for row in rows]


def list_random_proof_candidates(db: Session) -> List[int]:
    rows = db.query(Assignment.id).filter(
        Assignment.status.in_(TELEMETRY_STATUSES),
        Assignment.proof_status == ProofObligation.NONE
    ).order_by(Assignment.id).all()
    return [row.id for row in rows]


def cycle_is_over(assignment: Assignment, now: datetime) -> bool:
    """True once the individual cycle elapsed or the campaign itself ended."""
    campaign = assignment.campaign
    if campaign.status == CampaignStatus.FINISHED:
        return True
    if campaign.end_at is not None and campaign.end_at <= now:
        return True
    if not campaign.duration_days:
        return False
    return now >= assignment.installed_at + timedelta(days=campaign.duration_days)


def check_cycle_completion(db: Session, assignment_id: int, now: Optional[datetime] = None) -> bool:
    """Raise the final-proof obligation once the driver's cycle has elapsed.

    Also catches assignments that were under fraud review when their
    campaign expired and were reactivated afterwards.
    """
    now = now or utcnow()
    try:
        assignment = lock_assignment(db, assignment_id)
        if assignment is None or assignment.status != AssignmentStatus.ACTIVE or assignment.installed_at is None:
            db.rollback()
            return False

        if not cycle_is_over(assignment, now):
            db.rollback()
            return False

        if not raise_proof_obligation(assignment, ProofObligation.PENDING_FINAL):
            db.rollback()
            return False

        notify_driver(
            db,
            assignment.driver_id,
            "Cycle completed",
            "Your campaign cycle is complete. Submit your final proof to receive payment.",
            {"assignment_id": assignment.id, "proof_type": "final"},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Assignment {assignment_id} completed its cycle; final proof requested")
    return True


def random_draw(assignment_id: int, day: date) -> float:
    """Deterministic draw in [0, 1) for an assignment on a given day."""
    return random.Random(f"{assignment_id}:{day.isoformat()}").random()


def draw_random_proof(
    db: Session,
    assignment_id: int,
    day: Optional[date] = None,
    probability: Optional[float] = None
) -> bool:
    """Request a random proof from an assignment with the configured probability.

    The draw is seeded by assignment and day, so re-running the job the same
    day gives the same answer.
    """
    day = day or utcnow().date()
    probability = config.random_proof_probability if probability is None else probability
    try:
        assignment = lock_assignment(db, assignment_id)
        if assignment is None or not accepts_telemetry(assignment.status):
            db.rollback()
            return False
        if assignment.proof_status != ProofObligation.NONE:
            db.rollback()
            return False
        if random_draw(assignment_id, day) >= probability:
            db.rollback()
            return False

        raise_proof_obligation(assignment, ProofObligation.PENDING_RANDOM)
        notify_driver(
            db,
            assignment.driver_id,
            "Proof requested",
            "Please send a photo of your vehicle showing the campaign sticker.",
            {"assignment_id": assignment.id, "proof_type": "random"},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Random proof requested from assignment {assignment_id}")
    return True
