"""Admin review flows that feed the assignment state machine."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError, ValidationError
from .lifecycle import AssignmentEvent, apply_event
from .models import (
    Assignment, FraudAlert, FraudAlertStatus, InstallProof, PeriodicProof,
    ProofObligation, ProofType, ReviewStatus,
)
from .notifications import notify_driver
from .persistence import (
    get_fraud_alert, get_install_proof, get_periodic_proof, lock_assignment,
)
from .timeutil import utcnow

logger = logging.getLogger(__name__)

DISMISS = "dismiss"
PENALIZE = "penalize"


def _locked_assignment(db: Session, assignment_id: int) -> Assignment:
    assignment = lock_assignment(db, assignment_id)
    if assignment is None:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    return assignment


def review_install_proof(
    db: Session,
    proof_id: int,
    approved: bool,
    reviewer: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> InstallProof:
    """Approve or reject an installation.

    Approval activates the assignment and starts its cycle; rejection sends
    it back to Accepted so the driver can reschedule. Proof and status are
    written in one transaction.
    """
    now = now or utcnow()
    try:
        proof = get_install_proof(db, proof_id, lock=True)
        if proof is None:
            raise NotFoundError(f"Installation proof {proof_id} not found")
        if proof.status != ReviewStatus.PENDING:
            raise ConflictError(f"Installation proof already {proof.status.value}")

        assignment = _locked_assignment(db, proof.assignment_id)
        event = AssignmentEvent.APPROVE_INSTALL if approved else AssignmentEvent.REJECT_INSTALL
        apply_event(assignment, event, now=now)

        proof.status = ReviewStatus.APPROVED if approved else ReviewStatus.REJECTED
        proof.notes = notes
        proof.reviewed_by = reviewer
        proof.reviewed_at = now

        if approved:
            notify_driver(db, assignment.driver_id, "Installation approved",
                          "Your campaign is now active. Keep the app running while you drive.",
                          {"assignment_id": assignment.id})
        else:
            notify_driver(db, assignment.driver_id, "Installation rejected",
                          notes or "Your installation photos were rejected. Please reschedule.",
                          {"assignment_id": assignment.id})
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(proof)
    return proof


def review_periodic_proof(
    db: Session,
    proof_id: int,
    approved: bool,
    reviewer: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> PeriodicProof:
    """Approve or reject a random or final proof.

    An approved random proof clears the obligation. An approved final proof
    closes the assignment out to Finished. Rejections leave the obligation
    outstanding so the driver submits again.
    """
    now = now or utcnow()
    try:
        proof = get_periodic_proof(db, proof_id, lock=True)
        if proof is None:
            raise NotFoundError(f"Periodic proof {proof_id} not found")
        if proof.status != ReviewStatus.PENDING:
            raise ConflictError(f"Periodic proof already {proof.status.value}")

        assignment = _locked_assignment(db, proof.assignment_id)

        if approved:
            if proof.proof_type == ProofType.FINAL:
                apply_event(assignment, AssignmentEvent.CLOSE_OUT, now=now)
                notify_driver(db, assignment.driver_id, "Campaign completed",
                              "Your final proof was approved and your payout is on its way.",
                              {"assignment_id": assignment.id})
            elif assignment.proof_status == ProofObligation.PENDING_RANDOM:
                assignment.proof_status = ProofObligation.NONE
        else:
            notify_driver(db, assignment.driver_id, "Proof rejected",
                          notes or "Your proof photo was rejected. Please submit a new one.",
                          {"assignment_id": assignment.id, "proof_type": proof.proof_type.value})

        proof.status = ReviewStatus.APPROVED if approved else ReviewStatus.REJECTED
        proof.notes = notes
        proof.reviewed_by = reviewer
        proof.reviewed_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(proof)
    return proof


def resolve_fraud_alert(
    db: Session,
    alert_id: int,
    action: str,
    reviewer: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> FraudAlert:
    """Dismiss an alert (back to Active) or penalize (Removed)."""
    if action not in (DISMISS, PENALIZE):
        raise ValidationError(f"Unknown action '{action}'")

    now = now or utcnow()
    try:
        alert = get_fraud_alert(db, alert_id, lock=True)
        if alert is None:
            raise NotFoundError(f"Fraud alert {alert_id} not found")
        if alert.status != FraudAlertStatus.OPEN:
            raise ConflictError(f"Fraud alert already {alert.status.value}")

        assignment = _locked_assignment(db, alert.assignment_id)
        if action == DISMISS:
            apply_event(assignment, AssignmentEvent.DISMISS_FRAUD, now=now)
            alert.status = FraudAlertStatus.DISMISSED
        else:
            apply_event(assignment, AssignmentEvent.PENALIZE_FRAUD, now=now)
            alert.status = FraudAlertStatus.PENALIZED

        alert.notes = notes
        alert.resolved_by = reviewer
        alert.resolved_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(alert)
    logger.info(f"Fraud alert {alert_id} resolved by {reviewer}: {alert.status.value}")
    return alert


def review_application(db: Session, assignment_id: int, approved: bool) -> Assignment:
    event = AssignmentEvent.ACCEPT_APPLICATION if approved else AssignmentEvent.REJECT_APPLICATION
    try:
        assignment = _locked_assignment(db, assignment_id)
        apply_event(assignment, event)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(assignment)
    return assignment


def confirm_removal(db: Session, assignment_id: int) -> Assignment:
    try:
        assignment = _locked_assignment(db, assignment_id)
        apply_event(assignment, AssignmentEvent.CONFIRM_REMOVAL)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(assignment)
    return assignment
