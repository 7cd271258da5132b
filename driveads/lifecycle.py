"""Assignment lifecycle state machine.

Every status change of an Assignment goes through ``apply_event``, which
looks the (status, event) pair up in a closed transition table. Pairs that
are not in the table raise ``ConflictError``; there are no ad hoc guards
on status elsewhere in the code base.
"""
import enum
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from .errors import ConflictError
from .models import (
    Assignment, AssignmentStatus, FraudAlert, FraudAlertStatus, FraudReason,
    ProofObligation,
)
from .notifications import notify_driver
from .timeutil import utcnow

logger = logging.getLogger(__name__)


class AssignmentEvent(str, enum.Enum):
    ACCEPT_APPLICATION = "accept_application"
    REJECT_APPLICATION = "reject_application"
    RETRY_APPLICATION = "retry_application"
    SCHEDULE_INSTALL = "schedule_install"
    SUBMIT_INSTALL_PROOF = "submit_install_proof"
    APPROVE_INSTALL = "approve_install"
    REJECT_INSTALL = "reject_install"
    DETECT_SPOOFING = "detect_spoofing"
    DETECT_INACTIVITY = "detect_inactivity"
    REQUEST_EXIT = "request_exit"
    CONFIRM_REMOVAL = "confirm_removal"
    DISMISS_FRAUD = "dismiss_fraud"
    PENALIZE_FRAUD = "penalize_fraud"
    CLOSE_OUT = "close_out"


S = AssignmentStatus
E = AssignmentEvent

TRANSITIONS: Dict[tuple, AssignmentStatus] = {
    (S.APPLIED, E.ACCEPT_APPLICATION): S.ACCEPTED,
    (S.APPLIED, E.REJECT_APPLICATION): S.REJECTED,
    (S.APPLIED, E.SCHEDULE_INSTALL): S.SCHEDULED,
    (S.REJECTED, E.RETRY_APPLICATION): S.ACCEPTED,
    (S.ACCEPTED, E.SCHEDULE_INSTALL): S.SCHEDULED,
    (S.SCHEDULED, E.SCHEDULE_INSTALL): S.SCHEDULED,
    (S.SCHEDULED, E.SUBMIT_INSTALL_PROOF): S.AWAITING_INSTALL_APPROVAL,
    (S.AWAITING_INSTALL_APPROVAL, E.APPROVE_INSTALL): S.ACTIVE,
    (S.AWAITING_INSTALL_APPROVAL, E.REJECT_INSTALL): S.ACCEPTED,
    (S.ACTIVE, E.DETECT_SPOOFING): S.FRAUD,
    (S.ACTIVE, E.DETECT_INACTIVITY): S.FRAUD,
    (S.ACTIVE, E.REQUEST_EXIT): S.REMOVAL_REQUESTED,
    (S.ACTIVE, E.CLOSE_OUT): S.FINISHED,
    (S.FRAUD, E.DISMISS_FRAUD): S.ACTIVE,
    (S.FRAUD, E.PENALIZE_FRAUD): S.REMOVED,
    (S.REMOVAL_REQUESTED, E.CONFIRM_REMOVAL): S.REMOVED,
}

TERMINAL_STATUSES = frozenset({S.FINISHED, S.REMOVED, S.REJECTED})
NON_TERMINAL_STATUSES = frozenset(s for s in AssignmentStatus if s not in TERMINAL_STATUSES)
TELEMETRY_STATUSES = frozenset({S.ACTIVE})

_FRAUD_EVENTS = {
    FraudReason.GPS_SPOOFING: E.DETECT_SPOOFING,
    FraudReason.INACTIVITY: E.DETECT_INACTIVITY,
}


def _check_table():
    for (source, event), target in TRANSITIONS.items():
        if not isinstance(source, AssignmentStatus) or not isinstance(target, AssignmentStatus):
            raise RuntimeError(f"Invalid transition entry {source!r} -> {target!r}")
        if not isinstance(event, AssignmentEvent):
            raise RuntimeError(f"Invalid transition event {event!r}")
    used_events = {event for _, event in TRANSITIONS}
    missing = set(AssignmentEvent) - used_events
    if missing:
        raise RuntimeError(f"Events without transitions: {sorted(e.value for e in missing)}")
    for status in NON_TERMINAL_STATUSES:
        if not any(source == status for source, _ in TRANSITIONS):
            raise RuntimeError(f"Non-terminal status {status.value} has no way out")


_check_table()


def next_status(current: AssignmentStatus, event: AssignmentEvent) -> AssignmentStatus:
    """Return the target status or raise ConflictError for an unknown transition."""
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise ConflictError(
            f"Assignment in status '{current.value}' cannot handle '{event.value}'"
        ) from None


def accepts_telemetry(status: AssignmentStatus) -> bool:
    return status in TELEMETRY_STATUSES


def apply_event(
    assignment: Assignment,
    event: AssignmentEvent,
    now: Optional[datetime] = None
) -> AssignmentStatus:
    """Move an assignment through one transition and apply its field updates.

    Callers hold a row lock on the assignment and commit afterwards.
    """
    now = now or utcnow()
    previous = assignment.status

    if event == E.CLOSE_OUT and assignment.proof_status != ProofObligation.PENDING_FINAL:
        raise ConflictError("Assignment has no pending final proof to close out")

    target = next_status(previous, event)

    if event == E.APPROVE_INSTALL:
        assignment.installed_at = now
        assignment.proof_status = ProofObligation.NONE
    elif event == E.DISMISS_FRAUD:
        assignment.resumed_at = now
    elif event == E.CLOSE_OUT:
        assignment.proof_status = ProofObligation.NONE
        assignment.payout_processed_at = now

    assignment.status = target
    logger.info(
        f"Assignment {assignment.id}: {previous.value} --{event.value}--> {target.value}"
    )
    return target


def raise_proof_obligation(assignment: Assignment, obligation: ProofObligation) -> bool:
    """Set the proof sub-flag on an active assignment.

    Status is left untouched. A pending final proof supersedes a pending
    random one; returns False when nothing changed.
    """
    if obligation == ProofObligation.NONE:
        raise ValueError("Use a review outcome to clear proof obligations")
    if assignment.status != S.ACTIVE:
        return False
    if assignment.proof_status == obligation:
        return False
    if assignment.proof_status == ProofObligation.PENDING_FINAL:
        return False
    assignment.proof_status = obligation
    return True


def flag_fraud(
    db: Session,
    assignment: Assignment,
    reason: FraudReason,
    details: Optional[Dict] = None,
    now: Optional[datetime] = None
) -> FraudAlert:
    """Transition an assignment into Fraud and open the matching alert."""
    apply_event(assignment, _FRAUD_EVENTS[reason], now=now)
    alert = FraudAlert(
        assignment_id=assignment.id,
        reason=reason,
        details=details or {},
        status=FraudAlertStatus.OPEN,
    )
    db.add(alert)
    notify_driver(
        db,
        assignment.driver_id,
        "Campaign suspended",
        "Your campaign was suspended for review after suspicious activity.",
        {"assignment_id": assignment.id, "reason": reason.value},
    )
    logger.warning(
        f"Assignment {assignment.id} flagged as fraud ({reason.value}): {details or {}}"
    )
    return alert
