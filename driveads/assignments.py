"""Driver-side assignment operations: applying, installation and proofs."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from .lifecycle import AssignmentEvent, apply_event
from .models import (
    Assignment, AssignmentStatus, Campaign, CampaignStatus, DailyMetric, Driver,
    InstallProof, PeriodicProof, ProofObligation, ProofType, ReviewStatus, Vehicle,
    VehicleCategory,
)
from .persistence import (
    count_open_assignments, get_daily_metrics as _get_daily_metrics,
    get_open_assignment, lock_assignment, lock_campaign, lock_driver,
)
from .timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

_OBLIGATION_FOR_PROOF = {
    ProofType.RANDOM: ProofObligation.PENDING_RANDOM,
    ProofType.FINAL: ProofObligation.PENDING_FINAL,
}


def _best_vehicle(driver: Driver) -> Optional[Vehicle]:
    if not driver.vehicles:
        return None
    return max(driver.vehicles, key=lambda v: (v.category.rank, -v.id))


def _require_open_assignment(db: Session, driver: Driver) -> Assignment:
    assignment = get_open_assignment(db, driver.id)
    if assignment is None:
        raise NotFoundError("No current assignment for this driver")
    # re-read under lock; status may have moved since the lookup
    return lock_assignment(db, assignment.id)


def list_eligible_campaigns(db: Session, driver: Driver, now: Optional[datetime] = None) -> List[Campaign]:
    """Active campaigns the driver's best vehicle qualifies for, with free seats."""
    now = now or utcnow()
    vehicle = _best_vehicle(driver)
    if vehicle is None:
        return []

    allowed = [c for c in VehicleCategory if c.rank <= vehicle.category.rank]
    campaigns = db.query(Campaign).filter(
        Campaign.status == CampaignStatus.ACTIVE,
        Campaign.target_category.in_(allowed)
    ).order_by(Campaign.id).all()

    return [
        campaign for campaign in campaigns
        if (campaign.end_at is None or campaign.end_at > now)
        and count_open_assignments(db, campaign.id) < campaign.num_cars
    ]


def apply_for_campaign(
    db: Session,
    driver: Driver,
    campaign_id: int,
    vehicle_id: Optional[int] = None,
    now: Optional[datetime] = None
) -> Assignment:
    """Create an assignment in the Applied state.

    The campaign row is locked while seats are counted, and the driver row
    while the one-open-assignment rule is checked.
    """
    now = now or utcnow()
    try:
        campaign = lock_campaign(db, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        if campaign.status != CampaignStatus.ACTIVE:
            raise ConflictError(f"Campaign is not open for applications (status: {campaign.status.value})")
        if campaign.end_at is not None and campaign.end_at <= now:
            raise ConflictError("Campaign has already ended")

        lock_driver(db, driver.id)
        if get_open_assignment(db, driver.id) is not None:
            raise ConflictError("Driver already has an ongoing campaign")

        if vehicle_id is None:
            vehicle = _best_vehicle(driver)
            if vehicle is None:
                raise ConflictError("Driver has no registered vehicle")
        else:
            vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
            if vehicle is None:
                raise NotFoundError(f"Vehicle {vehicle_id} not found")
            if vehicle.driver_id != driver.id:
                raise PermissionDenied("Vehicle does not belong to this driver")

        if vehicle.category.rank < campaign.target_category.rank:
            raise ConflictError(
                f"Vehicle category '{vehicle.category.value}' does not meet "
                f"campaign requirement '{campaign.target_category.value}'"
            )

        if count_open_assignments(db, campaign.id) >= campaign.num_cars:
            raise ConflictError("Campaign is at full capacity")

        assignment = Assignment(
            driver_id=driver.id,
            campaign_id=campaign.id,
            vehicle_id=vehicle.id,
            status=AssignmentStatus.APPLIED,
            proof_status=ProofObligation.NONE,
            payout_amount=campaign.driver_payout,
        )
        db.add(assignment)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(assignment)
    logger.info(f"Driver {driver.id} applied to campaign {campaign_id}: assignment {assignment.id}")
    return assignment


def get_current_assignment(db: Session, driver: Driver) -> Optional[Assignment]:
    return get_open_assignment(db, driver.id)


def schedule_installation(
    db: Session,
    driver: Driver,
    scheduled_at: datetime,
    installer_ref: Optional[str] = None,
    now: Optional[datetime] = None
) -> Assignment:
    now = now or utcnow()
    scheduled_at = to_naive_utc(scheduled_at)
    if scheduled_at <= now:
        raise ValidationError("Installation must be scheduled in the future")

    try:
        assignment = _require_open_assignment(db, driver)
        apply_event(assignment, AssignmentEvent.SCHEDULE_INSTALL, now=now)
        assignment.scheduled_install_at = scheduled_at
        assignment.installer_ref = installer_ref
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(assignment)
    return assignment


def submit_install_proof(
    db: Session,
    driver: Driver,
    photo_before_url: Optional[str],
    photo_after_url: Optional[str]
) -> InstallProof:
    """Attach before/after photos and hand the installation to review."""
    if not photo_before_url or not photo_after_url:
        raise ValidationError("Both before and after installation photos are required")

    try:
        assignment = _require_open_assignment(db, driver)
        apply_event(assignment, AssignmentEvent.SUBMIT_INSTALL_PROOF)
        proof = InstallProof(
            assignment_id=assignment.id,
            photo_before_url=photo_before_url,
            photo_after_url=photo_after_url,
            status=ReviewStatus.PENDING,
        )
        db.add(proof)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(proof)
    return proof


def submit_periodic_proof(
    db: Session,
    driver: Driver,
    proof_type: ProofType,
    photo_url: Optional[str]
) -> PeriodicProof:
    """Submit a random or final proof against the outstanding obligation."""
    if not photo_url:
        raise ValidationError("A proof photo is required")

    try:
        assignment = _require_open_assignment(db, driver)
        if assignment.status != AssignmentStatus.ACTIVE:
            raise ConflictError("Proofs can only be submitted for active assignments")
        if assignment.proof_status != _OBLIGATION_FOR_PROOF[proof_type]:
            raise ConflictError(f"No {proof_type.value} proof is currently requested")

        pending = db.query(PeriodicProof).filter(
            PeriodicProof.assignment_id == assignment.id,
            PeriodicProof.proof_type == proof_type,
            PeriodicProof.status == ReviewStatus.PENDING
        ).first()
        if pending is not None:
            raise ConflictError(f"A {proof_type.value} proof is already awaiting review")

        proof = PeriodicProof(
            assignment_id=assignment.id,
            proof_type=proof_type,
            photo_url=photo_url,
            status=ReviewStatus.PENDING,
        )
        db.add(proof)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(proof)
    return proof


def request_exit(db: Session, driver: Driver, reason: Optional[str] = None) -> Assignment:
    try:
        assignment = _require_open_assignment(db, driver)
        apply_event(assignment, AssignmentEvent.REQUEST_EXIT)
        assignment.exit_reason = reason
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(assignment)
    return assignment


def retry_application(db: Session, driver: Driver, assignment_id: int) -> Assignment:
    """Reopen a rejected application, keeping the one-open-assignment rule."""
    try:
        assignment = lock_assignment(db, assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        if assignment.driver_id != driver.id:
            raise PermissionDenied("Assignment does not belong to this driver")

        lock_driver(db, driver.id)
        if get_open_assignment(db, driver.id) is not None:
            raise ConflictError("Driver already has an ongoing campaign")

        campaign = lock_campaign(db, assignment.campaign_id)
        if count_open_assignments(db, campaign.id) >= campaign.num_cars:
            raise ConflictError("Campaign is at full capacity")

        apply_event(assignment, AssignmentEvent.RETRY_APPLICATION)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(assignment)
    return assignment


def get_daily_metrics(db: Session, driver: Driver, days: int = 30) -> List[DailyMetric]:
    assignment = get_open_assignment(db, driver.id)
    if assignment is None:
        return []
    return _get_daily_metrics(db, assignment.id, days)
