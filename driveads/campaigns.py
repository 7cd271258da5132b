import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError
from .lifecycle import raise_proof_obligation
from .models import Assignment, AssignmentStatus, Campaign, CampaignStatus, ProofObligation
from .notifications import notify_driver
from .persistence import lock_campaign
from .timeutil import utcnow

logger = logging.getLogger(__name__)

APPROVED_PAYMENT = "approved"


def confirm_payment(db: Session, campaign_id: int, payment_status: str) -> Campaign:
    """Apply a verified gateway payment notification to a campaign.

    Only an approved payment on a draft moves it to pending_approval;
    replays of the same notification leave the campaign as it is.
    """
    try:
        campaign = lock_campaign(db, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")

        if payment_status != APPROVED_PAYMENT:
            logger.info(f"Payment for campaign {campaign_id} has status '{payment_status}'; no change")
        elif campaign.status == CampaignStatus.DRAFT:
            campaign.status = CampaignStatus.PENDING_APPROVAL
            logger.info(f"Campaign {campaign_id} paid, awaiting approval")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(campaign)
    return campaign


def review_campaign(db: Session, campaign_id: int, approved: bool) -> Campaign:
    try:
        campaign = lock_campaign(db, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        if campaign.status != CampaignStatus.PENDING_APPROVAL:
            raise ConflictError(f"Campaign is not awaiting approval (status: {campaign.status.value})")

        campaign.status = CampaignStatus.ACTIVE if approved else CampaignStatus.REJECTED
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(campaign)
    logger.info(f"Campaign {campaign_id} reviewed: {campaign.status.value}")
    return campaign


def list_expired_campaign_ids(db: Session, now: Optional[datetime] = None) -> List[int]:
    now = now or utcnow()
    rows = db.query(Campaign.id).filter(
        Campaign.status == CampaignStatus.ACTIVE,
        Campaign.end_at.isnot(None),
        Campaign.end_at <= now
    ).order_by(Campaign.id).all()
    return [row.id for row in rows]


def expire_campaign(db: Session, campaign_id: int, now: Optional[datetime] = None) -> int:
    """Finish an active campaign past its end date.

    Every still-active assignment under it gets a pending final proof.
    Returns how many assignments were flagged; 0 on re-runs.
    """
    now = now or utcnow()
    try:
        campaign = lock_campaign(db, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        if campaign.end_at is None or campaign.end_at > now:
            db.rollback()
            return 0

        if campaign.status == CampaignStatus.ACTIVE:
            campaign.status = CampaignStatus.FINISHED
            logger.info(f"Campaign {campaign_id} reached its end date and was finished")

        assignments = db.query(Assignment).filter(
            Assignment.campaign_id == campaign_id,
            Assignment.status == AssignmentStatus.ACTIVE
        ).with_for_update().all()

        flagged = 0
        for assignment in assignments:
            if raise_proof_obligation(assignment, ProofObligation.PENDING_FINAL):
                flagged += 1
                notify_driver(
                    db,
                    assignment.driver_id,
                    "Campaign finished",
                    "The campaign has ended. Submit your final proof to receive payment.",
                    {"assignment_id": assignment.id, "proof_type": "final"},
                )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return flagged
