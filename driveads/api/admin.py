from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import review
from ..campaigns import review_campaign
from ..config import config
from ..db import get_db
from ..schemas import (
    AssignmentOut, CampaignOut, FraudAlertOut, FraudResolveIn, InstallProofOut,
    PeriodicProofOut, ReviewIn,
)
from .deps import CurrentUser, require_admin

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/proofs/installations/{proof_id}/review", response_model=InstallProofOut)
def review_install_proof(
    proof_id: int,
    body: ReviewIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return review.review_install_proof(db, proof_id, body.approved, admin.user_id, body.notes)


@router.post("/proofs/periodic/{proof_id}/review", response_model=PeriodicProofOut)
def review_periodic_proof(
    proof_id: int,
    body: ReviewIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return review.review_periodic_proof(db, proof_id, body.approved, admin.user_id, body.notes)


@router.post("/fraud-alerts/{alert_id}/resolve", response_model=FraudAlertOut)
def resolve_fraud_alert(
    alert_id: int,
    body: FraudResolveIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return review.resolve_fraud_alert(db, alert_id, body.action, admin.user_id, body.notes)


@router.post("/assignments/{assignment_id}/review", response_model=AssignmentOut)
def review_application(
    assignment_id: int,
    body: ReviewIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return review.review_application(db, assignment_id, body.approved)


@router.post("/assignments/{assignment_id}/confirm-removal", response_model=AssignmentOut)
def confirm_removal(
    assignment_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return review.confirm_removal(db, assignment_id)


@router.post("/campaigns/{campaign_id}/review", response_model=CampaignOut)
def review_campaign_endpoint(
    campaign_id: int,
    body: ReviewIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return review_campaign(db, campaign_id, body.approved)


@router.get("/config")
def get_config(admin: CurrentUser = Depends(require_admin)):
    """Current anti-fraud thresholds and job schedule."""
    return {
        "antifraud": config.get_antifraud_config(),
        "schedule": config.get_schedule_config(),
    }
