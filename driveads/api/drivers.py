from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import assignments
from ..db import get_db
from ..models import Driver
from ..notifications import get_driver_notifications
from ..schemas import (
    ApplyIn, AssignmentOut, CampaignOut, DailyMetricOut, ExitRequestIn,
    InstallProofIn, InstallProofOut, NotificationOut, PeriodicProofIn,
    PeriodicProofOut, ScheduleInstallIn,
)
from .deps import get_current_driver

router = APIRouter(prefix="/drivers/me", tags=["drivers"])


@router.get("/campaigns", response_model=List[CampaignOut])
def list_eligible_campaigns(
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    """Campaigns the driver can apply to right now."""
    return assignments.list_eligible_campaigns(db, driver)


@router.post("/campaigns/{campaign_id}/apply", response_model=AssignmentOut, status_code=201)
def apply_for_campaign(
    campaign_id: int,
    body: Optional[ApplyIn] = None,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    vehicle_id = body.vehicle_id if body else None
    return assignments.apply_for_campaign(db, driver, campaign_id, vehicle_id=vehicle_id)


@router.get("/assignment", response_model=Optional[AssignmentOut])
def get_current_assignment(
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    return assignments.get_current_assignment(db, driver)


@router.post("/assignment/schedule", response_model=AssignmentOut)
def schedule_installation(
    body: ScheduleInstallIn,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    return assignments.schedule_installation(db, driver, body.scheduled_at, body.installer_ref)


@router.post("/assignment/install-proof", response_model=InstallProofOut, status_code=201)
def submit_install_proof(
    body: InstallProofIn,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    return assignments.submit_install_proof(db, driver, body.photo_before_url, body.photo_after_url)


@router.post("/assignment/periodic-proof", response_model=PeriodicProofOut, status_code=201)
def submit_periodic_proof(
    body: PeriodicProofIn,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    return assignments.submit_periodic_proof(db, driver, body.proof_type, body.photo_url)


@router.post("/assignment/exit", response_model=AssignmentOut)
def request_exit(
    body: ExitRequestIn,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    return assignments.request_exit(db, driver, body.reason)


@router.post("/assignments/{assignment_id}/retry", response_model=AssignmentOut)
def retry_application(
    assignment_id: int,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db)
):
    return assignments.retry_application(db, driver, assignment_id)


@router.get("/metrics", response_model=List[DailyMetricOut])
def get_daily_metrics(
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
    days: int = Query(30, ge=1, le=365, description="Number of days to look back")
):
    """Daily rollups of the driver's current assignment."""
    return assignments.get_daily_metrics(db, driver, days)


@router.get("/notifications", response_model=List[NotificationOut])
def list_notifications(
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=200)
):
    return get_driver_notifications(db, driver.id, limit)
