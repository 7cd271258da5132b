import datetime as dt
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from .models import (
    AssignmentStatus, CampaignStatus, FraudAlertStatus, FraudReason,
    ProofObligation, ProofType, ReviewStatus, VehicleCategory,
)


class PositionIn(BaseModel):
    # ranges are checked per point during ingestion, not here
    lat: float
    lon: float
    timestamp: datetime
    speed: Optional[float] = None


class BatchResponse(BaseModel):
    success: bool
    accepted: int
    message: str


class ApplyIn(BaseModel):
    vehicle_id: Optional[int] = None


class ScheduleInstallIn(BaseModel):
    scheduled_at: datetime
    installer_ref: Optional[str] = None


class InstallProofIn(BaseModel):
    photo_before_url: Optional[str] = None
    photo_after_url: Optional[str] = None


class PeriodicProofIn(BaseModel):
    proof_type: ProofType
    photo_url: Optional[str] = None


class ExitRequestIn(BaseModel):
    reason: Optional[str] = None


class ReviewIn(BaseModel):
    approved: bool
    notes: Optional[str] = None


class FraudResolveIn(BaseModel):
    action: Literal["dismiss", "penalize"]
    notes: Optional[str] = None


class PaymentWebhookIn(BaseModel):
    campaign_id: int
    status: str


class CampaignOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    status: CampaignStatus
    num_cars: int
    target_category: VehicleCategory
    duration_days: Optional[int] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    driver_payout: float


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    driver_id: int
    campaign_id: int
    vehicle_id: int
    status: AssignmentStatus
    proof_status: ProofObligation
    payout_amount: float
    scheduled_install_at: Optional[datetime] = None
    installed_at: Optional[datetime] = None
    payout_processed_at: Optional[datetime] = None


class InstallProofOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    assignment_id: int
    photo_before_url: str
    photo_after_url: str
    status: ReviewStatus
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class PeriodicProofOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    assignment_id: int
    proof_type: ProofType
    photo_url: str
    status: ReviewStatus
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class FraudAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    assignment_id: int
    reason: FraudReason
    status: FraudAlertStatus
    notes: Optional[str] = None
    resolved_at: Optional[datetime] = None


class DailyMetricOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignment_id: int
    date: dt.date
    kilometers_driven: float
    time_in_motion_seconds: int


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    body: Optional[str] = None
    data: Optional[dict] = None
    is_read: bool
    created_at: Optional[datetime] = None
