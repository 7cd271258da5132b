import enum

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, ForeignKey, JSON, Boolean,
    Numeric, Text, Enum, UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class VehicleCategory(str, enum.Enum):
    ESSENTIAL = "essential"
    SMART = "smart"
    PRIME = "prime"

    @property
    def rank(self) -> int:
        return _CATEGORY_RANK[self]


_CATEGORY_RANK = {
    VehicleCategory.ESSENTIAL: 1,
    VehicleCategory.SMART: 2,
    VehicleCategory.PRIME: 3,
}


class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    FINISHED = "finished"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class AssignmentStatus(str, enum.Enum):
    APPLIED = "assigned"
    ACCEPTED = "accepted"
    SCHEDULED = "scheduled"
    AWAITING_INSTALL_APPROVAL = "awaiting_install_approval"
    ACTIVE = "active"
    FRAUD = "fraud"
    REMOVAL_REQUESTED = "removal_requested"
    REMOVED = "removed"
    REJECTED = "rejected"
    FINISHED = "finished"


class ProofObligation(str, enum.Enum):
    NONE = "none"
    PENDING_RANDOM = "pending_random"
    PENDING_FINAL = "pending_final"


class ProofType(str, enum.Enum):
    RANDOM = "random"
    FINAL = "final"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FraudReason(str, enum.Enum):
    GPS_SPOOFING = "gps_spoofing"
    INACTIVITY = "inactivity"


class FraudAlertStatus(str, enum.Enum):
    OPEN = "open"
    DISMISSED = "dismissed"
    PENALIZED = "penalized"


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(enum_cls, native_enum=False, length=32,
             values_callable=lambda members: [m.value for m in members]),
        **kwargs
    )


class Driver(Base):
    __tablename__ = "drivers"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), unique=True, nullable=False)
    name = Column(String(255))
    created_at = Column(DateTime, server_default=func.now())
    vehicles = relationship("Vehicle", back_populates="driver")


class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    plate = Column(String(16), nullable=False)
    model = Column(String(128))
    year = Column(Integer)
    category = _enum_column(VehicleCategory, nullable=False, default=VehicleCategory.ESSENTIAL)
    created_at = Column(DateTime, server_default=func.now())
    driver = relationship("Driver", back_populates="vehicles")


class Advertiser(Base):
    __tablename__ = "advertisers"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Campaign(Base):
    __tablename__ = "campaigns"
    id = Column(Integer, primary_key=True)
    advertiser_id = Column(Integer, ForeignKey("advertisers.id"), nullable=False)
    title = Column(String(255), nullable=False)
    status = _enum_column(CampaignStatus, nullable=False, default=CampaignStatus.DRAFT)
    budget = Column(Numeric(12, 2), nullable=False, default=0)
    num_cars = Column(Integer, nullable=False)
    target_category = _enum_column(VehicleCategory, nullable=False, default=VehicleCategory.ESSENTIAL)
    duration_days = Column(Integer)
    start_at = Column(DateTime)
    end_at = Column(DateTime)
    driver_payout = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    advertiser = relationship("Advertiser")

    __table_args__ = (
        Index("ix_campaigns_status", "status"),
    )


class Assignment(Base):
    __tablename__ = "assignments"
    id = Column(Integer, primary_key=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    status = _enum_column(AssignmentStatus, nullable=False, default=AssignmentStatus.APPLIED)
    proof_status = _enum_column(ProofObligation, nullable=False, default=ProofObligation.NONE)
    payout_amount = Column(Numeric(12, 2), nullable=False, default=0)
    installer_ref = Column(String(128))
    scheduled_install_at = Column(DateTime)
    installed_at = Column(DateTime)
    resumed_at = Column(DateTime)
    exit_reason = Column(Text)
    payout_processed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    driver = relationship("Driver")
    campaign = relationship("Campaign")
    vehicle = relationship("Vehicle")

    __table_args__ = (
        Index("ix_assignments_driver_status", "driver_id", "status"),
        Index("ix_assignments_campaign_status", "campaign_id", "status"),
    )


class Position(Base):
    __tablename__ = "positions"
    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    speed = Column(Float)
    ts = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("assignment_id", "ts", name="uq_positions_assignment_ts"),
        Index("ix_positions_driver_ts", "driver_id", "ts"),
    )


class DailyMetric(Base):
    __tablename__ = "daily_metrics"
    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    date = Column(Date, nullable=False)
    kilometers_driven = Column(Float, nullable=False, default=0.0)
    time_in_motion_seconds = Column(Integer, nullable=False, default=0)
    points_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("assignment_id", "date", name="uq_daily_metrics_assignment_date"),
    )


class InstallProof(Base):
    __tablename__ = "install_proofs"
    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    photo_before_url = Column(String(1024), nullable=False)
    photo_after_url = Column(String(1024), nullable=False)
    status = _enum_column(ReviewStatus, nullable=False, default=ReviewStatus.PENDING)
    notes = Column(Text)
    reviewed_by = Column(String(128))
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    assignment = relationship("Assignment")


class PeriodicProof(Base):
    __tablename__ = "periodic_proofs"
    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    proof_type = _enum_column(ProofType, nullable=False)
    photo_url = Column(String(1024), nullable=False)
    status = _enum_column(ReviewStatus, nullable=False, default=ReviewStatus.PENDING)
    notes = Column(Text)
    reviewed_by = Column(String(128))
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    assignment = relationship("Assignment")


class FraudAlert(Base):
    __tablename__ = "fraud_alerts"
    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    reason = _enum_column(FraudReason, nullable=False)
    details = Column(JSON)
    status = _enum_column(FraudAlertStatus, nullable=False, default=FraudAlertStatus.OPEN)
    notes = Column(Text)
    resolved_by = Column(String(128))
    resolved_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    assignment = relationship("Assignment")


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text)
    data = Column(JSON)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
