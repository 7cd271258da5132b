import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="driveads-tests-")

# Must be set before the package reads its configuration
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["LOG_FILE"] = os.path.join(_TMP_DIR, "test.log")
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"

from datetime import timedelta

import pytest

from driveads.db import SessionLocal, engine
from driveads.models import (
    Advertiser, Assignment, AssignmentStatus, Base, Campaign, CampaignStatus,
    Driver, Position, ProofObligation, Vehicle, VehicleCategory,
)
from driveads.timeutil import utcnow


class Factory:
    """Builds committed rows for tests."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def driver(self, user_id=None, category=VehicleCategory.SMART) -> Driver:
        n = self._next()
        driver = Driver(user_id=user_id or f"driver-{n}", name=f"Driver {n}")
        driver.vehicles.append(Vehicle(plate=f"ABC{n:04d}", model="Onix", year=2022, category=category))
        self.db.add(driver)
        self.db.commit()
        self.db.refresh(driver)
        return driver

    def campaign(self, num_cars=1, status=CampaignStatus.ACTIVE,
                 target_category=VehicleCategory.ESSENTIAL, duration_days=30,
                 end_at=None, driver_payout=150) -> Campaign:
        advertiser = Advertiser(name=f"Advertiser {self._next()}")
        self.db.add(advertiser)
        self.db.flush()
        campaign = Campaign(
            advertiser_id=advertiser.id,
            title="Summer campaign",
            status=status,
            budget=10000,
            num_cars=num_cars,
            target_category=target_category,
            duration_days=duration_days,
            start_at=utcnow() - timedelta(days=1),
            end_at=end_at,
            driver_payout=driver_payout,
        )
        self.db.add(campaign)
        self.db.commit()
        self.db.refresh(campaign)
        return campaign

    def assignment(self, driver=None, campaign=None, status=AssignmentStatus.ACTIVE,
                   installed_at=None, proof_status=ProofObligation.NONE) -> Assignment:
        driver = driver or self.driver()
        campaign = campaign or self.campaign(num_cars=10)
        if installed_at is None and status == AssignmentStatus.ACTIVE:
            installed_at = utcnow() - timedelta(days=1)
        assignment = Assignment(
            driver_id=driver.id,
            campaign_id=campaign.id,
            vehicle_id=driver.vehicles[0].id,
            status=status,
            proof_status=proof_status,
            payout_amount=campaign.driver_payout,
            installed_at=installed_at,
        )
        self.db.add(assignment)
        self.db.commit()
        self.db.refresh(assignment)
        return assignment

    def position(self, assignment, lat, lon, ts, speed=None) -> Position:
        position = Position(
            assignment_id=assignment.id,
            driver_id=assignment.driver_id,
            lat=lat,
            lon=lon,
            ts=ts,
            speed=speed,
        )
        self.db.add(position)
        self.db.commit()
        return position


@pytest.fixture(autouse=True)
def reset_db():
    """Recreate the schema for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)
