import math
from datetime import datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient

from driveads.config import config
from driveads.geo import EARTH_RADIUS_KM
from driveads.ingestion import FRAUD_MESSAGE
from driveads.jobs.tasks import calculate_daily_metrics_task
from driveads.main import app
from driveads.models import AssignmentStatus, CampaignStatus, FraudAlert
from driveads.timeutil import utcnow

client = TestClient(app)

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def driver_headers(driver):
    return {"X-User-Id": driver.user_id, "X-User-Role": "driver"}


def km_to_lat(km):
    return math.degrees(km / EARTH_RADIUS_KM)


class TestCampaignFlow:
    """End-to-end flow from application to fraud review."""

    @pytest.fixture(autouse=True)
    def setup(self, db, factory):
        self.db = db
        self.driver = factory.driver()
        self.campaign = factory.campaign(num_cars=1, driver_payout=300)
        self.headers = driver_headers(self.driver)
        self.day = utcnow().date() - timedelta(days=1)
        self.start = datetime.combine(self.day, time(8, 0))

    def activate(self):
        response = client.post(f"/drivers/me/campaigns/{self.campaign.id}/apply", headers=self.headers)
        assert response.status_code == 201
        assert response.json()["status"] == "assigned"

        scheduled_at = (utcnow() + timedelta(days=1)).isoformat()
        response = client.post("/drivers/me/assignment/schedule", headers=self.headers,
                               json={"scheduled_at": scheduled_at, "installer_ref": "shop-3"})
        assert response.status_code == 200
        assert response.json()["status"] == "scheduled"

        response = client.post("/drivers/me/assignment/install-proof", headers=self.headers,
                               json={"photo_before_url": "https://cdn/b.jpg", "photo_after_url": "https://cdn/a.jpg"})
        assert response.status_code == 201
        proof_id = response.json()["id"]

        response = client.post(f"/admin/proofs/installations/{proof_id}/review", headers=ADMIN,
                               json={"approved": True})
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = client.get("/drivers/me/assignment", headers=self.headers)
        assert response.json()["status"] == "active"
        return response.json()["id"]

    def pings(self, count, step_km, step_seconds, start=None, start_km=0.0):
        start = start or self.start
        return [
            {
                "lat": km_to_lat(start_km + step_km * i),
                "lon": 0.0,
                "timestamp": (start + timedelta(seconds=step_seconds * i)).isoformat(),
            }
            for i in range(count)
        ]

    def test_eligible_campaigns(self):
        response = client.get("/drivers/me/campaigns", headers=self.headers)
        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [self.campaign.id]

    def test_full_flow(self):
        assignment_id = self.activate()

        # 10 pings, 400 s apart, 40/9 km each: 40 km/h
        response = client.post("/positions/batch", headers=self.headers,
                               json=self.pings(10, step_km=40 / 9, step_seconds=400))
        assert response.status_code == 200
        assert response.json() == {"success": True, "accepted": 10, "message": "10 positions received."}

        result = calculate_daily_metrics_task.delay(assignment_id, self.day.isoformat()).get()
        assert result["kilometers_driven"] == pytest.approx(40.0, rel=1e-6)

        response = client.get("/drivers/me/metrics", headers=self.headers)
        assert response.status_code == 200
        metrics = response.json()
        assert metrics[0]["date"] == self.day.isoformat()
        assert metrics[0]["kilometers_driven"] == pytest.approx(40.0, rel=1e-6)
        assert metrics[0]["time_in_motion_seconds"] == 3600

        # 500 km/h jump one minute after the last ping
        last = self.start + timedelta(seconds=3600)
        response = client.post("/positions/batch", headers=self.headers,
                               json=self.pings(1, 0, 60, start=last + timedelta(seconds=60), start_km=40.0 + 500 / 60))
        assert response.status_code == 200
        assert response.json() == {"success": False, "accepted": 0, "message": FRAUD_MESSAGE}

        response = client.get("/drivers/me/assignment", headers=self.headers)
        assert response.json()["status"] == "fraud"

        # telemetry while under review is ignored
        response = client.post("/positions/batch", headers=self.headers,
                               json=self.pings(2, 0.1, 60, start=last + timedelta(hours=1), start_km=40.0))
        assert response.json()["accepted"] == 0

        alert = self.db.query(FraudAlert).filter(FraudAlert.assignment_id == assignment_id).one()
        response = client.post(f"/admin/fraud-alerts/{alert.id}/resolve", headers=ADMIN,
                               json={"action": "dismiss", "notes": "Tunnel glitch"})
        assert response.status_code == 200
        assert response.json()["status"] == "dismissed"

        response = client.get("/drivers/me/assignment", headers=self.headers)
        assert response.json()["status"] == "active"

        response = client.get("/drivers/me/notifications", headers=self.headers)
        titles = [n["title"] for n in response.json()]
        assert "Campaign suspended" in titles
        assert "Installation approved" in titles

    def test_full_campaign(self, factory):
        self.activate()
        other = factory.driver()
        response = client.post(f"/drivers/me/campaigns/{self.campaign.id}/apply", headers=driver_headers(other))
        assert response.status_code == 409
        assert response.json()["detail"] == "Campaign is at full capacity"

    def test_second_application(self, factory):
        self.activate()
        campaign = factory.campaign(num_cars=3)
        response = client.post(f"/drivers/me/campaigns/{campaign.id}/apply", headers=self.headers)
        assert response.status_code == 409

    def test_exit_and_removal(self):
        assignment_id = self.activate()

        response = client.post("/drivers/me/assignment/exit", headers=self.headers, json={"reason": "Moving away"})
        assert response.json()["status"] == "removal_requested"

        response = client.post(f"/admin/assignments/{assignment_id}/confirm-removal", headers=ADMIN)
        assert response.json()["status"] == "removed"

        response = client.get("/drivers/me/assignment", headers=self.headers)
        assert response.json() is None

    def test_schedule_in_past(self):
        client.post(f"/drivers/me/campaigns/{self.campaign.id}/apply", headers=self.headers)
        response = client.post("/drivers/me/assignment/schedule", headers=self.headers,
                               json={"scheduled_at": (utcnow() - timedelta(hours=1)).isoformat()})
        assert response.status_code == 422

    def test_periodic_proof_without_request(self):
        self.activate()
        response = client.post("/drivers/me/assignment/periodic-proof", headers=self.headers,
                               json={"proof_type": "random", "photo_url": "https://cdn/p.jpg"})
        assert response.status_code == 409


class TestPositionsEndpoint:
    """Test edge cases of batch submission."""

    def test_without_driver_profile(self):
        response = client.post("/positions/batch", headers={"X-User-Id": "ghost", "X-User-Role": "driver"},
                               json=[{"lat": 0.0, "lon": 0.0, "timestamp": "2026-03-10T08:00:00"}])
        assert response.status_code == 200
        assert response.json()["accepted"] == 0

    def test_without_campaign(self, factory):
        driver = factory.driver()
        response = client.post("/positions/batch", headers=driver_headers(driver),
                               json=[{"lat": 0.0, "lon": 0.0, "timestamp": "2026-03-10T08:00:00"}])
        assert response.json() == {"success": True, "accepted": 0, "message": "0 positions received."}

    def test_out_of_range_points_skipped(self, factory):
        assignment = factory.assignment()
        driver = assignment.driver
        response = client.post("/positions/batch", headers=driver_headers(driver), json=[
            {"lat": 0.0, "lon": 0.0, "timestamp": "2026-03-10T08:00:00"},
            {"lat": 91.0, "lon": 0.0, "timestamp": "2026-03-10T08:01:00"},
            {"lat": 0.001, "lon": 0.0, "timestamp": "2026-03-10T08:02:00", "speed": 12.5},
        ])
        assert response.json()["accepted"] == 2

    def test_timezone_aware_timestamps(self, db, factory):
        assignment = factory.assignment()
        response = client.post("/positions/batch", headers=driver_headers(assignment.driver), json=[
            {"lat": 0.0, "lon": 0.0, "timestamp": "2026-03-10T05:00:00-03:00"},
        ])
        assert response.json()["accepted"] == 1

    def test_malformed_body(self, factory):
        driver = factory.driver()
        response = client.post("/positions/batch", headers=driver_headers(driver),
                               json=[{"lat": "north", "lon": 0.0, "timestamp": "2026-03-10T08:00:00"}])
        assert response.status_code == 422

    def test_admin_cannot_submit(self):
        response = client.post("/positions/batch", headers=ADMIN, json=[])
        assert response.status_code == 403


class TestAccessControl:
    """Test identity headers and roles."""

    def test_missing_headers(self):
        response = client.get("/drivers/me/campaigns")
        assert response.status_code == 422

    def test_driver_on_admin_route(self, factory):
        driver = factory.driver()
        response = client.post("/admin/fraud-alerts/1/resolve", headers=driver_headers(driver),
                               json={"action": "dismiss"})
        assert response.status_code == 403

    def test_unknown_driver_profile(self):
        response = client.get("/drivers/me/assignment", headers={"X-User-Id": "ghost", "X-User-Role": "driver"})
        assert response.status_code == 404

    def test_unknown_proof(self):
        response = client.post("/admin/proofs/installations/999/review", headers=ADMIN, json={"approved": True})
        assert response.status_code == 404

    def test_invalid_fraud_action(self):
        response = client.post("/admin/fraud-alerts/1/resolve", headers=ADMIN, json={"action": "ignore"})
        assert response.status_code == 422


class TestAdminEndpoints:
    """Test admin reviews over HTTP."""

    def test_application_review(self, factory):
        assignment = factory.assignment(status=AssignmentStatus.APPLIED)
        response = client.post(f"/admin/assignments/{assignment.id}/review", headers=ADMIN,
                               json={"approved": False, "notes": "Vehicle too old"})
        assert response.json()["status"] == "rejected"

        response = client.post(f"/drivers/me/assignments/{assignment.id}/retry",
                               headers=driver_headers(assignment.driver))
        assert response.json()["status"] == "accepted"

    def test_campaign_review(self, factory):
        campaign = factory.campaign(status=CampaignStatus.PENDING_APPROVAL)
        response = client.post(f"/admin/campaigns/{campaign.id}/review", headers=ADMIN, json={"approved": True})
        assert response.json()["status"] == "active"

    def test_config(self):
        response = client.get("/admin/config", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["antifraud"]["max_plausible_speed_kph"] == 300
        assert response.json()["schedule"]["metrics_cron_hour"] == 3


class TestPaymentWebhook:
    """Test the payment notification endpoint."""

    def post(self, payload, secret=None):
        headers = {"X-Webhook-Secret": secret if secret is not None else config.payment_webhook_secret}
        return client.post("/webhooks/payment", json=payload, headers=headers)

    def test_approved_payment(self, factory):
        campaign = factory.campaign(status=CampaignStatus.DRAFT)
        response = self.post({"campaign_id": campaign.id, "status": "approved"})
        assert response.json() == {"received": True, "campaign_status": "pending_approval"}

    def test_unknown_campaign(self):
        response = self.post({"campaign_id": 4040, "status": "approved"})
        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_missing_secret(self, factory):
        campaign = factory.campaign(status=CampaignStatus.DRAFT)
        response = client.post("/webhooks/payment", json={"campaign_id": campaign.id, "status": "approved"})
        assert response.status_code == 422

    def test_wrong_secret(self, db, factory):
        campaign = factory.campaign(status=CampaignStatus.DRAFT)
        response = self.post({"campaign_id": campaign.id, "status": "approved"}, secret="guessed")
        assert response.status_code == 403
        db.refresh(campaign)
        assert campaign.status == CampaignStatus.DRAFT

    def test_unconfigured_secret_rejects_everything(self, factory):
        campaign = factory.campaign(status=CampaignStatus.DRAFT)
        previous = config.payment_webhook_secret
        config.payment_webhook_secret = ""
        try:
            response = self.post({"campaign_id": campaign.id, "status": "approved"}, secret="anything")
        finally:
            config.payment_webhook_secret = previous
        assert response.status_code == 403


class TestHealth:
    """Test service endpoints."""

    def test_health(self):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
