"""Celery tasks: tickers that fan out per-assignment jobs, and the jobs.

Tickers only enumerate ids and enqueue. Every per-entity job opens its own
session, re-reads current state and is safe to run more than once.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..campaigns import expire_campaign, list_expired_campaign_ids
from ..celery_app import app
from ..db import SessionLocal
from ..lifecycle import TELEMETRY_STATUSES
from ..persistence import list_assignment_ids
from ..timeutil import utcnow
from .inactivity import check_inactivity
from .metrics import calculate_daily_metrics
from .proofs import (
    check_cycle_completion, draw_random_proof, list_cycle_candidates,
    list_random_proof_candidates,
)

logger = logging.getLogger(__name__)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((OperationalError, IntegrityError)),
    reraise=True,
)
def run_handler(handler: Callable, *args, **kwargs):
    """Run a job handler in a fresh session, retrying transient DB errors."""
    db = SessionLocal()
    try:
        return handler(db, *args, **kwargs)
    finally:
        db.close()


def _enumerate(lister: Callable, *args):
    db = SessionLocal()
    try:
        return lister(db, *args)
    finally:
        db.close()


def _parse_day(day_iso: Optional[str]) -> date:
    return date.fromisoformat(day_iso) if day_iso else utcnow().date()


def _parse_now(now_iso: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(now_iso) if now_iso else None


def _run_logged(name: str, handler: Callable, *args, **kwargs):
    try:
        return run_handler(handler, *args, **kwargs)
    except Exception:
        logger.exception(f"{name} failed for {args}; the next scheduled run will retry")
        raise


# Tickers

@app.task(name="driveads.jobs.schedule_daily_metrics")
def schedule_daily_metrics(day_iso: Optional[str] = None) -> dict:
    """Enqueue yesterday's (or the given day's) metrics for every active assignment."""
    day = date.fromisoformat(day_iso) if day_iso else utcnow().date() - timedelta(days=1)
    assignment_ids = _enumerate(list_assignment_ids, TELEMETRY_STATUSES)
    for assignment_id in assignment_ids:
        calculate_daily_metrics_task.delay(assignment_id, day.isoformat())
    logger.info(f"{len(assignment_ids)} daily metrics jobs scheduled for {day}")
    return {"day": day.isoformat(), "enqueued": len(assignment_ids)}


@app.task(name="driveads.jobs.schedule_inactivity_checks")
def schedule_inactivity_checks() -> dict:
    assignment_ids = _enumerate(list_assignment_ids, TELEMETRY_STATUSES)
    for assignment_id in assignment_ids:
        check_inactivity_task.delay(assignment_id)
    logger.info(f"{len(assignment_ids)} inactivity checks scheduled")
    return {"enqueued": len(assignment_ids)}


@app.task(name="driveads.jobs.schedule_lifecycle_scan")
def schedule_lifecycle_scan() -> dict:
    """Enqueue cycle-completion checks and expirations of ended campaigns."""
    assignment_ids = _enumerate(list_cycle_candidates)
    for assignment_id in assignment_ids:
        check_cycle_completion_task.delay(assignment_id)

    campaign_ids = _enumerate(list_expired_campaign_ids)
    for campaign_id in campaign_ids:
        expire_campaign_task.delay(campaign_id)

    logger.info(
        f"Lifecycle scan: {len(assignment_ids)} cycle checks, "
        f"{len(campaign_ids)} campaign expirations scheduled"
    )
    return {"cycle_checks": len(assignment_ids), "campaign_expirations": len(campaign_ids)}


@app.task(name="driveads.jobs.schedule_random_proofs")
def schedule_random_proofs(day_iso: Optional[str] = None) -> dict:
    day = _parse_day(day_iso)
    assignment_ids = _enumerate(list_random_proof_candidates)
    for assignment_id in assignment_ids:
        draw_random_proof_task.delay(assignment_id, day.isoformat())
    logger.info(f"{len(assignment_ids)} random proof draws scheduled for {day}")
    return {"day": day.isoformat(), "enqueued": len(assignment_ids)}


# Per-entity jobs

@app.task(name="driveads.jobs.calculate_daily_metrics")
def calculate_daily_metrics_task(assignment_id: int, day_iso: str) -> dict:
    metric = _run_logged("calculate_daily_metrics", calculate_daily_metrics,
                         assignment_id, date.fromisoformat(day_iso))
    if metric is None:
        return {"assignment_id": assignment_id, "day": day_iso, "skipped": True}
    return {
        "assignment_id": assignment_id,
        "day": day_iso,
        "kilometers_driven": metric.kilometers_driven,
        "time_in_motion_seconds": metric.time_in_motion_seconds,
    }


@app.task(name="driveads.jobs.check_inactivity")
def check_inactivity_task(assignment_id: int, now_iso: Optional[str] = None) -> dict:
    flagged = _run_logged("check_inactivity", check_inactivity, assignment_id, now=_parse_now(now_iso))
    return {"assignment_id": assignment_id, "flagged": flagged}


@app.task(name="driveads.jobs.check_cycle_completion")
def check_cycle_completion_task(assignment_id: int, now_iso: Optional[str] = None) -> dict:
    raised = _run_logged("check_cycle_completion", check_cycle_completion, assignment_id, now=_parse_now(now_iso))
    return {"assignment_id": assignment_id, "final_proof_requested": raised}


@app.task(name="driveads.jobs.expire_campaign")
def expire_campaign_task(campaign_id: int, now_iso: Optional[str] = None) -> dict:
    flagged = _run_logged("expire_campaign", expire_campaign, campaign_id, now=_parse_now(now_iso))
    return {"campaign_id": campaign_id, "assignments_flagged": flagged}


@app.task(name="driveads.jobs.draw_random_proof")
def draw_random_proof_task(assignment_id: int, day_iso: Optional[str] = None) -> dict:
    requested = _run_logged("draw_random_proof", draw_random_proof, assignment_id, day=_parse_day(day_iso))
    return {"assignment_id": assignment_id, "random_proof_requested": requested}
