from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from .lifecycle import NON_TERMINAL_STATUSES, TELEMETRY_STATUSES
from .models import (
    Assignment, AssignmentStatus, Campaign, DailyMetric, Driver, FraudAlert,
    InstallProof, PeriodicProof, Position,
)
from .timeutil import day_start, utcnow


def get_driver_by_user(db: Session, user_id: str) -> Optional[Driver]:
    return db.query(Driver).filter(Driver.user_id == user_id).first()


def lock_assignment(db: Session, assignment_id: int) -> Optional[Assignment]:
    """Re-read an assignment under a row lock."""
    return db.query(Assignment).filter(
        Assignment.id == assignment_id
    ).with_for_update().populate_existing().first()


def lock_campaign(db: Session, campaign_id: int) -> Optional[Campaign]:
    return db.query(Campaign).filter(
        Campaign.id == campaign_id
    ).with_for_update().populate_existing().first()


def lock_driver(db: Session, driver_id: int) -> Optional[Driver]:
    return db.query(Driver).filter(
        Driver.id == driver_id
    ).with_for_update().populate_existing().first()


def get_telemetry_assignment(db: Session, driver_id: int) -> Optional[Assignment]:
    """Find the assignment currently accepting telemetry for a driver."""
    return db.query(Assignment).filter(
        Assignment.driver_id == driver_id,
        Assignment.status.in_(TELEMETRY_STATUSES)
    ).order_by(Assignment.id.desc()).first()


def get_open_assignment(db: Session, driver_id: int) -> Optional[Assignment]:
    """Latest non-terminal assignment of a driver."""
    return db.query(Assignment).filter(
        Assignment.driver_id == driver_id,
        Assignment.status.in_(NON_TERMINAL_STATUSES)
    ).order_by(Assignment.id.desc()).first()


def count_open_assignments(db: Session, campaign_id: int) -> int:
    return db.query(func.count(Assignment.id)).filter(
        Assignment.campaign_id == campaign_id,
        Assignment.status.in_(NON_TERMINAL_STATUSES)
    ).scalar()


def list_assignment_ids(db: Session, statuses: Iterable[AssignmentStatus]) -> List[int]:
    rows = db.query(Assignment.id).filter(
        Assignment.status.in_(list(statuses))
    ).order_by(Assignment.id).all()
    return [row.id for row in rows]


def get_last_driver_position(db: Session, driver_id: int) -> Optional[Position]:
    """Most recent stored ping for a driver, by timestamp."""
    return db.query(Position).filter(
        Position.driver_id == driver_id
    ).order_by(Position.ts.desc()).first()


def get_last_assignment_position(db: Session, assignment_id: int) -> Optional[Position]:
    return db.query(Position).filter(
        Position.assignment_id == assignment_id
    ).order_by(Position.ts.desc()).first()


def get_stored_timestamps(db: Session, assignment_id: int, timestamps: List[datetime]) -> Set[datetime]:
    """Which of ``timestamps`` already have a ping stored for the assignment."""
    if not timestamps:
        return set()
    rows = db.query(Position.ts).filter(
        Position.assignment_id == assignment_id,
        Position.ts.in_(timestamps)
    ).all()
    return {row.ts for row in rows}


def insert_positions(db: Session, rows: List[Dict]) -> int:
    """Bulk insert pings, skipping (assignment, timestamp) pairs already stored.

    Duplicates inside ``rows`` are dropped too. Returns the number of rows
    added to the session. Callers hold the assignment lock.
    """
    if not rows:
        return 0

    unique_rows = {}
    for row in rows:
        unique_rows.setdefault((row["assignment_id"], row["ts"]), row)

    existing = set()
    for assignment_id in {key[0] for key in unique_rows}:
        timestamps = [ts for (aid, ts) in unique_rows if aid == assignment_id]
        stored = get_stored_timestamps(db, assignment_id, timestamps)
        existing.update((assignment_id, ts) for ts in stored)

    new_rows = [row for key, row in unique_rows.items() if key not in existing]
    if new_rows:
        db.bulk_insert_mappings(Position, new_rows)
    return len(new_rows)


def get_day_positions(db: Session, assignment_id: int, day: date) -> List[Position]:
    """Pings of one assignment within [day, day + 1), ordered by timestamp."""
    start = day_start(day)
    end = start + timedelta(days=1)
    return db.query(Position).filter(
        Position.assignment_id == assignment_id,
        Position.ts >= start,
        Position.ts < end
    ).order_by(Position.ts.asc()).all()


def upsert_daily_metric(
    db: Session,
    assignment_id: int,
    day: date,
    kilometers_driven: float,
    time_in_motion_seconds: int,
    points_count: int
) -> DailyMetric:
    """Upsert the metric row for an assignment and day; values overwrite."""
    existing_metric = db.query(DailyMetric).filter(
        DailyMetric.assignment_id == assignment_id,
        DailyMetric.date == day
    ).first()

    if existing_metric:
        existing_metric.kilometers_driven = kilometers_driven
        existing_metric.time_in_motion_seconds = time_in_motion_seconds
        existing_metric.points_count = points_count
        db.commit()
        db.refresh(existing_metric)
        return existing_metric

    metric = DailyMetric(
        assignment_id=assignment_id,
        date=day,
        kilometers_driven=kilometers_driven,
        time_in_motion_seconds=time_in_motion_seconds,
        points_count=points_count
    )
    db.add(metric)
    db.commit()
    db.refresh(metric)
    return metric


def get_daily_metrics(db: Session, assignment_id: int, days: int = 30) -> List[DailyMetric]:
    """Get metrics for an assignment over the last N days."""
    start_date = utcnow().date() - timedelta(days=days)
    return db.query(DailyMetric).filter(
        DailyMetric.assignment_id == assignment_id,
        DailyMetric.date >= start_date
    ).order_by(DailyMetric.date.desc()).all()


def get_install_proof(db: Session, proof_id: int, lock: bool = False) -> Optional[InstallProof]:
    query = db.query(InstallProof).filter(InstallProof.id == proof_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def get_periodic_proof(db: Session, proof_id: int, lock: bool = False) -> Optional[PeriodicProof]:
    query = db.query(PeriodicProof).filter(PeriodicProof.id == proof_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def get_fraud_alert(db: Session, alert_id: int, lock: bool = False) -> Optional[FraudAlert]:
    query = db.query(FraudAlert).filter(FraudAlert.id == alert_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()
