"""Daily distance and time-in-motion rollups per assignment."""
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

import pandas as pd
from sqlalchemy.orm import Session

from ..config import config
from ..geo import distance_km
from ..models import Assignment, DailyMetric, Position
from ..persistence import get_day_positions, upsert_daily_metric

logger = logging.getLogger(__name__)


@dataclass
class DayMetrics:
    kilometers_driven: float
    time_in_motion_seconds: int
    points_count: int


def compute_day_metrics(
    positions: List[Position],
    motion_min_speed_kph: float,
    motion_max_gap_seconds: float
) -> DayMetrics:
    """Sum distance and moving time over consecutive pings.

    ``positions`` must be ordered by timestamp. A segment counts as motion
    when its gap is at most ``motion_max_gap_seconds`` and the speed (the
    later ping's reported speed, else the implied one) reaches
    ``motion_min_speed_kph``.
    """
    if len(positions) < 2:
        return DayMetrics(0.0, 0, len(positions))

    frame = pd.DataFrame({
        "lat": [p.lat for p in positions],
        "lon": [p.lon for p in positions],
        "ts": pd.to_datetime([p.ts for p in positions]),
        "speed": pd.to_numeric(pd.Series([p.speed for p in positions], dtype="object"), errors="coerce").astype(float),
    })
    previous = frame.shift(1).iloc[1:]
    segments = frame.iloc[1:]

    distances = pd.Series(
        [
            distance_km(lat1, lon1, lat2, lon2)
            for lat1, lon1, lat2, lon2 in zip(previous["lat"], previous["lon"], segments["lat"], segments["lon"])
        ],
        index=segments.index,
    )
    elapsed = (segments["ts"] - previous["ts"]).dt.total_seconds()
    implied = (distances / (elapsed / 3600.0)).where(elapsed > 0, 0.0)
    movement = segments["speed"].fillna(implied)

    moving = (elapsed > 0) & (elapsed <= motion_max_gap_seconds) & (movement >= motion_min_speed_kph)

    return DayMetrics(
        kilometers_driven=float(distances.sum()),
        time_in_motion_seconds=int(round(float(elapsed[moving].sum()))),
        points_count=len(positions),
    )


def calculate_daily_metrics(db: Session, assignment_id: int, day: date) -> Optional[DailyMetric]:
    """Recompute and overwrite the metric row for one assignment and day."""
    assignment = db.get(Assignment, assignment_id)
    if assignment is None:
        logger.warning(f"Assignment {assignment_id} not found; metrics skipped")
        return None

    positions = get_day_positions(db, assignment_id, day)
    metrics = compute_day_metrics(
        positions,
        motion_min_speed_kph=config.motion_min_speed_kph,
        motion_max_gap_seconds=config.motion_max_gap_seconds,
    )
    metric = upsert_daily_metric(
        db,
        assignment_id=assignment_id,
        day=day,
        kilometers_driven=metrics.kilometers_driven,
        time_in_motion_seconds=metrics.time_in_motion_seconds,
        points_count=metrics.points_count,
    )
    logger.info(
        f"Metrics for assignment {assignment_id} on {day}: "
        f"{metrics.kilometers_driven:.2f} km, {metrics.time_in_motion_seconds}s in motion"
    )
    return metric
