"""GPS telemetry ingestion and spoofing detection.

A batch is validated against a cursor holding the last accepted point.
The cursor starts at the driver's most recent stored ping and is passed
through the loop explicitly; nothing about it survives the request.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Set

from sqlalchemy.orm import Session

from .config import config
from .errors import FraudDetected
from .geo import distance_km, implied_speed_kph, is_valid_coordinate
from .lifecycle import accepts_telemetry, flag_fraud
from .models import FraudReason, Position
from .persistence import (
    get_last_driver_position, get_stored_timestamps, get_telemetry_assignment,
    insert_positions, lock_assignment,
)
from .timeutil import utcnow

logger = logging.getLogger(__name__)

FRAUD_MESSAGE = "Suspicious activity detected. Positions rejected."


@dataclass(frozen=True)
class Ping:
    lat: float
    lon: float
    ts: datetime
    speed: Optional[float] = None


@dataclass(frozen=True)
class Cursor:
    """The previous accepted point a new ping is measured against."""

    lat: float
    lon: float
    ts: datetime

    @classmethod
    def from_position(cls, position: Optional[Position]) -> Optional["Cursor"]:
        if position is None:
            return None
        return cls(lat=position.lat, lon=position.lon, ts=position.ts)


@dataclass(frozen=True)
class SpeedViolation:
    ping: Ping
    previous: Cursor
    speed_kph: float
    distance_km: float
    elapsed_seconds: float

    def as_details(self) -> Dict:
        return {
            "speed_kph": round(self.speed_kph, 1),
            "distance_km": round(self.distance_km, 3),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "from": {"lat": self.previous.lat, "lon": self.previous.lon,
                     "ts": self.previous.ts.isoformat()},
            "to": {"lat": self.ping.lat, "lon": self.ping.lon,
                   "ts": self.ping.ts.isoformat()},
        }


@dataclass
class BatchCheck:
    accepted: List[Ping] = field(default_factory=list)
    invalid_count: int = 0
    duplicate_count: int = 0
    violation: Optional[SpeedViolation] = None


@dataclass
class IngestResult:
    accepted: int
    invalid: int = 0
    assignment_id: Optional[int] = None
    discarded: bool = False


class KeyedLocks:
    """One mutex per key, created on first use and dropped when no holder or waiter is left."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}
        self._users: Dict[int, int] = {}

    @contextmanager
    def hold(self, key: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


assignment_locks = KeyedLocks()


def check_batch(
    pings: List[Ping],
    cursor: Optional[Cursor],
    max_speed_kph: float,
    min_check_seconds: float,
    stored_timestamps: Optional[Set[datetime]] = None
) -> BatchCheck:
    """Validate pings in order against a moving cursor.

    Out-of-range coordinates are skipped. So are pings whose timestamp is
    already stored or equal to the cursor's, since they would never be
    persisted and must not move the cursor. Pings closer in time than
    ``min_check_seconds`` to the cursor are accepted without a speed check.
    The first pair above ``max_speed_kph`` stops the scan; pings accepted
    before it are returned with the violation.
    """
    result = BatchCheck()
    seen = set(stored_timestamps or ())
    if cursor is not None:
        seen.add(cursor.ts)

    for ping in pings:
        if not is_valid_coordinate(ping.lat, ping.lon):
            result.invalid_count += 1
            continue
        if ping.ts in seen:
            result.duplicate_count += 1
            continue

        if cursor is not None:
            elapsed = (ping.ts - cursor.ts).total_seconds()
            if elapsed > min_check_seconds:
                distance = distance_km(cursor.lat, cursor.lon, ping.lat, ping.lon)
                speed = implied_speed_kph(distance, elapsed)
                if speed > max_speed_kph:
                    result.violation = SpeedViolation(
                        ping=ping,
                        previous=cursor,
                        speed_kph=speed,
                        distance_km=distance,
                        elapsed_seconds=elapsed,
                    )
                    return result

        result.accepted.append(ping)
        seen.add(ping.ts)
        cursor = Cursor(lat=ping.lat, lon=ping.lon, ts=ping.ts)

    return result


def ingest_batch(
    db: Session,
    driver_id: int,
    pings: List[Ping],
    now: Optional[datetime] = None
) -> IngestResult:
    """Validate and persist one driver's batch of pings.

    Batches for drivers without an assignment accepting telemetry are
    discarded. Raises FraudDetected,
    after committing the Fraud transition and the pings accepted before the
    violating one, when two consecutive points imply an impossible speed.
    """
    now = now or utcnow()
    if config.sort_pings_by_timestamp:
        pings = sorted(pings, key=lambda p: p.ts)

    candidate = get_telemetry_assignment(db, driver_id)
    if candidate is None:
        logger.info(f"No active campaign for driver {driver_id}; {len(pings)} positions ignored")
        return IngestResult(accepted=0, discarded=True)

    with assignment_locks.hold(candidate.id):
        try:
            assignment = lock_assignment(db, candidate.id)
            if assignment is None or not accepts_telemetry(assignment.status):
                db.rollback()
                logger.info(
                    f"Assignment {candidate.id} stopped accepting telemetry; "
                    f"{len(pings)} positions ignored"
                )
                return IngestResult(accepted=0, assignment_id=candidate.id, discarded=True)

            cursor = Cursor.from_position(get_last_driver_position(db, driver_id))
            check = check_batch(
                pings,
                cursor,
                max_speed_kph=config.max_plausible_speed_kph,
                min_check_seconds=config.min_speed_check_seconds,
                stored_timestamps=get_stored_timestamps(db, assignment.id, [p.ts for p in pings]),
            )

            rows = [
                {
                    "assignment_id": assignment.id,
                    "driver_id": driver_id,
                    "lat": ping.lat,
                    "lon": ping.lon,
                    "speed": ping.speed,
                    "ts": ping.ts,
                }
                for ping in check.accepted
            ]
            inserted = insert_positions(db, rows)

            if check.violation is not None:
                violation = check.violation
                logger.warning(
                    f"GPS spoofing: driver {driver_id} moved at "
                    f"{violation.speed_kph:.0f} km/h on assignment {assignment.id}"
                )
                flag_fraud(db, assignment, FraudReason.GPS_SPOOFING,
                           details=violation.as_details(), now=now)
                db.commit()
                raise FraudDetected(
                    FRAUD_MESSAGE,
                    assignment_id=assignment.id,
                    accepted=inserted,
                    speed_kph=violation.speed_kph,
                )

            db.commit()
        except FraudDetected:
            raise
        except Exception:
            db.rollback()
            raise

    if check.invalid_count:
        logger.info(f"Skipped {check.invalid_count} out-of-range positions for driver {driver_id}")
    if check.duplicate_count:
        logger.info(f"Skipped {check.duplicate_count} already received positions for driver {driver_id}")
    return IngestResult(
        accepted=inserted,
        invalid=check.invalid_count,
        assignment_id=assignment.id,
    )
