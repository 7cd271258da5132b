import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import FraudDetected
from ..ingestion import Ping, ingest_batch
from ..models import Driver
from ..schemas import BatchResponse, PositionIn
from ..timeutil import to_naive_utc
from .deps import get_optional_driver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/positions", tags=["positions"])


@router.post("/batch", response_model=BatchResponse)
def create_positions(
    positions: List[PositionIn],
    driver: Optional[Driver] = Depends(get_optional_driver),
    db: Session = Depends(get_db)
) -> BatchResponse:
    """Receive an ordered batch of GPS pings from a driver's device."""
    if driver is None:
        logger.info(f"Positions from a user without a driver profile ignored ({len(positions)} points)")
        return BatchResponse(success=True, accepted=0, message="0 positions received.")

    pings = [
        Ping(lat=p.lat, lon=p.lon, ts=to_naive_utc(p.timestamp), speed=p.speed)
        for p in positions
    ]
    try:
        result = ingest_batch(db, driver.id, pings)
    except FraudDetected as e:
        return BatchResponse(success=False, accepted=e.accepted, message=e.message)

    return BatchResponse(
        success=True,
        accepted=result.accepted,
        message=f"{result.accepted} positions received.",
    )
