"""Replay a recorded GPS track through the ingestion pipeline.

Usage:
    python -m driveads.replay tracks.csv --driver USER_ID [--track-id T1] [--batch-size 20]

The CSV needs ``latitude``, ``longitude`` and ``time`` columns; ``speed``
and ``track_id`` are optional. Rows are submitted in time order, in
batches, the way the driver app uploads them.
"""
import argparse
import sys
from typing import Iterator, List, Optional

import pandas as pd
from sqlalchemy.orm import Session

from .errors import FraudDetected
from .ingestion import Ping, ingest_batch
from .timeutil import to_naive_utc

REQUIRED_COLUMNS = ("latitude", "longitude", "time")


def load_track(csv_path: str, track_id: Optional[str] = None) -> pd.DataFrame:
    """Read a track CSV and return its rows sorted by time."""
    df = pd.read_csv(csv_path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns in {csv_path}: {', '.join(missing)}")

    if track_id is not None:
        if "track_id" not in df.columns:
            raise ValueError("track_id given but the CSV has no track_id column")
        df = df[df["track_id"].astype(str) == str(track_id)]

    df = df.copy()
    df["time"] = pd.to_datetime(df["time"], utc=True)
    if "speed" not in df.columns:
        df["speed"] = None
    return df.sort_values("time", kind="stable").reset_index(drop=True)


def iter_batches(df: pd.DataFrame, batch_size: int) -> Iterator[List[Ping]]:
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    for start in range(0, len(df), batch_size):
        chunk = df.iloc[start:start + batch_size]
        yield [
            Ping(
                lat=float(row.latitude),
                lon=float(row.longitude),
                ts=to_naive_utc(row.time.to_pydatetime()),
                speed=None if pd.isna(row.speed) else float(row.speed),
            )
            for row in chunk.itertuples(index=False)
        ]


def replay_track(db: Session, driver_id: int, df: pd.DataFrame, batch_size: int = 20) -> dict:
    """Submit the track batch by batch; stops at the first fraud rejection."""
    summary = {"batches": 0, "accepted": 0, "fraud": False}

    for number, batch in enumerate(iter_batches(df, batch_size), start=1):
        summary["batches"] = number
        try:
            result = ingest_batch(db, driver_id, batch)
        except FraudDetected as e:
            summary["accepted"] += e.accepted
            summary["fraud"] = True
            print(f"Batch {number}: rejected at {e.speed_kph:.0f} km/h ({e.accepted} accepted before)")
            break

        summary["accepted"] += result.accepted
        if result.discarded:
            print(f"Batch {number}: discarded, no active campaign")
        else:
            print(f"Batch {number}: {result.accepted}/{len(batch)} accepted")

    return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay a GPS track CSV through ingestion")
    parser.add_argument("csv_path")
    parser.add_argument("--driver", required=True, help="Driver user id")
    parser.add_argument("--track-id", default=None)
    parser.add_argument("--batch-size", type=int, default=20)
    args = parser.parse_args(argv)

    from .db import SessionLocal
    from .persistence import get_driver_by_user

    df = load_track(args.csv_path, args.track_id)
    print(f"Loaded {len(df)} points from {args.csv_path}")

    db = SessionLocal()
    try:
        driver = get_driver_by_user(db, args.driver)
        if driver is None:
            print(f"Driver '{args.driver}' not found")
            return 1
        summary = replay_track(db, driver.id, df, args.batch_size)
    finally:
        db.close()

    print(f"Done: {summary['accepted']} points accepted in {summary['batches']} batches"
          + (" (stopped by fraud detection)" if summary["fraud"] else ""))
    return 0


if __name__ == "__main__":
    sys.exit(main())
