"""
Data Loader for badge event streams and ground-truth files.

Events are read from JSON Lines or CSV into BadgeEvents, skipping (and
counting) malformed records, and converted to pandas DataFrames for the
detectors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
import json
import logging

import pandas as pd

from badgesim.facility.model import FacilityModel
from badgesim.facility.travel import TravelTimeTable
from badgesim.simulation.events import BASE_FIELDS, BadgeEvent
from badgesim.users.profile import AnswerKeyEntry

logger = logging.getLogger(__name__)

FRAME_COLUMNS = BASE_FIELDS + ["event_type"]

# Malformed records reported individually before the warnings are summarized
MAX_REPORTED_ERRORS = 10


@dataclass
class EventLoadResult:
    """Events read from a file plus what had to be skipped."""
    events: List[BadgeEvent] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.events)

    def _skip(self, where: str, reason: str) -> None:
        self.skipped += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(f"{where}: {reason}")
            logger.warning(f"Skipping malformed record at {where}: {reason}")


def read_events(path: str | Path) -> EventLoadResult:
    """
    Load events from a ``.jsonl``/``.json`` (JSON Lines) or ``.csv`` file.

    Args:
        path: Event file written by the simulator or a compatible producer

    Returns:
        EventLoadResult with the valid events in file order
    """
    path = Path(path)
    logger.info(f"Loading events from {path}")
    if path.suffix.lower() == ".csv":
        result = _read_csv(path)
    else:
        result = _read_jsonl(path)

    if result.skipped:
        logger.warning(f"Skipped {result.skipped} malformed records in {path}")
    logger.info(f"Loaded {len(result.events)} events")
    return result


def _read_jsonl(path: Path) -> EventLoadResult:
    result = EventLoadResult()
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise ValueError("record is not an object")
                result.events.append(BadgeEvent.from_record(record))
            except (ValueError, TypeError) as e:
                result._skip(f"line {line_no}", str(e))
    return result


def _read_csv(path: Path) -> EventLoadResult:
    result = EventLoadResult()
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    for row_no, record in enumerate(df.to_dict("records"), start=2):
        if record.get("event_type") == "":
            record.pop("event_type")
        try:
            result.events.append(BadgeEvent.from_record(record))
        except (ValueError, TypeError) as e:
            result._skip(f"row {row_no}", str(e))
    return result


def events_to_frame(events: Iterable[BadgeEvent]) -> pd.DataFrame:
    """
    Tabular view of events for the detectors.

    ``timestamp`` is a UTC datetime column; the original order is kept in
    a ``seq`` column so ties sort the same way as the stream.
    """
    rows = [
        {
            "timestamp": e.timestamp,
            "user_id": e.user_id,
            "room_id": e.room_id,
            "building_id": e.building_id,
            "location_id": e.location_id,
            "success": e.success,
            "event_type": e.activity,
        }
        for e in events
    ]
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    df["success"] = df["success"].astype(bool)
    df["seq"] = range(len(df))
    return df


def filter_known(df: pd.DataFrame, facility: FacilityModel) -> Tuple[pd.DataFrame, int]:
    """Drop events that reference entities missing from ``facility``."""
    known = [
        facility.references_valid(room, building, location)
        for room, building, location in zip(df["room_id"], df["building_id"], df["location_id"])
    ]
    mask = pd.Series(known, index=df.index, dtype=bool)
    skipped = int((~mask).sum())
    if skipped:
        logger.warning(f"Skipping {skipped} events referencing unknown rooms, buildings or locations")
    return df[mask], skipped


def read_answer_key(path: str | Path) -> Dict[str, AnswerKeyEntry]:
    """Load an answer key (JSON Lines, one user per line) keyed by user_id."""
    entries: Dict[str, AnswerKeyEntry] = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entry = AnswerKeyEntry.from_dict(json.loads(line))
                entries[entry.user_id] = entry
    logger.info(f"Loaded answer key for {len(entries)} users")
    return entries


def read_facility(path: str | Path) -> FacilityModel:
    with open(path, "r", encoding="utf-8") as f:
        facility = FacilityModel.from_dict(json.load(f))
    logger.info(f"Loaded {facility!r}")
    return facility


def read_travel(path: str | Path) -> Optional[TravelTimeTable]:
    """Travel minimums stored with a facility file, or None for older files."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if "travel" not in data:
        logger.warning(f"{path} has no travel table")
        return None
    travel = TravelTimeTable.from_dict(data["travel"])
    logger.info(f"Loaded travel minimums {travel.to_dict()}")
    return travel


def as_frame(events, facility: Optional[FacilityModel] = None) -> Tuple[pd.DataFrame, int]:
    """Accept a DataFrame or an iterable of BadgeEvents; optionally filter unknown references."""
    df = events if isinstance(events, pd.DataFrame) else events_to_frame(events)
    if "seq" not in df.columns:
        df = df.assign(seq=range(len(df)))
    if facility is None:
        return df, 0
    return filter_known(df, facility)
