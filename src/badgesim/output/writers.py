"""
Event, answer-key and facility writers.

Events are written as JSON Lines (one object per line) or CSV with the
same columns. Optional fields follow the base fields in a fixed order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Iterable, List, Optional, Sequence
import csv
import json
import logging

from badgesim.facility.model import FacilityModel
from badgesim.facility.travel import TravelTimeTable
from badgesim.simulation.events import BASE_FIELDS, BadgeEvent
from badgesim.users.profile import AnswerKeyEntry

logger = logging.getLogger(__name__)


class EventWriter(ABC):
    """Serializes events onto a text stream."""

    def __init__(self, stream: IO[str], extra_fields: Sequence[str] = ()):
        self.stream = stream
        self.extra_fields = list(extra_fields)
        self.written = 0

    @property
    def fields(self) -> List[str]:
        return BASE_FIELDS + self.extra_fields

    @abstractmethod
    def write(self, event: BadgeEvent) -> None:
        """Write one event (may be buffered by the stream)."""
        pass

    def write_many(self, events: Iterable[BadgeEvent]) -> None:
        for event in events:
            self.write(event)

    def flush(self) -> None:
        self.stream.flush()


class JsonLinesWriter(EventWriter):
    """One JSON object per line."""

    def write(self, event: BadgeEvent) -> None:
        self.stream.write(json.dumps(event.to_record(self.extra_fields)) + "\n")
        self.written += 1


class CsvWriter(EventWriter):
    """CSV with a header row; booleans as ``true``/``false``."""

    def __init__(self, stream: IO[str], extra_fields: Sequence[str] = ()):
        super().__init__(stream, extra_fields)
        self._writer = csv.DictWriter(stream, fieldnames=self.fields, lineterminator="\n")
        self._header_written = False

    def write(self, event: BadgeEvent) -> None:
        if not self._header_written:
            self._writer.writeheader()
            self._header_written = True
        record = event.to_record(self.extra_fields)
        record["success"] = "true" if record["success"] else "false"
        self._writer.writerow({k: "" if v is None else v for k, v in record.items()})
        self.written += 1


WRITERS = {
    "json": JsonLinesWriter,
    "csv": CsvWriter,
}


def create_writer(output_format: str, stream: IO[str], extra_fields: Sequence[str] = ()) -> EventWriter:
    try:
        writer_cls = WRITERS[output_format]
    except KeyError:
        raise ValueError(f"Unknown output format: {output_format}") from None
    return writer_cls(stream, extra_fields)


def write_answer_key(path: str | Path, entries: Iterable[AnswerKeyEntry]) -> int:
    """Write one JSON line per user; returns the number of entries."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(entry.to_dict()) + "\n")
            count += 1
    logger.info(f"Wrote answer key for {count} users to {path}")
    return count


def write_facility(
    path: str | Path,
    facility: FacilityModel,
    travel: Optional[TravelTimeTable] = None,
) -> None:
    """
    Write the facility layout as JSON.

    When a travel table is given it is stored under "travel", so analysis
    can use the same minimums the run was generated with.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = facility.to_dict()
    if travel is not None:
        data["travel"] = travel.to_dict()
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Wrote facility ({facility.room_count()} rooms) to {path}")
