"""
Badge access events and their record format.

Timestamps are timezone-aware UTC datetimes with millisecond precision,
written as ISO-8601 with a ``Z`` suffix.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

BASE_FIELDS = ["timestamp", "user_id", "room_id", "building_id", "location_id", "success"]

FAILURE_UNAUTHORIZED = "unauthorized"
FAILURE_CURIOUS = "curious"

# Activity value of a deliberate attempt on a room the user cannot open
PROBE_ACTIVITY = "probe"


def format_timestamp(ts: datetime) -> str:
    """``2025-01-06T09:00:00.000Z``"""
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True)
class BadgeEvent:
    """
    One badge access attempt.

    ``activity`` is the generating activity type; it is internal and only
    written when event types are requested.
    """
    timestamp: datetime
    user_id: str
    room_id: str
    building_id: str
    location_id: str
    success: bool
    activity: Optional[str] = None

    @property
    def failure_reason(self) -> Optional[str]:
        if self.success:
            return None
        if self.activity == PROBE_ACTIVITY:
            return FAILURE_CURIOUS
        return FAILURE_UNAUTHORIZED

    def to_record(self, extra_fields: Iterable[str] = ()) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "timestamp": format_timestamp(self.timestamp),
            "user_id": self.user_id,
            "room_id": self.room_id,
            "building_id": self.building_id,
            "location_id": self.location_id,
            "success": self.success,
        }
        for name in extra_fields:
            if name == "event_type":
                record["event_type"] = self.activity
            elif name == "failure_reason":
                record["failure_reason"] = self.failure_reason
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "BadgeEvent":
        """
        Build an event from a decoded record.

        Raises:
            ValueError: If a required field is missing or has the wrong type
        """
        missing = [name for name in BASE_FIELDS if name not in record]
        if missing:
            raise ValueError(f"Missing fields: {', '.join(missing)}")

        success = record["success"]
        if isinstance(success, str):
            lowered = success.strip().lower()
            if lowered not in ("true", "false"):
                raise ValueError(f"Invalid success value: {success!r}")
            success = lowered == "true"
        elif not isinstance(success, bool):
            raise ValueError(f"Invalid success value: {success!r}")

        for name in ("user_id", "room_id", "building_id", "location_id"):
            if not isinstance(record[name], str) or not record[name]:
                raise ValueError(f"Invalid {name}: {record[name]!r}")

        return cls(
            timestamp=parse_timestamp(record["timestamp"]),
            user_id=record["user_id"],
            room_id=record["room_id"],
            building_id=record["building_id"],
            location_id=record["location_id"],
            success=success,
            activity=record.get("event_type"),
        )
