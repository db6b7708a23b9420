"""
Impossible Traveler Detection

Flags users whose consecutive badge events are closer in time than the
minimum travel time between the two readers, which means two people are
using the same badge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set
import logging

import numpy as np

from badgesim.facility.model import FacilityModel
from badgesim.facility.travel import TravelScope, TravelTimeTable
from badgesim.analysis.loader import as_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TravelViolation:
    """Two consecutive events of one user that no one could travel between."""
    user_id: str
    from_time: datetime
    from_room: str
    from_building: str
    from_location: str
    to_time: datetime
    to_room: str
    to_building: str
    to_location: str
    elapsed: timedelta
    required: timedelta

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "from_time": self.from_time.isoformat(),
            "from_room": self.from_room,
            "from_building": self.from_building,
            "from_location": self.from_location,
            "to_time": self.to_time.isoformat(),
            "to_room": self.to_room,
            "to_building": self.to_building,
            "to_location": self.to_location,
            "elapsed_seconds": self.elapsed.total_seconds(),
            "required_seconds": self.required.total_seconds(),
        }


@dataclass
class TravelReport:
    """Result of impossible-traveler detection."""
    violations: List[TravelViolation] = field(default_factory=list)
    events_analyzed: int = 0
    skipped: int = 0
    travel_minimums: Dict[str, float] = field(default_factory=dict)

    @property
    def suspected_users(self) -> List[str]:
        return sorted({v.user_id for v in self.violations})

    def violations_for(self, user_id: str) -> List[TravelViolation]:
        return [v for v in self.violations if v.user_id == user_id]

    def flagged_dates(self, user_id: str) -> Set[date]:
        """UTC dates on which ``user_id`` has at least one violation."""
        return {v.to_time.date() for v in self.violations if v.user_id == user_id}

    def to_dict(self) -> Dict:
        return {
            "suspected_users": self.suspected_users,
            "violation_count": len(self.violations),
            "events_analyzed": self.events_analyzed,
            "skipped": self.skipped,
            "travel_minimums_seconds": self.travel_minimums,
            "violations": [v.to_dict() for v in self.violations],
        }


class ImpossibleTravelerDetector:
    """
    Detect impossible travel within each user's event sequence.

    Example:
        >>> detector = ImpossibleTravelerDetector(TravelTimeTable.default())
        >>> report = detector.detect(events)
        >>> report.suspected_users
        ['user_000042']
    """

    def __init__(
        self,
        travel: Optional[TravelTimeTable] = None,
        facility: Optional[FacilityModel] = None,
    ):
        self.travel = travel or TravelTimeTable.default()
        self.facility = facility

    def detect(self, events) -> TravelReport:
        """
        Scan consecutive event pairs per user.

        Args:
            events: Iterable of BadgeEvents or a frame from events_to_frame

        Returns:
            TravelReport with violations in (user_id, time) order
        """
        df, skipped = as_frame(events, self.facility)
        report = TravelReport(
            events_analyzed=len(df),
            skipped=skipped,
            travel_minimums=self.travel.to_dict(),
        )
        if df.empty:
            return report

        d = df.sort_values(["user_id", "timestamp", "seq"], kind="mergesort")
        grouped = d.groupby("user_id", sort=False)
        prev = {
            col: grouped[col].shift(1)
            for col in ("timestamp", "room_id", "building_id", "location_id")
        }

        has_prev = prev["timestamp"].notna()
        cross = has_prev & (prev["location_id"] != d["location_id"])
        same_location = has_prev & ~cross & (prev["building_id"] != d["building_id"])
        required = np.select(
            [cross, same_location],
            [
                self.travel.minimums[TravelScope.CROSS_LOCATION].total_seconds(),
                self.travel.minimums[TravelScope.SAME_LOCATION].total_seconds(),
            ],
            default=self.travel.minimums[TravelScope.SAME_BUILDING].total_seconds(),
        )
        elapsed = (d["timestamp"] - prev["timestamp"]).dt.total_seconds()
        mask = has_prev & (elapsed < required)

        for pos in np.flatnonzero(mask.to_numpy()):
            row = d.iloc[pos]
            report.violations.append(TravelViolation(
                user_id=row["user_id"],
                from_time=prev["timestamp"].iloc[pos].to_pydatetime(),
                from_room=prev["room_id"].iloc[pos],
                from_building=prev["building_id"].iloc[pos],
                from_location=prev["location_id"].iloc[pos],
                to_time=row["timestamp"].to_pydatetime(),
                to_room=row["room_id"],
                to_building=row["building_id"],
                to_location=row["location_id"],
                elapsed=timedelta(seconds=float(elapsed.iloc[pos])),
                required=timedelta(seconds=float(required[pos])),
            ))

        logger.info(
            f"Impossible travel: {len(report.violations)} violations, "
            f"{len(report.suspected_users)} suspected users"
        )
        return report
