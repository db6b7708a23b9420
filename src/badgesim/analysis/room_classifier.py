"""
Room Classification from badge traffic.

Infers what kind of room each reader guards using only the event stream:
how many people use it and what share of the building's people ever
get in, how often they are refused, how long they stay and at which
time of day they come. Labels are assigned by rules over the
per-room aggregates, so classifying the same aggregates again always
gives the same answer.

Dwell is the time from a successful entry to the same user's next event.
A gap longer than ``dwell_cap`` means the user left for the day and is
not counted as dwell.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Dict, Optional
import logging
import math

import pandas as pd

from badgesim.facility.model import FacilityModel, RoomClass
from badgesim.analysis.loader import as_frame

logger = logging.getLogger(__name__)

DEFAULT_DWELL_CAP = timedelta(hours=8)

# Hour-of-day buckets, [start, end) in hours
TIME_BUCKETS = {
    "morning": [(6.0, 10.0)],
    "business": [(10.0, 11.0), (14.0, 16.0)],
    "lunch": [(11.0, 14.0)],
    "evening": [(16.0, 19.0)],
}


@dataclass(frozen=True)
class RoomFeatures:
    """Aggregated traffic of one room."""
    room_id: str
    visits: int
    distinct_users: int
    denial_ratio: float
    mean_dwell_minutes: Optional[float]
    dwell_variance: Optional[float]
    median_dwell_minutes: Optional[float]
    visits_per_user_day: float
    morning_share: float
    business_share: float
    lunch_share: float
    evening_share: float
    off_hours_share: float
    user_share: float = 1.0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "RoomFeatures":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass(frozen=True)
class ClassifierThresholds:
    """Rule thresholds; dwell values in minutes."""
    min_visits: int = 5
    restricted_denial_ratio: float = 0.3
    office_visits_per_user_day: float = 3.0
    office_min_dwell: float = 20.0
    restricted_max_user_share: float = 0.15
    restricted_max_visits_per_user_day: float = 1.5
    lobby_max_dwell: float = 10.0
    lobby_min_entry_share: float = 0.6
    lobby_min_distinct_users: int = 5
    cafeteria_min_lunch_share: float = 0.5
    cafeteria_min_dwell: float = 20.0
    break_max_dwell: float = 20.0
    meeting_max_dwell: float = 90.0


def classify_features(
    features: RoomFeatures,
    thresholds: Optional[ClassifierThresholds] = None,
) -> RoomClass:
    """
    Rule-based room class for one room's aggregates.

    Pure function: the same features always give the same class.
    """
    t = thresholds or ClassifierThresholds()
    if features.visits < t.min_visits:
        return RoomClass.UNKNOWN
    if features.denial_ratio >= t.restricted_denial_ratio:
        return RoomClass.RESTRICTED

    dwell = features.mean_dwell_minutes
    if dwell is None:
        return RoomClass.UNKNOWN

    # Personal desks: the same people badge in many times a day and stay
    if features.visits_per_user_day >= t.office_visits_per_user_day and dwell >= t.office_min_dwell:
        return RoomClass.OFFICE
    # Few of the building's people ever get in, about once a day
    if (
        features.user_share <= t.restricted_max_user_share
        and features.visits_per_user_day <= t.restricted_max_visits_per_user_day
    ):
        return RoomClass.RESTRICTED
    entry_share = features.morning_share + features.evening_share + features.off_hours_share
    if (
        dwell <= t.lobby_max_dwell
        and entry_share >= t.lobby_min_entry_share
        and features.distinct_users >= t.lobby_min_distinct_users
    ):
        return RoomClass.LOBBY
    if features.lunch_share >= t.cafeteria_min_lunch_share and dwell >= t.cafeteria_min_dwell:
        return RoomClass.CAFETERIA
    if dwell <= t.break_max_dwell:
        return RoomClass.BREAK_ROOM
    if dwell <= t.meeting_max_dwell:
        return RoomClass.MEETING_ROOM
    return RoomClass.OFFICE


@dataclass
class RoomReport:
    """Features and inferred class per room."""
    features: Dict[str, RoomFeatures] = field(default_factory=dict)
    classes: Dict[str, RoomClass] = field(default_factory=dict)
    skipped: int = 0

    def class_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for room_class in self.classes.values():
            counts[room_class.value] = counts.get(room_class.value, 0) + 1
        return dict(sorted(counts.items()))

    def to_dict(self) -> Dict:
        return {
            "class_counts": self.class_counts(),
            "skipped": self.skipped,
            "rooms": [
                {**self.features[rid].to_dict(), "room_class": self.classes[rid].value}
                for rid in sorted(self.features)
            ],
        }


def _optional(value: float) -> Optional[float]:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return float(value)


class RoomClassifier:
    """
    Classify rooms from event traffic.

    Example:
        >>> report = RoomClassifier().classify(events)
        >>> report.classes["room_001_01_001"]
        <RoomClass.LOBBY: 'lobby'>
    """

    def __init__(
        self,
        thresholds: Optional[ClassifierThresholds] = None,
        dwell_cap: timedelta = DEFAULT_DWELL_CAP,
        facility: Optional[FacilityModel] = None,
    ):
        self.thresholds = thresholds or ClassifierThresholds()
        self.dwell_cap = dwell_cap
        self.facility = facility

    def extract_features(self, events) -> tuple:
        """Per-room RoomFeatures and the number of skipped events."""
        df, skipped = as_frame(events, self.facility)
        if df.empty:
            return {}, skipped

        d = df.sort_values(["user_id", "timestamp", "seq"], kind="mergesort").copy()
        next_ts = d.groupby("user_id", sort=False)["timestamp"].shift(-1)
        gap = (next_ts - d["timestamp"]).dt.total_seconds()
        gap = gap.where(gap <= self.dwell_cap.total_seconds())
        d["dwell"] = gap.where(d["success"]) / 60.0

        hour = d["timestamp"].dt.hour + d["timestamp"].dt.minute / 60.0
        in_any = pd.Series(False, index=d.index)
        for bucket, ranges in TIME_BUCKETS.items():
            hit = pd.Series(False, index=d.index)
            for start, end in ranges:
                hit |= (hour >= start) & (hour < end)
            d[bucket] = hit
            in_any |= hit
        d["off_hours"] = ~in_any
        d["denied"] = ~d["success"]
        d["user_day"] = d["user_id"] + "|" + d["timestamp"].dt.strftime("%Y-%m-%d")

        building_users = d.groupby("building_id")["user_id"].nunique()
        entrants = d[d["success"]].groupby("room_id")["user_id"].nunique()

        agg = d.groupby("room_id").agg(
            visits=("user_id", "size"),
            building_id=("building_id", "first"),
            distinct_users=("user_id", "nunique"),
            user_days=("user_day", "nunique"),
            denials=("denied", "sum"),
            mean_dwell=("dwell", "mean"),
            dwell_variance=("dwell", lambda s: s.var(ddof=0)),
            median_dwell=("dwell", "median"),
            morning=("morning", "sum"),
            business=("business", "sum"),
            lunch=("lunch", "sum"),
            evening=("evening", "sum"),
            off_hours=("off_hours", "sum"),
        )

        features = {}
        for room_id, row in agg.iterrows():
            visits = int(row["visits"])
            features[room_id] = RoomFeatures(
                room_id=room_id,
                visits=visits,
                distinct_users=int(row["distinct_users"]),
                denial_ratio=float(row["denials"]) / visits,
                mean_dwell_minutes=_optional(row["mean_dwell"]),
                dwell_variance=_optional(row["dwell_variance"]),
                median_dwell_minutes=_optional(row["median_dwell"]),
                visits_per_user_day=visits / int(row["user_days"]),
                morning_share=float(row["morning"]) / visits,
                business_share=float(row["business"]) / visits,
                lunch_share=float(row["lunch"]) / visits,
                evening_share=float(row["evening"]) / visits,
                off_hours_share=float(row["off_hours"]) / visits,
                user_share=int(entrants.get(room_id, 0)) / int(building_users[row["building_id"]]),
            )
        return features, skipped

    def classify(self, events) -> RoomReport:
        features, skipped = self.extract_features(events)
        report = RoomReport(features=features, skipped=skipped)
        for room_id, f in features.items():
            report.classes[room_id] = classify_features(f, self.thresholds)
        logger.info(f"Classified {len(features)} rooms: {report.class_counts()}")
        return report


def class_accuracy(report: RoomReport, facility: FacilityModel) -> Dict:
    """
    Compare inferred classes with the facility's room types.

    UNKNOWN rooms are counted separately and excluded from the accuracy.
    """
    correct = 0
    judged = 0
    unknown = 0
    confusion: Dict[str, Dict[str, int]] = {}
    for room_id, predicted in report.classes.items():
        if not facility.has_room(room_id):
            continue
        if predicted is RoomClass.UNKNOWN:
            unknown += 1
            continue
        actual = facility.room(room_id).room_type.room_class
        judged += 1
        correct += int(actual is predicted)
        row = confusion.setdefault(actual.value, {})
        row[predicted.value] = row.get(predicted.value, 0) + 1
    return {
        "accuracy": correct / judged if judged else 0.0,
        "judged": judged,
        "unknown": unknown,
        "confusion": confusion,
    }
