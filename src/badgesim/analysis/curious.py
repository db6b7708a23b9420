"""
Curious User Detection

Ranks users by denied access attempts. A user who is repeatedly refused
at many different rooms is probing, whereas a stale permission produces
an occasional denial at one room.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

import numpy as np

from badgesim.facility.model import FacilityModel
from badgesim.analysis.loader import as_frame

logger = logging.getLogger(__name__)

DEFAULT_MIN_DISTINCT_ROOMS = 3


@dataclass(frozen=True)
class CuriousScore:
    """Per-user denial statistics."""
    user_id: str
    attempts: int
    failures: int
    distinct_denied_rooms: int
    flagged: bool = False

    @property
    def failure_rate(self) -> float:
        return self.failures / self.attempts if self.attempts else 0.0

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "attempts": self.attempts,
            "failures": self.failures,
            "distinct_denied_rooms": self.distinct_denied_rooms,
            "failure_rate": round(self.failure_rate, 6),
            "flagged": self.flagged,
        }


@dataclass
class CuriousReport:
    """Ranked users with at least one denial, plus the flagged subset."""
    ranked: List[CuriousScore] = field(default_factory=list)
    users_analyzed: int = 0
    skipped: int = 0

    @property
    def suspects(self) -> List[CuriousScore]:
        return [s for s in self.ranked if s.flagged]

    @property
    def suspected_users(self) -> List[str]:
        return sorted(s.user_id for s in self.suspects)

    def score(self, user_id: str) -> Optional[CuriousScore]:
        for s in self.ranked:
            if s.user_id == user_id:
                return s
        return None

    def to_dict(self) -> Dict:
        return {
            "suspected_users": self.suspected_users,
            "users_analyzed": self.users_analyzed,
            "skipped": self.skipped,
            "ranked": [s.to_dict() for s in self.ranked],
        }


class CuriousUserDetector:
    """
    Flag users whose denials span many distinct rooms.

    A user is curious when their distinct denied rooms reach
    ``min_distinct_rooms``. When ``failure_rate_percentile`` is set, users
    whose failure rate is above that percentile of the population and who
    have at least ``min_failures`` failures are flagged as well.

    Example:
        >>> report = CuriousUserDetector(min_distinct_rooms=3).detect(events)
        >>> [s.user_id for s in report.suspects]
        ['user_000318', 'user_000007']
    """

    def __init__(
        self,
        min_distinct_rooms: int = DEFAULT_MIN_DISTINCT_ROOMS,
        failure_rate_percentile: Optional[float] = None,
        min_failures: int = 3,
        facility: Optional[FacilityModel] = None,
    ):
        if min_distinct_rooms < 1:
            raise ValueError("min_distinct_rooms must be at least 1")
        if failure_rate_percentile is not None and not 0 <= failure_rate_percentile <= 100:
            raise ValueError("failure_rate_percentile must be within [0, 100]")
        self.min_distinct_rooms = min_distinct_rooms
        self.failure_rate_percentile = failure_rate_percentile
        self.min_failures = min_failures
        self.facility = facility

    def detect(self, events) -> CuriousReport:
        df, skipped = as_frame(events, self.facility)
        report = CuriousReport(skipped=skipped)
        if df.empty:
            return report

        attempts = df.groupby("user_id").size()
        denied = df[~df["success"]]
        failures = denied.groupby("user_id").size().reindex(attempts.index, fill_value=0)
        distinct = denied.groupby("user_id")["room_id"].nunique().reindex(attempts.index, fill_value=0)
        rates = failures / attempts
        report.users_analyzed = len(attempts)

        flagged = distinct >= self.min_distinct_rooms
        if self.failure_rate_percentile is not None:
            threshold = float(np.percentile(rates.to_numpy(), self.failure_rate_percentile))
            flagged = flagged | ((rates > threshold) & (failures >= self.min_failures))

        scores = [
            CuriousScore(
                user_id=uid,
                attempts=int(attempts[uid]),
                failures=int(failures[uid]),
                distinct_denied_rooms=int(distinct[uid]),
                flagged=bool(flagged[uid]),
            )
            for uid in attempts.index
            if failures[uid] > 0
        ]
        scores.sort(key=lambda s: (-s.distinct_denied_rooms, -s.failures, s.user_id))
        report.ranked = scores

        logger.info(
            f"Curious users: {len(report.suspects)} flagged of {report.users_analyzed} "
            f"({len(scores)} with denials)"
        )
        return report
