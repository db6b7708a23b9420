"""
Analysis report and ground-truth evaluation.

Runs the three detectors over one event stream and, when an answer key
is available, measures how well they recovered the injected anomalies.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Set
import logging

from badgesim.facility.model import FacilityModel
from badgesim.facility.travel import TravelTimeTable
from badgesim.analysis.curious import DEFAULT_MIN_DISTINCT_ROOMS, CuriousReport, CuriousUserDetector
from badgesim.analysis.impossible_traveler import ImpossibleTravelerDetector, TravelReport
from badgesim.analysis.loader import as_frame
from badgesim.analysis.room_classifier import RoomClassifier, RoomReport, class_accuracy
from badgesim.users.profile import AnswerKeyEntry, BehaviorVariant

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Combined detector output for one stream."""
    travel: TravelReport
    curious: CuriousReport
    rooms: RoomReport
    events_analyzed: int = 0
    skipped_unknown: int = 0
    skipped_malformed: int = 0

    def to_dict(self) -> Dict:
        return {
            "events_analyzed": self.events_analyzed,
            "skipped_unknown": self.skipped_unknown,
            "skipped_malformed": self.skipped_malformed,
            "impossible_travel": self.travel.to_dict(),
            "curious_users": self.curious.to_dict(),
            "room_classification": self.rooms.to_dict(),
        }


def analyze(
    events,
    facility: Optional[FacilityModel] = None,
    travel: Optional[TravelTimeTable] = None,
    curious_threshold: int = DEFAULT_MIN_DISTINCT_ROOMS,
    failure_rate_percentile: Optional[float] = None,
    parallel: bool = True,
    skipped_malformed: int = 0,
) -> AnalysisReport:
    """
    Run all detectors over ``events``.

    The detectors are independent and read-only, so they run concurrently
    on a thread pool when ``parallel`` is set.

    Args:
        events: BadgeEvents or a frame from events_to_frame
        facility: When given, events referencing unknown entities are skipped
        travel: Travel-time table (defaults to the standard constants)
        curious_threshold: Distinct denied rooms that make a user curious
        failure_rate_percentile: Optional additional failure-rate rule
        parallel: Run detectors on a thread pool
        skipped_malformed: Count of records already dropped at load time

    Returns:
        AnalysisReport
    """
    df, skipped = as_frame(events, facility)
    curious_detector = CuriousUserDetector(
        min_distinct_rooms=curious_threshold,
        failure_rate_percentile=failure_rate_percentile,
    )
    runners = {
        "travel": ImpossibleTravelerDetector(travel=travel).detect,
        "curious": curious_detector.detect,
        "rooms": RoomClassifier().classify,
    }

    if parallel:
        with ThreadPoolExecutor(max_workers=len(runners)) as executor:
            futures = {name: executor.submit(run, df) for name, run in runners.items()}
            results = {name: future.result() for name, future in futures.items()}
    else:
        results = {name: run(df) for name, run in runners.items()}

    for result in results.values():
        result.skipped = skipped

    report = AnalysisReport(
        travel=results["travel"],
        curious=results["curious"],
        rooms=results["rooms"],
        events_analyzed=len(df),
        skipped_unknown=skipped,
        skipped_malformed=skipped_malformed,
    )
    logger.info(
        f"Analysis complete: {len(report.travel.suspected_users)} impossible travelers, "
        f"{len(report.curious.suspected_users)} curious users, {len(report.rooms.classes)} rooms"
    )
    return report


@dataclass(frozen=True)
class DetectionScore:
    """Precision/recall of one detector against the answer key."""
    true_positives: int
    false_positives: int
    false_negatives: int

    @classmethod
    def from_sets(cls, predicted: Set[str], actual: Set[str]) -> "DetectionScore":
        return cls(
            true_positives=len(predicted & actual),
            false_positives=len(predicted - actual),
            false_negatives=len(actual - predicted),
        )

    @property
    def precision(self) -> float:
        flagged = self.true_positives + self.false_positives
        return self.true_positives / flagged if flagged else 0.0

    @property
    def recall(self) -> float:
        expected = self.true_positives + self.false_negatives
        return self.true_positives / expected if expected else 0.0

    @property
    def f1_score(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) else 0.0

    def to_dict(self) -> Dict:
        return {
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "true_positives": self.true_positives,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
        }


def evaluate(
    report: AnalysisReport,
    answer_key: Mapping[str, AnswerKeyEntry] | Iterable[AnswerKeyEntry],
    facility: Optional[FacilityModel] = None,
) -> Dict:
    """
    Score a report against the answer key.

    Cloned badges count as actual positives only when at least one clone
    day was injected; a cloned user whose clone never appeared left no
    trace in the stream.
    """
    entries = list(answer_key.values()) if isinstance(answer_key, Mapping) else list(answer_key)

    cloned = {e.user_id for e in entries if e.behavior_variant is BehaviorVariant.CLONED_BADGE and e.clone_days}
    curious = {e.user_id for e in entries if e.behavior_variant is BehaviorVariant.CURIOUS}

    result = {
        "impossible_travel": DetectionScore.from_sets(set(report.travel.suspected_users), cloned).to_dict(),
        "curious_users": DetectionScore.from_sets(set(report.curious.suspected_users), curious).to_dict(),
    }
    if facility is not None:
        result["room_classification"] = class_accuracy(report.rooms, facility)

    logger.info(
        f"Evaluation: travel precision {result['impossible_travel']['precision']:.3f} "
        f"recall {result['impossible_travel']['recall']:.3f}; "
        f"curious precision {result['curious_users']['precision']:.3f} "
        f"recall {result['curious_users']['recall']:.3f}"
    )
    return result
