"""
Badge Simulator Analysis Module

Recovers anomalies and room semantics from an event stream alone.

Key components:
- ImpossibleTravelerDetector: Cloned badges via infeasible travel
- CuriousUserDetector: Users probing many rooms they cannot open
- RoomClassifier: Room class from traffic, dwell and time of day
- analyze / evaluate: Combined report and scoring against the answer key
"""

from badgesim.analysis.loader import (
    EventLoadResult,
    events_to_frame,
    read_answer_key,
    read_events,
    read_facility,
    read_travel,
)
from badgesim.analysis.impossible_traveler import (
    ImpossibleTravelerDetector,
    TravelReport,
    TravelViolation,
)
from badgesim.analysis.curious import CuriousReport, CuriousScore, CuriousUserDetector
from badgesim.analysis.room_classifier import (
    ClassifierThresholds,
    RoomClassifier,
    RoomFeatures,
    RoomReport,
    class_accuracy,
    classify_features,
)
from badgesim.analysis.report import AnalysisReport, DetectionScore, analyze, evaluate

__all__ = [
    "EventLoadResult",
    "events_to_frame",
    "read_answer_key",
    "read_events",
    "read_facility",
    "read_travel",
    "ImpossibleTravelerDetector",
    "TravelReport",
    "TravelViolation",
    "CuriousReport",
    "CuriousScore",
    "CuriousUserDetector",
    "ClassifierThresholds",
    "RoomClassifier",
    "RoomFeatures",
    "RoomReport",
    "class_accuracy",
    "classify_features",
    "AnalysisReport",
    "DetectionScore",
    "analyze",
    "evaluate",
]
