"""
Badge Simulator Simulation Module

Turns a facility and a user population into a time-ordered badge event
stream with injected anomalies.

Key components:
- DayScheduler: Per user-day activity state machine
- Behavior: Normal, curious and cloned-badge strategies
- StreamMerger: Stable k-way merge of per-user sub-streams
- SimulationEngine: Day-by-day orchestration, optionally multi-process
"""

from badgesim.simulation.events import BadgeEvent, format_timestamp, parse_timestamp
from badgesim.simulation.schedule import Activity, ActivityType, DaySchedule, DayScheduler, DayState
from badgesim.simulation.behavior import (
    Behavior,
    ClonedBadgeBehavior,
    CuriousBehavior,
    DayPlan,
    NormalBehavior,
    build_behaviors,
)
from badgesim.simulation.merger import StreamMerger
from badgesim.simulation.statistics import SimulationStatistics
from badgesim.simulation.engine import GenerationError, SimulationEngine, find_travel_violations

__all__ = [
    "BadgeEvent",
    "format_timestamp",
    "parse_timestamp",
    "Activity",
    "ActivityType",
    "DaySchedule",
    "DayScheduler",
    "DayState",
    "Behavior",
    "ClonedBadgeBehavior",
    "CuriousBehavior",
    "DayPlan",
    "NormalBehavior",
    "build_behaviors",
    "StreamMerger",
    "SimulationStatistics",
    "GenerationError",
    "SimulationEngine",
    "find_travel_violations",
]
