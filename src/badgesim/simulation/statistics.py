"""
Run statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List
import logging

from badgesim.simulation.events import BadgeEvent
from badgesim.simulation.schedule import DaySchedule

logger = logging.getLogger(__name__)


@dataclass
class DayCounts:
    """Per-worker tallies for one day, merged by the engine."""
    schedules: int = 0
    probes: int = 0
    travel_fallbacks: int = 0
    dropped_activities: int = 0
    clone_injections: int = 0

    def add_schedule(self, schedule: DaySchedule) -> None:
        self.schedules += 1
        self.probes += schedule.probes
        self.travel_fallbacks += schedule.travel_fallbacks
        self.dropped_activities += schedule.dropped

    def merge(self, other: "DayCounts") -> None:
        self.schedules += other.schedules
        self.probes += other.probes
        self.travel_fallbacks += other.travel_fallbacks
        self.dropped_activities += other.dropped_activities
        self.clone_injections += other.clone_injections


@dataclass
class SimulationStatistics:
    """Counters for a whole simulation run."""
    seed: int = 0
    users: int = 0
    variants: Dict[str, int] = field(default_factory=dict)
    events: int = 0
    successes: int = 0
    failures: int = 0
    events_per_day: List[int] = field(default_factory=list)
    totals: DayCounts = field(default_factory=DayCounts)

    def record_event(self, event: BadgeEvent) -> None:
        self.events += 1
        if event.success:
            self.successes += 1
        else:
            self.failures += 1

    def record_day(self, event_count: int, counts: DayCounts) -> None:
        self.events_per_day.append(event_count)
        self.totals.merge(counts)

    @property
    def failure_rate(self) -> float:
        return self.failures / self.events if self.events else 0.0

    def to_dict(self) -> Dict:
        return {
            "seed": self.seed,
            "users": self.users,
            "variants": dict(self.variants),
            "events": self.events,
            "successes": self.successes,
            "failures": self.failures,
            "failure_rate": self.failure_rate,
            "events_per_day": list(self.events_per_day),
            "schedules": self.totals.schedules,
            "probes": self.totals.probes,
            "travel_fallbacks": self.totals.travel_fallbacks,
            "dropped_activities": self.totals.dropped_activities,
            "clone_injections": self.totals.clone_injections,
        }

    def log_summary(self) -> None:
        logger.info(
            f"Simulation complete: {self.events} events over {len(self.events_per_day)} days "
            f"({self.failures} denied, {self.failure_rate:.2%})"
        )
        logger.info(
            f"Anomalies: {self.totals.probes} probes, {self.totals.clone_injections} clone injections; "
            f"{self.totals.travel_fallbacks} travel fallbacks"
        )
