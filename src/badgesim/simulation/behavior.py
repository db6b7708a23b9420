"""
Behavior strategies.

Each BehaviorVariant maps to one Behavior object that turns a user-day
into one or more DaySchedules. Anomalies are injected here: curious
users get unauthorized probes, cloned badges get a second schedule at
another location on some days.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

from badgesim.facility.model import Building
from badgesim.seeding import CLONE_SCHEDULE, PRIMARY_SCHEDULE, day_rng
from badgesim.simulation.schedule import MINUTE_MS, RETURN_GAP_MS, DaySchedule, DayScheduler
from badgesim.users.profile import BehaviorVariant, UserProfile

logger = logging.getLogger(__name__)


# Clone arrival offset after the primary arrival, in minutes
CLONE_ARRIVAL_OFFSET = (15, 120)


@dataclass
class DayPlan:
    """Schedules produced for one user-day."""
    primary: DaySchedule
    clone: Optional[DaySchedule] = None

    @property
    def schedules(self) -> List[DaySchedule]:
        if self.clone is None:
            return [self.primary]
        return [self.primary, self.clone]


class Behavior(ABC):
    """Strategy producing the schedules of one user-day."""

    variant: BehaviorVariant

    def __init__(self, scheduler: DayScheduler, seed: int):
        self.scheduler = scheduler
        self.seed = seed

    @abstractmethod
    def plan_day(self, profile: UserProfile, day_index: int) -> DayPlan:
        pass


class NormalBehavior(Behavior):
    """Ordinary routine within the user's permissions."""

    variant = BehaviorVariant.NORMAL

    def plan_day(self, profile: UserProfile, day_index: int) -> DayPlan:
        rng = day_rng(self.seed, profile.index, day_index, PRIMARY_SCHEDULE)
        return DayPlan(primary=self.scheduler.schedule(profile, day_index, rng))


class CuriousBehavior(Behavior):
    """Normal routine plus probes of rooms outside the authorized set."""

    variant = BehaviorVariant.CURIOUS

    def plan_day(self, profile: UserProfile, day_index: int) -> DayPlan:
        rng = day_rng(self.seed, profile.index, day_index, PRIMARY_SCHEDULE)
        schedule = self.scheduler.schedule(
            profile,
            day_index,
            rng,
            probe_rate=self.scheduler.config.curious_attempt_rate,
        )
        return DayPlan(primary=schedule)


class ClonedBadgeBehavior(Behavior):
    """
    Normal routine plus, on some days, a second holder of the same badge.

    The clone's day is based at another location and starts shortly
    after the primary arrival, so the merged per-user stream contains
    consecutive events that no one could travel between.
    """

    variant = BehaviorVariant.CLONED_BADGE

    def plan_day(self, profile: UserProfile, day_index: int) -> DayPlan:
        primary_rng = day_rng(self.seed, profile.index, day_index, PRIMARY_SCHEDULE)
        primary = self.scheduler.schedule(profile, day_index, primary_rng)

        clone_rng = day_rng(self.seed, profile.index, day_index, CLONE_SCHEDULE)
        if clone_rng.random() >= self.scheduler.config.cloned_badge_day_rate:
            return DayPlan(primary=primary)

        base = self._clone_base(primary, clone_rng)
        if base is None:
            return DayPlan(primary=primary)

        earliest = primary.arrival_ms + CLONE_ARRIVAL_OFFSET[0] * MINUTE_MS
        latest = min(
            primary.arrival_ms + CLONE_ARRIVAL_OFFSET[1] * MINUTE_MS,
            primary.departure_ms - RETURN_GAP_MS,
        )
        if latest < earliest:
            return DayPlan(primary=primary)

        clone = self.scheduler.schedule(
            profile,
            day_index,
            clone_rng,
            base_building=base,
            arrival_range_ms=(earliest, latest),
        )
        return DayPlan(primary=primary, clone=clone)

    def _clone_base(self, primary: DaySchedule, rng) -> Optional[Building]:
        facility = self.scheduler.facility
        locations = [l for l in facility.location_ids if l != primary.base_location]
        if not locations:
            return None
        buildings = facility.buildings_at(locations[int(rng.integers(len(locations)))])
        return buildings[int(rng.integers(len(buildings)))]


BEHAVIORS = {
    BehaviorVariant.NORMAL: NormalBehavior,
    BehaviorVariant.CURIOUS: CuriousBehavior,
    BehaviorVariant.CLONED_BADGE: ClonedBadgeBehavior,
}


def build_behaviors(scheduler: DayScheduler, seed: int) -> Dict[BehaviorVariant, Behavior]:
    """One strategy instance per variant."""
    return {variant: cls(scheduler, seed) for variant, cls in BEHAVIORS.items()}
