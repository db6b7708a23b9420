"""
Day Scheduler - Turn a user's day into an ordered list of activities.

A day follows a small state machine:

    Idle → Arriving → AtDesk ↔ {InMeeting, OnBreak, AtLunch, SecureWork, Probing}
         → Departing → Idle

Every excursion leaves from the day's work room and returns to it. The
building of each excursion comes from the location-affinity draw, but a
trip is only accepted when the travel-time table allows both legs in the
time available; otherwise the excursion stays in the base building. As a
result a schedule built here is always travel-feasible.

Times inside a schedule are integer milliseconds from midnight UTC of the
simulated day. Night-shift users draw from the night windows, which also
end before midnight, so a shift never spans two calendar days.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple
import logging

import numpy as np

from badgesim.facility.model import AuthorizationRule, Building, FacilityModel, Room, RoomType, Sensitivity
from badgesim.facility.travel import TravelTimeTable
from badgesim.simulation.events import BadgeEvent
from badgesim.users.profile import UserProfile

if TYPE_CHECKING:
    from badgesim.config import SimulationConfig

logger = logging.getLogger(__name__)


MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Affinity categories
PRIMARY_BUILDING = 0
SAME_LOCATION = 1
DIFFERENT_LOCATION = 2

DESK_SETTLE_MINUTES = (1, 5)
RETURN_GAP_MS = MINUTE_MS
SECURE_WORK_PROBABILITY = 0.5
RESTRICTED_PROBE_WEIGHT = 4.0


class ActivityType(str, Enum):
    ARRIVAL = "arrival"
    DESK = "desk"
    MEETING = "meeting"
    BREAK = "break"
    LUNCH = "lunch"
    SECURE_WORK = "secure_work"
    PROBE = "probe"
    DEPARTURE = "departure"


class DayState(str, Enum):
    IDLE = "idle"
    ARRIVING = "arriving"
    AT_DESK = "at_desk"
    IN_MEETING = "in_meeting"
    ON_BREAK = "on_break"
    AT_LUNCH = "at_lunch"
    SECURE_WORK = "secure_work"
    PROBING = "probing"
    DEPARTING = "departing"


STATE_OF: Dict[ActivityType, DayState] = {
    ActivityType.ARRIVAL: DayState.ARRIVING,
    ActivityType.DESK: DayState.AT_DESK,
    ActivityType.MEETING: DayState.IN_MEETING,
    ActivityType.BREAK: DayState.ON_BREAK,
    ActivityType.LUNCH: DayState.AT_LUNCH,
    ActivityType.SECURE_WORK: DayState.SECURE_WORK,
    ActivityType.PROBE: DayState.PROBING,
    ActivityType.DEPARTURE: DayState.DEPARTING,
}

EXCURSION_STATES = {
    DayState.IN_MEETING,
    DayState.ON_BREAK,
    DayState.AT_LUNCH,
    DayState.SECURE_WORK,
    DayState.PROBING,
}

TRANSITIONS: Dict[DayState, Set[DayState]] = {
    DayState.IDLE: {DayState.ARRIVING},
    DayState.ARRIVING: {DayState.AT_DESK},
    DayState.AT_DESK: EXCURSION_STATES | {DayState.DEPARTING},
    DayState.DEPARTING: {DayState.IDLE},
    **{state: {DayState.AT_DESK} for state in EXCURSION_STATES},
}

# Dwell ranges in minutes
DWELL_MINUTES: Dict[ActivityType, Tuple[int, int]] = {
    ActivityType.MEETING: (30, 60),
    ActivityType.BREAK: (5, 15),
    ActivityType.LUNCH: (30, 60),
    ActivityType.SECURE_WORK: (15, 60),
    ActivityType.PROBE: (5, 45),
}

# Room types wanted per activity, in preference order
ROOM_PREFERENCES: Dict[ActivityType, Tuple[RoomType, ...]] = {
    ActivityType.MEETING: (RoomType.MEETING_ROOM,),
    ActivityType.BREAK: (RoomType.BREAK_ROOM, RoomType.CAFETERIA),
    ActivityType.LUNCH: (RoomType.CAFETERIA, RoomType.BREAK_ROOM),
}

WORK_ROOM_TYPES = (RoomType.OFFICE, RoomType.MEETING_ROOM)


@dataclass(frozen=True)
class Activity:
    """One step of a day, bound to a room, a start time and a dwell."""
    activity_type: ActivityType
    room: Room
    start_ms: int
    dwell_ms: int
    success: bool

    @property
    def end_ms(self) -> int:
        return self.start_ms + self.dwell_ms


@dataclass
class DaySchedule:
    """Ordered activities of one user on one simulated day."""
    user_id: str
    day_index: int
    day_start: datetime
    base_building: str
    base_location: str
    activities: List[Activity] = field(default_factory=list)
    travel_fallbacks: int = 0
    dropped: int = 0

    @property
    def arrival_ms(self) -> int:
        return self.activities[0].start_ms

    @property
    def departure_ms(self) -> int:
        return self.activities[-1].start_ms

    @property
    def probes(self) -> int:
        return sum(1 for a in self.activities if a.activity_type is ActivityType.PROBE)

    def timestamp(self, ms: int) -> datetime:
        return self.day_start + timedelta(milliseconds=ms)

    def to_events(self) -> List[BadgeEvent]:
        """BadgeEvents in timestamp order, one per activity."""
        ordered = sorted(self.activities, key=lambda a: a.start_ms)
        return [
            BadgeEvent(
                timestamp=self.timestamp(a.start_ms),
                user_id=self.user_id,
                room_id=a.room.room_id,
                building_id=a.room.building_id,
                location_id=a.room.location_id,
                success=a.success,
                activity=a.activity_type.value,
            )
            for a in ordered
        ]

    def states(self) -> List[DayState]:
        return [DayState.IDLE] + [STATE_OF[a.activity_type] for a in self.activities] + [DayState.IDLE]

    def follows_state_machine(self) -> bool:
        states = self.states()
        return all(b in TRANSITIONS[a] for a, b in zip(states, states[1:]))


@dataclass
class _Excursion:
    kind: ActivityType
    start_ms: int
    dwell_ms: int


class DayScheduler:
    """
    Build DaySchedules for users of a facility.

    The scheduler holds no per-user state; every call draws only from the
    Generator it is given, so a schedule is fully determined by the
    profile, the day and that Generator.

    Example:
        >>> scheduler = DayScheduler(config, facility, travel)
        >>> schedule = scheduler.schedule(profile, 0, day_rng(seed, profile.index, 0))
        >>> [e.room_id for e in schedule.to_events()][:2]
        ['room_002_03_001', 'room_002_03_007']
    """

    def __init__(
        self,
        config: "SimulationConfig",
        facility: FacilityModel,
        travel: Optional[TravelTimeTable] = None,
    ):
        self.config = config
        self.facility = facility
        self.travel = travel or TravelTimeTable.from_config(config)
        self._affinity = np.array(config.affinity(), dtype=float)
        self._affinity = self._affinity / self._affinity.sum()
        self._travel_ms = {
            scope: int(minimum.total_seconds() * 1000)
            for scope, minimum in self.travel.minimums.items()
        }

    def day_start(self, day_index: int) -> datetime:
        day = self.config.start_date + timedelta(days=day_index)
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

    def travel_ms(self, origin: Building, target: Building) -> int:
        scope = self.travel.scope(
            origin.building_id, origin.location_id, target.building_id, target.location_id
        )
        return self._travel_ms[scope]

    # Schedule construction

    def schedule(
        self,
        profile: UserProfile,
        day_index: int,
        rng: np.random.Generator,
        probe_rate: float = 0.0,
        base_building: Optional[Building] = None,
        arrival_range_ms: Optional[Tuple[int, int]] = None,
    ) -> DaySchedule:
        """
        Build one day for ``profile``.

        Args:
            profile: The badge holder
            day_index: Day number from the configured start date
            rng: Generator for this user-day
            probe_rate: Poisson mean of unauthorized probes (0 disables them)
            base_building: Force the day's base building instead of drawing it
            arrival_range_ms: Force the arrival into this inclusive range

        Returns:
            DaySchedule whose activities are in time order
        """
        arrival_window, departure_window, lunch_window = self.config.shift_windows(profile.night_shift)
        if arrival_range_ms is None:
            arrival = self._draw_ms(rng, arrival_window)
        else:
            arrival = int(rng.integers(arrival_range_ms[0], arrival_range_ms[1], endpoint=True))
        departure = self._draw_ms(rng, departure_window)
        if departure <= arrival:
            departure = min(arrival + HOUR_MS, DAY_MS - 1)

        base = base_building or self._arrival_building(profile, rng)
        work_room = self._work_room(profile, base, rng)

        schedule = DaySchedule(
            user_id=profile.user_id,
            day_index=day_index,
            day_start=self.day_start(day_index),
            base_building=base.building_id,
            base_location=base.location_id,
        )

        settle = int(rng.integers(DESK_SETTLE_MINUTES[0] * MINUTE_MS, DESK_SETTLE_MINUTES[1] * MINUTE_MS, endpoint=True))
        desk_time = arrival + settle
        schedule.activities.append(self._activity(ActivityType.ARRIVAL, base.lobby, arrival, settle, profile))
        schedule.activities.append(self._activity(ActivityType.DESK, work_room, desk_time, 0, profile))

        excursions = self._plan_excursions(profile, rng, desk_time, departure, lunch_window, probe_rate)

        cursor = desk_time + RETURN_GAP_MS
        previous = desk_time
        latest_end = departure - RETURN_GAP_MS
        probed: Set[str] = set()
        for excursion in excursions:
            start = max(excursion.start_ms, cursor)
            if start + excursion.dwell_ms > latest_end:
                schedule.dropped += 1
                continue

            room = self._excursion_room(
                excursion, profile, base, start - previous, rng, probed, schedule
            )
            if room is None:
                schedule.dropped += 1
                continue

            schedule.activities.append(
                self._activity(excursion.kind, room, start, excursion.dwell_ms, profile)
            )
            back = start + excursion.dwell_ms
            schedule.activities.append(self._activity(ActivityType.DESK, work_room, back, 0, profile))
            previous = back
            cursor = back + RETURN_GAP_MS

        schedule.activities.append(self._activity(ActivityType.DEPARTURE, base.lobby, departure, 0, profile))
        return schedule

    @staticmethod
    def _activity(kind: ActivityType, room: Room, start: int, dwell: int, profile: UserProfile) -> Activity:
        return Activity(
            activity_type=kind,
            room=room,
            start_ms=start,
            dwell_ms=dwell,
            success=profile.can_access(room.room_id),
        )

    @staticmethod
    def _draw_ms(rng: np.random.Generator, window: Tuple[float, float]) -> int:
        return int(rng.integers(int(window[0] * HOUR_MS), int(window[1] * HOUR_MS)))

    @staticmethod
    def _draw_dwell(rng: np.random.Generator, kind: ActivityType) -> int:
        low, high = DWELL_MINUTES[kind]
        return int(rng.integers(low * MINUTE_MS, high * MINUTE_MS, endpoint=True))

    def _plan_excursions(
        self,
        profile: UserProfile,
        rng: np.random.Generator,
        desk_time: int,
        departure: int,
        lunch_window: Tuple[float, float],
        probe_rate: float,
    ) -> List[_Excursion]:
        cfg = self.config
        planned = []

        def add(kind: ActivityType, start: int) -> None:
            planned.append(_Excursion(kind, start, self._draw_dwell(rng, kind)))

        add(ActivityType.LUNCH, self._draw_ms(rng, lunch_window))

        low, high = cfg.meetings_per_day
        for _ in range(int(rng.integers(low, high, endpoint=True))):
            add(ActivityType.MEETING, int(rng.integers(desk_time, departure)))

        low, high = cfg.breaks_per_day
        for _ in range(int(rng.integers(low, high, endpoint=True))):
            add(ActivityType.BREAK, int(rng.integers(desk_time, departure)))

        if self.secure_rooms(profile) and rng.random() < SECURE_WORK_PROBABILITY:
            add(ActivityType.SECURE_WORK, int(rng.integers(desk_time, departure)))

        if probe_rate > 0:
            for _ in range(max(1, int(rng.poisson(probe_rate)))):
                add(ActivityType.PROBE, int(rng.integers(desk_time, departure)))

        # Stable on ties: generation order
        return sorted(planned, key=lambda e: e.start_ms)

    # Place and room choice

    def _draw_category(self, rng: np.random.Generator) -> int:
        return int(rng.choice(3, p=self._affinity))

    def _arrival_building(self, profile: UserProfile, rng: np.random.Generator) -> Building:
        primary = self.facility.building(profile.primary_building)
        category = self._draw_category(rng)
        if category == SAME_LOCATION:
            others = [b for b in self.facility.buildings_at(profile.home_location) if b.building_id != primary.building_id]
            if others:
                return others[int(rng.integers(len(others)))]
        elif category == DIFFERENT_LOCATION:
            locations = [l for l in self.facility.location_ids if l != profile.home_location]
            if locations:
                buildings = self.facility.buildings_at(locations[int(rng.integers(len(locations)))])
                return buildings[int(rng.integers(len(buildings)))]
        return primary

    def _work_room(self, profile: UserProfile, base: Building, rng: np.random.Generator) -> Room:
        if base.building_id == profile.primary_building:
            return self.facility.room(profile.desk_room)
        candidates = [r for r in base.rooms_of_type(*WORK_ROOM_TYPES) if profile.can_access(r.room_id)]
        if not candidates:
            candidates = [r for r in base.rooms_of_type(RoomType.CAFETERIA) if profile.can_access(r.room_id)]
        if not candidates:
            return base.lobby
        return candidates[int(rng.integers(len(candidates)))]

    def secure_rooms(self, profile: UserProfile) -> List[Room]:
        """Role-granted rooms of the user, in id order."""
        rooms = []
        for rid in sorted(profile.authorized_rooms):
            room = self.facility.room(rid)
            if room.authorization is AuthorizationRule.ROLE:
                rooms.append(room)
        return rooms

    def _reachable(self, base: Building, target: Building, elapsed: int, dwell: int) -> bool:
        leg = self.travel_ms(base, target)
        return elapsed >= leg and dwell >= leg

    def _excursion_room(
        self,
        excursion: _Excursion,
        profile: UserProfile,
        base: Building,
        elapsed: int,
        rng: np.random.Generator,
        probed: Set[str],
        schedule: DaySchedule,
    ) -> Optional[Room]:
        if excursion.kind is ActivityType.SECURE_WORK:
            rooms = [
                r for r in self.secure_rooms(profile)
                if self._reachable(base, self.facility.building(r.building_id), elapsed, excursion.dwell_ms)
            ]
            if not rooms:
                return None
            return rooms[int(rng.integers(len(rooms)))]

        if excursion.kind is ActivityType.PROBE:
            return self._probe_room(profile, base, elapsed, excursion.dwell_ms, rng, probed, schedule)

        target = self._excursion_building(base, elapsed, excursion.dwell_ms, rng, schedule)
        return self._pick_room(excursion.kind, profile, target, rng)

    def _excursion_building(
        self,
        base: Building,
        elapsed: int,
        dwell: int,
        rng: np.random.Generator,
        schedule: DaySchedule,
    ) -> Building:
        category = self._draw_category(rng)
        candidate = base
        if category == SAME_LOCATION:
            others = [b for b in self.facility.buildings_at(base.location_id) if b.building_id != base.building_id]
            if others:
                candidate = others[int(rng.integers(len(others)))]
        elif category == DIFFERENT_LOCATION:
            locations = [l for l in self.facility.location_ids if l != base.location_id]
            if locations:
                buildings = self.facility.buildings_at(locations[int(rng.integers(len(locations)))])
                candidate = buildings[int(rng.integers(len(buildings)))]

        if candidate is not base and not self._reachable(base, candidate, elapsed, dwell):
            schedule.travel_fallbacks += 1
            return base
        return candidate

    def _pick_room(
        self,
        kind: ActivityType,
        profile: UserProfile,
        building: Building,
        rng: np.random.Generator,
    ) -> Room:
        candidates = building.rooms_of_type(*ROOM_PREFERENCES[kind])
        allowed = [r for r in candidates if profile.can_access(r.room_id)]
        denied = [r for r in candidates if not profile.can_access(r.room_id)]

        # Stale permission: the user tries a room they can no longer open
        if denied and rng.random() < self.config.incidental_denial_rate:
            return denied[int(rng.integers(len(denied)))]
        if allowed:
            return allowed[int(rng.integers(len(allowed)))]

        common = [r for r in building.rooms if r.authorization is AuthorizationRule.OPEN]
        return common[int(rng.integers(len(common)))]

    def _probe_room(
        self,
        profile: UserProfile,
        base: Building,
        elapsed: int,
        dwell: int,
        rng: np.random.Generator,
        probed: Set[str],
        schedule: DaySchedule,
    ) -> Optional[Room]:
        building = base
        if self._draw_category(rng) != PRIMARY_BUILDING:
            others = [b for b in self.facility.buildings_at(base.location_id) if b.building_id != base.building_id]
            if others:
                candidate = others[int(rng.integers(len(others)))]
                if self._reachable(base, candidate, elapsed, dwell):
                    building = candidate
                else:
                    schedule.travel_fallbacks += 1

        room = self._probe_target(profile, building, probed, rng)
        if room is None and building is not base:
            room = self._probe_target(profile, base, probed, rng)
        if room is not None:
            probed.add(room.room_id)
        return room

    @staticmethod
    def _probe_target(
        profile: UserProfile,
        building: Building,
        probed: Set[str],
        rng: np.random.Generator,
    ) -> Optional[Room]:
        candidates = [
            r for r in building.rooms
            if not profile.can_access(r.room_id) and r.room_id not in probed
        ]
        if not candidates:
            return None
        weights = np.array([
            RESTRICTED_PROBE_WEIGHT if r.sensitivity is Sensitivity.RESTRICTED else 1.0
            for r in candidates
        ])
        return candidates[int(rng.choice(len(candidates), p=weights / weights.sum()))]
