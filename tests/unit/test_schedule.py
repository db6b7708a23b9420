"""
Unit tests for day scheduling and behavior strategies.
"""

import pytest

from badgesim.config import SimulationConfig
from badgesim.facility import FacilityGenerator, TravelTimeTable
from badgesim.seeding import FACILITY_STREAM, POPULATION_STREAM, day_rng, derive_rng
from badgesim.simulation import (
    Activity,
    ActivityType,
    ClonedBadgeBehavior,
    CuriousBehavior,
    DaySchedule,
    DayScheduler,
    NormalBehavior,
    find_travel_violations,
)
from badgesim.simulation.schedule import HOUR_MS, MINUTE_MS
from badgesim.users import BehaviorVariant, UserProfileGenerator

SEED = 11


@pytest.fixture(scope="module")
def world():
    """Config, facility, population and scheduler without incidental denials."""
    config = SimulationConfig.create(
        user_count=120,
        location_count=3,
        min_buildings_per_location=2,
        max_buildings_per_location=4,
        min_rooms_per_building=8,
        max_rooms_per_building=20,
        curious_user_percentage=0.0,
        cloned_badge_percentage=0.0,
        incidental_denial_rate=0.0,
        role_grant_probabilities={"it": 0.2, "research": 0.2},
        seed=SEED,
    )
    facility = FacilityGenerator(config).generate(derive_rng(SEED, FACILITY_STREAM))
    population = UserProfileGenerator(config, facility).generate(derive_rng(SEED, POPULATION_STREAM))
    scheduler = DayScheduler(config, facility)
    return config, facility, population, scheduler


def all_schedules(world, days=3):
    _, _, population, scheduler = world
    for profile in population:
        for day in range(days):
            yield profile, scheduler.schedule(profile, day, day_rng(SEED, profile.index, day))


class TestDayScheduler:
    """Tests for DayScheduler."""

    def test_activities_strictly_ordered(self, world):
        """Test that activity start times strictly increase."""
        for _, schedule in all_schedules(world):
            starts = [a.start_ms for a in schedule.activities]
            assert starts == sorted(starts)
            assert len(set(starts)) == len(starts)

    def test_follows_state_machine(self, world):
        """Test Idle → Arriving → AtDesk ↔ excursions → Departing → Idle."""
        for _, schedule in all_schedules(world):
            assert schedule.follows_state_machine()
            assert schedule.activities[0].activity_type is ActivityType.ARRIVAL
            assert schedule.activities[1].activity_type is ActivityType.DESK
            assert schedule.activities[-1].activity_type is ActivityType.DEPARTURE

    def test_arrival_and_departure_at_base_lobby(self, world):
        """Test that the day starts and ends at the lobby of the base building."""
        _, facility, _, _ = world
        for _, schedule in all_schedules(world):
            lobby = facility.building(schedule.base_building).lobby
            assert schedule.activities[0].room is lobby
            assert schedule.activities[-1].room is lobby

    def test_times_within_windows(self, world):
        """Test arrival and departure against the configured windows."""
        config = world[0]
        for _, schedule in all_schedules(world):
            assert config.arrival_window[0] * HOUR_MS <= schedule.arrival_ms < config.arrival_window[1] * HOUR_MS
            assert config.departure_window[0] * HOUR_MS <= schedule.departure_ms < config.departure_window[1] * HOUR_MS

    def test_one_lunch_at_most(self, world):
        """Test that a day never has more than one lunch."""
        for _, schedule in all_schedules(world):
            lunches = [a for a in schedule.activities if a.activity_type is ActivityType.LUNCH]
            assert len(lunches) <= 1

    def test_excursions_return_to_desk(self, world):
        """Test that every excursion is followed by a desk event at its end."""
        for _, schedule in all_schedules(world):
            acts = schedule.activities
            for i, act in enumerate(acts[1:-1], start=1):
                if act.activity_type is not ActivityType.DESK:
                    assert acts[i + 1].activity_type is ActivityType.DESK
                    assert acts[i + 1].start_ms == act.end_ms

    def test_normal_days_travel_feasible(self, world):
        """Test that normal schedules never contain impossible travel."""
        travel = world[3].travel
        for _, schedule in all_schedules(world):
            assert find_travel_violations(schedule.to_events(), travel) == []

    def test_normal_days_all_authorized(self, world):
        """Test that without incidental denials every attempt succeeds."""
        for profile, schedule in all_schedules(world):
            for activity in schedule.activities:
                assert activity.success
                assert profile.can_access(activity.room.room_id)

    def test_travel_days_happen(self, world):
        """Test that the affinity draw sometimes moves the whole day."""
        moved = [
            schedule for profile, schedule in all_schedules(world)
            if schedule.base_building != profile.primary_building
        ]

        assert moved

    def test_events_on_simulated_day(self, world):
        """Test event timestamps against the configured calendar."""
        config = world[0]
        for _, schedule in all_schedules(world, days=2):
            for event in schedule.to_events():
                assert (event.timestamp.date() - config.start_date).days == schedule.day_index

    def test_same_rng_same_schedule(self, world):
        """Test that a schedule is determined by its generator."""
        _, _, population, scheduler = world
        profile = population.profiles[5]

        first = scheduler.schedule(profile, 2, day_rng(SEED, profile.index, 2))
        second = scheduler.schedule(profile, 2, day_rng(SEED, profile.index, 2))

        assert first.to_events() == second.to_events()

    def test_forced_base_and_arrival(self, world):
        """Test overriding the base building and the arrival range."""
        _, facility, population, scheduler = world
        profile = population.profiles[0]
        other = next(b for b in facility.all_buildings() if b.location_id != profile.home_location)
        low, high = 9 * HOUR_MS, 9 * HOUR_MS + 30 * MINUTE_MS

        schedule = scheduler.schedule(
            profile, 0, day_rng(SEED, profile.index, 0),
            base_building=other,
            arrival_range_ms=(low, high),
        )

        assert schedule.base_building == other.building_id
        assert low <= schedule.arrival_ms <= high
        assert find_travel_violations(schedule.to_events(), scheduler.travel) == []

    def test_curious_probes(self, world):
        """Test that probes target distinct unauthorized rooms and are denied."""
        config, _, population, scheduler = world
        probes = 0
        for profile in population.profiles[:40]:
            schedule = scheduler.schedule(
                profile, 0, day_rng(SEED, profile.index, 0), probe_rate=config.curious_attempt_rate
            )
            targets = [a.room.room_id for a in schedule.activities if a.activity_type is ActivityType.PROBE]
            assert len(targets) == len(set(targets))
            for activity in schedule.activities:
                if activity.activity_type is ActivityType.PROBE:
                    assert not activity.success
                    assert not profile.can_access(activity.room.room_id)
            assert find_travel_violations(schedule.to_events(), scheduler.travel) == []
            probes += len(targets)

        assert probes > 0


class TestDaySchedule:
    """Tests for DaySchedule helpers."""

    def test_invalid_sequence_detected(self, world):
        """Test that skipping the desk after arrival breaks the state machine."""
        _, facility, _, scheduler = world
        lobby = next(facility.all_buildings()).lobby
        schedule = DaySchedule(
            user_id="user_000001",
            day_index=0,
            day_start=scheduler.day_start(0),
            base_building=lobby.building_id,
            base_location=lobby.location_id,
            activities=[
                Activity(ActivityType.ARRIVAL, lobby, 0, 0, True),
                Activity(ActivityType.MEETING, lobby, 1, 0, True),
                Activity(ActivityType.DEPARTURE, lobby, 2, 0, True),
            ],
        )

        assert not schedule.follows_state_machine()


class TestBehaviors:
    """Tests for the behavior strategies."""

    def test_normal_single_schedule(self, world):
        """Test that normal users get exactly one schedule per day."""
        _, _, population, scheduler = world
        plan = NormalBehavior(scheduler, SEED).plan_day(population.profiles[0], 0)

        assert plan.clone is None
        assert len(plan.schedules) == 1

    def test_curious_matches_probe_schedule(self, world):
        """Test that curious plans come from the primary sub-stream with probes."""
        config, _, population, scheduler = world
        profile = population.profiles[3]

        plan = CuriousBehavior(scheduler, SEED).plan_day(profile, 1)
        direct = scheduler.schedule(
            profile, 1, day_rng(SEED, profile.index, 1), probe_rate=config.curious_attempt_rate
        )

        assert plan.primary.to_events() == direct.to_events()
        assert CuriousBehavior.variant is BehaviorVariant.CURIOUS

    def test_clone_at_other_location_soon_after_arrival(self, world):
        """Test that injected clone days start 15 min to 2 h after the primary arrival elsewhere."""
        config, _, population, _ = world
        scheduler = DayScheduler(config.replace(cloned_badge_day_rate=1.0), world[1])
        behavior = ClonedBadgeBehavior(scheduler, SEED)

        for profile in population.profiles[:30]:
            plan = behavior.plan_day(profile, 0)
            assert plan.clone is not None
            assert plan.clone.base_location != plan.primary.base_location
            offset = plan.clone.arrival_ms - plan.primary.arrival_ms
            assert 15 * MINUTE_MS <= offset <= 2 * HOUR_MS
            combined = sorted(plan.primary.to_events() + plan.clone.to_events(), key=lambda e: e.timestamp)
            assert find_travel_violations(combined, TravelTimeTable.default())

    def test_clone_day_rate_zero(self, world):
        """Test that no clone schedule is injected when the day rate is zero."""
        config, facility, population, _ = world
        scheduler = DayScheduler(config.replace(cloned_badge_day_rate=0.0), facility)
        behavior = ClonedBadgeBehavior(scheduler, SEED)

        assert all(behavior.plan_day(p, 0).clone is None for p in population.profiles[:20])


class TestNightShift:
    """Tests for night-shift schedules."""

    @pytest.fixture(scope="class")
    def night_world(self):
        """The scheduling world with every user on the night shift."""
        config = SimulationConfig.create(
            user_count=60,
            location_count=3,
            min_buildings_per_location=2,
            max_buildings_per_location=3,
            min_rooms_per_building=8,
            max_rooms_per_building=20,
            curious_user_percentage=0.0,
            cloned_badge_percentage=0.0,
            incidental_denial_rate=0.0,
            night_shift_percentage=1.0,
            seed=SEED,
        )
        facility = FacilityGenerator(config).generate(derive_rng(SEED, FACILITY_STREAM))
        population = UserProfileGenerator(config, facility).generate(derive_rng(SEED, POPULATION_STREAM))
        return config, facility, population, DayScheduler(config, facility)

    def test_times_within_night_windows(self, night_world):
        """Test arrival and departure against the night windows."""
        config = night_world[0]
        arrival_window, departure_window, _ = config.shift_windows(night_shift=True)
        for profile, schedule in all_schedules(night_world, days=2):
            assert profile.night_shift
            assert arrival_window[0] * HOUR_MS <= schedule.arrival_ms < arrival_window[1] * HOUR_MS
            assert departure_window[0] * HOUR_MS <= schedule.departure_ms < departure_window[1] * HOUR_MS

    def test_shift_ends_on_same_day(self, night_world):
        """Test that night-shift events stay on the simulated calendar day."""
        config = night_world[0]
        for _, schedule in all_schedules(night_world, days=2):
            assert schedule.follows_state_machine()
            for event in schedule.to_events():
                assert (event.timestamp.date() - config.start_date).days == schedule.day_index

    def test_night_days_travel_feasible(self, night_world):
        """Test that night schedules never contain impossible travel."""
        travel = night_world[3].travel
        for _, schedule in all_schedules(night_world):
            assert find_travel_violations(schedule.to_events(), travel) == []

    def test_clone_injected_during_night_shift(self, night_world):
        """Test that a night-shift clone still starts 15 min to 2 h after the primary arrival."""
        config, facility, population, _ = night_world
        scheduler = DayScheduler(config.replace(cloned_badge_day_rate=1.0), facility)
        behavior = ClonedBadgeBehavior(scheduler, SEED)

        for profile in population.profiles[:20]:
            plan = behavior.plan_day(profile, 0)
            assert plan.clone is not None
            offset = plan.clone.arrival_ms - plan.primary.arrival_ms
            assert 15 * MINUTE_MS <= offset <= 2 * HOUR_MS
            assert plan.clone.departure_ms < 24 * HOUR_MS
