"""
Integration tests for the full simulation and detection pipeline.

Tests the complete flow:
1. Generate a facility and population from a seed
2. Simulate several days into one merged stream
3. Recover the injected anomalies with the detectors
"""

import io
import json

import pytest

from badgesim import SimulationConfig, SimulationEngine
from badgesim.analysis import analyze, evaluate, read_events
from badgesim.output import create_sink, write_answer_key
from badgesim.analysis.loader import read_answer_key
from badgesim.users import BehaviorVariant

SEED = 42


def small_config(**overrides) -> SimulationConfig:
    values = dict(
        user_count=200,
        location_count=3,
        min_buildings_per_location=2,
        max_buildings_per_location=4,
        min_rooms_per_building=10,
        max_rooms_per_building=25,
        days=3,
        seed=SEED,
        curious_user_percentage=0.1,
        cloned_badge_percentage=0.1,
        incidental_denial_rate=0.0,
    )
    values.update(overrides)
    return SimulationConfig.create(**values)


def run(config: SimulationConfig):
    engine = SimulationEngine(config)
    events = list(engine.events())
    return engine, events


@pytest.fixture(scope="module")
def simulated():
    """One simulated run shared by the pipeline tests."""
    return run(small_config())


@pytest.fixture(scope="module")
def report(simulated):
    """Detector output for the shared run."""
    engine, events = simulated
    return analyze(events, facility=engine.facility, travel=engine.travel)


class TestSimulation:
    """Tests for the generated event stream."""

    def test_stream_non_decreasing(self, simulated):
        """Test that the merged stream is ordered by timestamp."""
        _, events = simulated

        assert events
        assert all(a.timestamp <= b.timestamp for a, b in zip(events, events[1:]))

    def test_references_valid(self, simulated):
        """Test that every event references an existing room, building and location."""
        engine, events = simulated

        for e in events:
            assert engine.facility.references_valid(e.room_id, e.building_id, e.location_id)

    def test_every_user_every_day(self, simulated):
        """Test that each user badges in on each simulated day."""
        engine, events = simulated
        seen = {(e.user_id, e.timestamp.date()) for e in events}

        assert len(seen) == engine.config.user_count * engine.config.days

    def test_same_seed_same_run(self, simulated):
        """Test that a seed fully determines events and ground truth."""
        engine, events = simulated
        again, again_events = run(small_config())

        assert [e.to_record() for e in again_events] == [e.to_record() for e in events]
        assert again.clone_days() == engine.clone_days()
        assert [e.to_dict() for e in again.population.answer_key.entries()] == [
            e.to_dict() for e in engine.population.answer_key.entries()
        ]

    def test_worker_count_does_not_change_output(self, simulated):
        """Test that multi-process generation gives the identical stream."""
        engine, events = simulated
        parallel, parallel_events = run(small_config(workers=2))

        assert [e.to_record() for e in parallel_events] == [e.to_record() for e in events]
        assert parallel.clone_days() == engine.clone_days()

    def test_different_seed_differs(self, simulated):
        """Test that another seed gives another stream."""
        _, events = simulated
        _, other = run(small_config(seed=SEED + 1))

        assert [e.to_record() for e in other] != [e.to_record() for e in events]

    def test_clone_days_only_for_cloned_users(self, simulated):
        """Test that clone days are recorded only for cloned-badge users."""
        engine, _ = simulated
        clone_days = engine.clone_days()

        assert clone_days
        for uid, days in clone_days.items():
            entry = engine.population.answer_key.entry(uid)
            assert entry.behavior_variant is BehaviorVariant.CLONED_BADGE
            assert all(0 <= d < engine.config.days for d in days)

    def test_no_denials_for_normal_users(self, simulated):
        """Test that without incidental denials only curious users are refused."""
        engine, events = simulated
        curious = set(engine.population.answer_key.users_with_variant(BehaviorVariant.CURIOUS))

        denied_users = {e.user_id for e in events if not e.success}

        assert denied_users
        assert denied_users <= curious

    def test_statistics(self, simulated):
        """Test run counters against the stream."""
        engine, events = simulated
        stats = engine.statistics.to_dict()

        assert stats["events"] == len(events)
        assert sum(stats["events_per_day"]) == len(events)
        assert stats["failures"] == sum(1 for e in events if not e.success)
        assert stats["clone_injections"] == sum(len(d) for d in engine.clone_days().values())


class TestDetection:
    """Tests for anomaly recovery on a simulated stream."""

    def test_travel_suspects_are_clone_users(self, simulated, report):
        """Test that impossible travel flags exactly the users with clone days."""
        engine, _ = simulated

        assert set(report.travel.suspected_users) == set(engine.clone_days())

    def test_clone_days_flagged(self, simulated, report):
        """Test that every injected clone day has a violation on that date."""
        engine, _ = simulated
        start = engine.config.start_date

        for uid, days in engine.clone_days().items():
            flagged = report.travel.flagged_dates(uid)
            for day in days:
                assert start.toordinal() + day in {d.toordinal() for d in flagged}

    def test_curious_recovered(self, simulated, report):
        """Test curious-user precision and recall."""
        engine, _ = simulated
        curious = set(engine.population.answer_key.users_with_variant(BehaviorVariant.CURIOUS))
        flagged = set(report.curious.suspected_users)

        assert flagged <= curious
        assert len(flagged) >= 0.5 * len(curious)

    def test_rooms_classified(self, report):
        """Test that rooms with traffic get features and a class."""
        assert report.rooms.classes
        assert set(report.rooms.classes) == set(report.rooms.features)

    def test_evaluate(self, simulated, report):
        """Test scoring against the answer key."""
        engine, _ = simulated

        result = evaluate(report, engine.population.answer_key.entries(), engine.facility)

        assert result["impossible_travel"]["precision"] == 1.0
        assert result["impossible_travel"]["recall"] == 1.0
        assert result["curious_users"]["precision"] == 1.0
        assert 0.0 <= result["room_classification"]["accuracy"] <= 1.0

    def test_through_files(self, simulated, tmp_path):
        """Test detection after writing and reloading the stream and answer key."""
        engine, events = simulated
        stream = io.StringIO()
        with create_sink(engine.config, stream) as sink:
            for e in events:
                sink.emit(e)
        events_path = tmp_path / "events.jsonl"
        events_path.write_text(stream.getvalue())
        key_path = tmp_path / "answer_key.jsonl"
        write_answer_key(key_path, engine.population.answer_key.entries())

        loaded = read_events(events_path)
        result = evaluate(analyze(loaded.events), read_answer_key(key_path))

        assert loaded.skipped == 0
        assert len(loaded.events) == len(events)
        assert result["impossible_travel"]["recall"] == 1.0
        assert json.loads(stream.getvalue().splitlines()[0])["timestamp"].endswith("Z")


class TestFalsePositives:
    """Tests for detector noise on Normal users under the default denial rate."""

    @pytest.fixture(scope="class")
    def default_rates(self):
        """A five-day run with the default variant and stale-permission rates."""
        engine, events = run(small_config(
            user_count=400,
            days=5,
            curious_user_percentage=0.05,
            cloned_badge_percentage=0.001,
            incidental_denial_rate=0.002,
        ))
        return engine, events, analyze(events, facility=engine.facility, travel=engine.travel)

    def test_normal_users_rarely_flagged(self, default_rates):
        """Test that under 1% of Normal users are flagged by either detector."""
        engine, _, report = default_rates
        normal = set(engine.population.answer_key.users_with_variant(BehaviorVariant.NORMAL))

        assert normal
        assert len(normal & set(report.curious.suspected_users)) < 0.01 * len(normal)
        assert len(normal & set(report.travel.suspected_users)) < 0.01 * len(normal)


class TestNightShiftRun:
    """Tests for a run with part of the workforce on the night shift."""

    @pytest.fixture(scope="class")
    def night_run(self):
        """A two-day run with 30% of users on the night shift."""
        engine, events = run(small_config(days=2, night_shift_percentage=0.3))
        return engine, events, analyze(events, facility=engine.facility, travel=engine.travel)

    def test_night_users_badge_in_the_evening(self, night_run):
        """Test that night-shift users arrive at 18:00 or later and leave before midnight."""
        engine, events, _ = night_run
        night = {p.user_id for p in engine.population if p.night_shift}

        assert night
        night_events = [e for e in events if e.user_id in night]
        assert all(e.timestamp.hour >= 18 for e in night_events)
        assert len({(e.user_id, e.timestamp.date()) for e in night_events}) == len(night) * 2

    def test_travel_suspects_are_clone_users(self, night_run):
        """Test that night clones are recovered without flagging anyone else."""
        engine, _, report = night_run

        assert set(report.travel.suspected_users) == set(engine.clone_days())

    def test_off_hours_traffic_seen(self, night_run):
        """Test that night traffic shows up in the off-hours room feature."""
        _, _, report = night_run

        assert any(f.off_hours_share > 0 for f in report.rooms.features.values())
