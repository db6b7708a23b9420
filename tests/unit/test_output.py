"""
Unit tests for event writers, sinks and ground-truth files.
"""

import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from badgesim.analysis.loader import read_answer_key, read_events, read_facility, read_travel
from badgesim.config import OutputFieldConfig, SimulationConfig
from badgesim.facility import FacilityGenerator, TravelTimeTable
from badgesim.output import (
    BufferedSink,
    CsvWriter,
    JsonLinesWriter,
    PacedSink,
    create_sink,
    create_writer,
    write_answer_key,
    write_facility,
)
from badgesim.seeding import FACILITY_STREAM, derive_rng
from badgesim.simulation import BadgeEvent
from badgesim.users import AnswerKeyEntry, BehaviorVariant

BASE = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def make_event(minutes: float, success: bool = True, activity: str = "desk") -> BadgeEvent:
    return BadgeEvent(
        timestamp=BASE + timedelta(minutes=minutes),
        user_id="user_000001",
        room_id="room_001_01_002",
        building_id="bldg_001_01",
        location_id="loc_001",
        success=success,
        activity=activity,
    )


class FakeSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self):
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestWriters:
    """Tests for JSON Lines and CSV writers."""

    def test_json_lines(self):
        """Test one JSON object per line with base fields only."""
        stream = io.StringIO()
        writer = JsonLinesWriter(stream)

        writer.write_many([make_event(0), make_event(1, success=False)])

        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first == {
            "timestamp": "2025-01-06T09:00:00.000Z",
            "user_id": "user_000001",
            "room_id": "room_001_01_002",
            "building_id": "bldg_001_01",
            "location_id": "loc_001",
            "success": True,
        }
        assert json.loads(lines[1])["success"] is False
        assert writer.written == 2

    def test_json_extra_fields(self):
        """Test that enabled optional fields are appended."""
        stream = io.StringIO()
        JsonLinesWriter(stream, ["event_type", "failure_reason"]).write(make_event(0, success=False, activity="probe"))

        record = json.loads(stream.getvalue())
        assert record["event_type"] == "probe"
        assert record["failure_reason"] == "curious"

    def test_csv_header_and_booleans(self):
        """Test the CSV header row and lowercase booleans."""
        stream = io.StringIO()
        writer = CsvWriter(stream, ["failure_reason"])

        writer.write(make_event(0))
        writer.write(make_event(1, success=False))

        lines = stream.getvalue().splitlines()
        assert lines[0] == "timestamp,user_id,room_id,building_id,location_id,success,failure_reason"
        assert lines[1].endswith(",true,")
        assert lines[2].endswith(",false,unauthorized")

    def test_csv_no_header_without_events(self):
        """Test that an empty run writes nothing."""
        stream = io.StringIO()
        CsvWriter(stream).flush()

        assert stream.getvalue() == ""

    def test_create_writer(self):
        """Test writer selection by format name."""
        assert isinstance(create_writer("json", io.StringIO()), JsonLinesWriter)
        assert isinstance(create_writer("csv", io.StringIO()), CsvWriter)
        with pytest.raises(ValueError):
            create_writer("parquet", io.StringIO())

    def test_csv_reloads(self, tmp_path):
        """Test that CSV output reads back into the same events."""
        path = tmp_path / "events.csv"
        events = [make_event(0, activity=None), make_event(5, success=False, activity=None)]
        with open(path, "w", encoding="utf-8", newline="") as f:
            CsvWriter(f).write_many(events)

        loaded = read_events(path)

        assert loaded.events == events
        assert loaded.skipped == 0


class TestBufferedSink:
    """Tests for BufferedSink."""

    def test_flushes_at_capacity(self):
        """Test that events are written in blocks of the buffer capacity."""
        stream = io.StringIO()
        sink = BufferedSink(JsonLinesWriter(stream), capacity=2)

        sink.emit(make_event(0))
        assert stream.getvalue() == ""
        sink.emit(make_event(1))
        assert len(stream.getvalue().splitlines()) == 2
        sink.emit(make_event(2))
        assert len(stream.getvalue().splitlines()) == 2

        sink.close()
        assert len(stream.getvalue().splitlines()) == 3
        assert sink.emitted == 3

    def test_context_manager_flushes(self):
        """Test that leaving the context flushes the buffer."""
        stream = io.StringIO()
        with BufferedSink(JsonLinesWriter(stream), capacity=100) as sink:
            sink.emit(make_event(0))

        assert len(stream.getvalue().splitlines()) == 1

    def test_invalid_capacity(self):
        """Test that a non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            BufferedSink(JsonLinesWriter(io.StringIO()), capacity=0)


class TestPacedSink:
    """Tests for PacedSink."""

    def test_delays_scaled_and_capped(self):
        """Test gap / factor pacing with the max delay cap and no sleep on ties."""
        stream = io.StringIO()
        sleep = FakeSleep()
        sink = PacedSink(JsonLinesWriter(stream), acceleration_factor=60.0, max_delay=5.0, sleep=sleep)

        for minutes in (0, 1, 1, 180):
            sink.emit(make_event(minutes))

        assert sleep.calls == [1.0, 5.0]
        assert sink.total_delay == 6.0
        assert len(stream.getvalue().splitlines()) == 4

    def test_timestamps_unchanged(self):
        """Test that pacing does not alter emitted timestamps."""
        stream = io.StringIO()
        sink = PacedSink(JsonLinesWriter(stream), acceleration_factor=3600.0, sleep=FakeSleep())

        sink.emit(make_event(0))
        sink.emit(make_event(30))

        stamps = [json.loads(line)["timestamp"] for line in stream.getvalue().splitlines()]
        assert stamps == ["2025-01-06T09:00:00.000Z", "2025-01-06T09:30:00.000Z"]

    def test_invalid_factor(self):
        """Test that a non-positive acceleration factor is rejected."""
        with pytest.raises(ValueError):
            PacedSink(JsonLinesWriter(io.StringIO()), acceleration_factor=0)


class TestCreateSink:
    """Tests for create_sink."""

    def test_batch_by_default(self):
        """Test that batch mode builds a BufferedSink with the batch size."""
        sink = create_sink(SimulationConfig(batch_size=10), io.StringIO())

        assert isinstance(sink, BufferedSink)
        assert sink.capacity == 10
        assert isinstance(sink.writer, JsonLinesWriter)

    def test_streaming(self):
        """Test that streaming mode builds a PacedSink from the config."""
        config = SimulationConfig(
            streaming=True,
            time_acceleration_factor=120.0,
            max_emit_delay_seconds=2.0,
            output_format="csv",
            output_fields=OutputFieldConfig(include_all=True),
        )

        sink = create_sink(config, io.StringIO(), sleep=FakeSleep())

        assert isinstance(sink, PacedSink)
        assert sink.acceleration_factor == 120.0
        assert sink.max_delay == 2.0
        assert isinstance(sink.writer, CsvWriter)
        assert sink.writer.extra_fields == ["event_type", "failure_reason"]


class TestGroundTruthFiles:
    """Tests for the answer key and facility files."""

    def test_answer_key_round_trip(self, tmp_path):
        """Test writing and reading the answer key."""
        entries = [
            AnswerKeyEntry(
                user_id="user_000001",
                home_location="loc_001",
                primary_building="bldg_001_01",
                authorized_rooms=frozenset({"room_001_01_001", "room_001_01_002"}),
                behavior_variant=BehaviorVariant.NORMAL,
            ),
            AnswerKeyEntry(
                user_id="user_000002",
                home_location="loc_002",
                primary_building="bldg_002_01",
                authorized_rooms=frozenset({"room_002_01_001"}),
                behavior_variant=BehaviorVariant.CLONED_BADGE,
                clone_days=(0, 3),
            ),
        ]
        path = tmp_path / "out" / "answer_key.jsonl"

        assert write_answer_key(path, entries) == 2
        loaded = read_answer_key(path)

        assert list(loaded) == ["user_000001", "user_000002"]
        assert loaded["user_000002"] == entries[1]

    def test_facility_round_trip(self, tmp_path):
        """Test writing and reading the facility layout."""
        config = SimulationConfig.create(location_count=2, min_rooms_per_building=5, max_rooms_per_building=8)
        facility = FacilityGenerator(config).generate(derive_rng(5, FACILITY_STREAM))
        path = tmp_path / "facility.json"

        write_facility(path, facility)

        assert read_facility(path).to_dict() == facility.to_dict()

    def test_facility_carries_travel_table(self, tmp_path):
        """Test that the run's travel minimums are stored with the facility."""
        config = SimulationConfig.create(location_count=2, min_rooms_per_building=5, max_rooms_per_building=8)
        facility = FacilityGenerator(config).generate(derive_rng(5, FACILITY_STREAM))
        travel = TravelTimeTable.from_constants(timedelta(minutes=5), timedelta(hours=6))
        path = tmp_path / "facility.json"

        write_facility(path, facility, travel)

        assert json.loads(path.read_text())["travel"] == {
            "same_building": 0.0,
            "same_location": 300.0,
            "cross_location": 21600.0,
        }
        assert read_travel(path) == travel
        assert read_facility(path).to_dict() == facility.to_dict()

    def test_facility_without_travel_table(self, tmp_path):
        """Test that a facility file written without minimums yields no table."""
        config = SimulationConfig.create(location_count=1, min_rooms_per_building=5, max_rooms_per_building=8)
        facility = FacilityGenerator(config).generate(derive_rng(5, FACILITY_STREAM))
        path = tmp_path / "facility.json"

        write_facility(path, facility)

        assert read_travel(path) is None
