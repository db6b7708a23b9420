"""
Simulation Engine - Orchestrate a full badge-event run.

Builds the facility and the user population from the run seed, then
produces the event stream one simulated day at a time: every user-day is
planned by its behavior strategy, turned into sorted sub-streams and
merged. User-days can be generated in worker processes; chunks are
collected in submission order so the stream does not depend on the
number of workers.
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple
import logging
import math

from badgesim.facility.generator import FacilityGenerator
from badgesim.facility.model import FacilityModel
from badgesim.facility.travel import TravelTimeTable
from badgesim.seeding import FACILITY_STREAM, POPULATION_STREAM, derive_rng
from badgesim.simulation.behavior import build_behaviors
from badgesim.simulation.events import BadgeEvent
from badgesim.simulation.merger import StreamMerger
from badgesim.simulation.schedule import DayScheduler
from badgesim.simulation.statistics import DayCounts, SimulationStatistics
from badgesim.users.generator import UserPopulation, UserProfileGenerator
from badgesim.users.profile import UserProfile

if TYPE_CHECKING:
    from badgesim.config import SimulationConfig
    from badgesim.output.sinks import EventSink

logger = logging.getLogger(__name__)

# Chunks submitted per worker and day
CHUNKS_PER_WORKER = 4


class GenerationError(RuntimeError):
    """The configured world cannot be generated."""


def find_travel_violations(
    events: List[BadgeEvent],
    travel: TravelTimeTable,
) -> List[Tuple[BadgeEvent, BadgeEvent]]:
    """Consecutive pairs of one user's time-ordered events that no one could travel between."""
    violations = []
    for previous, current in zip(events, events[1:]):
        elapsed = current.timestamp - previous.timestamp
        if not travel.is_feasible(
            previous.building_id, previous.location_id,
            current.building_id, current.location_id,
            elapsed,
        ):
            violations.append((previous, current))
    return violations


@dataclass
class ChunkResult:
    """Sub-streams and tallies for a contiguous range of users on one day."""
    streams: List[List[BadgeEvent]] = field(default_factory=list)
    clone_users: List[str] = field(default_factory=list)
    counts: DayCounts = field(default_factory=DayCounts)


class UserDayGenerator:
    """
    Generate user-days for a fixed facility and population.

    One instance lives in each worker process.
    """

    def __init__(
        self,
        config: "SimulationConfig",
        facility: FacilityModel,
        profiles: List[UserProfile],
        seed: int,
    ):
        self.profiles = profiles
        self.scheduler = DayScheduler(config, facility)
        self.travel = self.scheduler.travel
        self.behaviors = build_behaviors(self.scheduler, seed)
        self.merger = StreamMerger()

    def generate_chunk(self, day_index: int, start: int, stop: int) -> ChunkResult:
        result = ChunkResult()
        for profile in self.profiles[start:stop]:
            plan = self.behaviors[profile.variant].plan_day(profile, day_index)
            primary_events = plan.primary.to_events()
            result.counts.add_schedule(plan.primary)
            result.streams.append(primary_events)

            if plan.clone is None:
                continue
            clone_events = plan.clone.to_events()
            combined = self.merger.merge_all([primary_events, clone_events])
            if not find_travel_violations(combined, self.travel):
                logger.warning(
                    f"Discarding clone schedule for {profile.user_id} on day {day_index}: "
                    f"no infeasible travel produced"
                )
                continue
            result.counts.add_schedule(plan.clone)
            result.counts.clone_injections += 1
            result.clone_users.append(profile.user_id)
            result.streams.append(clone_events)
        return result


_worker_generator: Optional[UserDayGenerator] = None


def _init_worker(config, facility, profiles, seed) -> None:
    global _worker_generator
    _worker_generator = UserDayGenerator(config, facility, profiles, seed)


def _generate_chunk(task: Tuple[int, int, int]) -> ChunkResult:
    day_index, start, stop = task
    return _worker_generator.generate_chunk(day_index, start, stop)


class SimulationEngine:
    """
    Run a simulation from a validated SimulationConfig.

    Example:
        >>> engine = SimulationEngine(config)
        >>> engine.setup()
        >>> for event in engine.events():
        ...     sink.emit(event)
        >>> engine.population.answer_key.clone_days("user_000042")
        (0, 2)
    """

    def __init__(self, config: "SimulationConfig", seed: Optional[int] = None):
        self.config = config
        self.seed = config.resolved_seed() if seed is None else seed
        self.travel = TravelTimeTable.from_config(config)
        self.facility: Optional[FacilityModel] = None
        self.population: Optional[UserPopulation] = None
        self.statistics = SimulationStatistics(seed=self.seed)
        self.merger = StreamMerger()

    def setup(self) -> None:
        """
        Build the facility and population.

        Raises:
            GenerationError: If the generated facility is inconsistent or empty
        """
        logger.info(f"Run seed: {self.seed}")
        facility = FacilityGenerator(self.config).generate(derive_rng(self.seed, FACILITY_STREAM))
        problems = facility.validate()
        if facility.room_count() == 0:
            problems.append("facility has no rooms")
        if problems:
            raise GenerationError(f"Invalid facility: {'; '.join(problems)}")

        population = UserProfileGenerator(self.config, facility).generate(
            derive_rng(self.seed, POPULATION_STREAM)
        )
        self.facility = facility
        self.population = population
        self.statistics.users = len(population)
        self.statistics.variants = population.variant_counts()

    def _tasks(self, day_index: int, workers: int) -> List[Tuple[int, int, int]]:
        n = len(self.population)
        size = max(1, math.ceil(n / (workers * CHUNKS_PER_WORKER)))
        return [(day_index, start, min(start + size, n)) for start in range(0, n, size)]

    def _day_chunks(self) -> Iterator[Tuple[int, List[ChunkResult]]]:
        workers = self.config.workers
        if workers <= 1:
            generator = UserDayGenerator(self.config, self.facility, self.population.profiles, self.seed)
            for day_index in range(self.config.days):
                yield day_index, [generator.generate_chunk(day_index, 0, len(self.population))]
            return

        logger.info(f"Generating with {workers} worker processes")
        with ProcessPoolExecutor(
            max_workers=workers,
            initializer=_init_worker,
            initargs=(self.config, self.facility, self.population.profiles, self.seed),
        ) as executor:
            for day_index in range(self.config.days):
                yield day_index, list(executor.map(_generate_chunk, self._tasks(day_index, workers)))

    def days(self) -> Iterator[Tuple[int, List[BadgeEvent]]]:
        """
        Merged events of each simulated day, in day order.

        Answer-key clone days and run statistics are updated as days are
        produced.
        """
        if self.population is None:
            self.setup()

        answer_key = self.population.answer_key
        for day_index, chunks in self._day_chunks():
            counts = DayCounts()
            streams: List[List[BadgeEvent]] = []
            for chunk in chunks:
                streams.extend(chunk.streams)
                counts.merge(chunk.counts)
                for uid in chunk.clone_users:
                    answer_key.record_clone_day(uid, day_index)

            events = self.merger.merge_all(streams)
            self.statistics.record_day(len(events), counts)
            logger.info(
                f"Day {day_index + 1}/{self.config.days}: {len(events)} events, "
                f"{counts.clone_injections} clone injections"
            )
            yield day_index, events

    def events(self) -> Iterator[BadgeEvent]:
        """The whole run as one non-decreasing stream."""
        for _day, events in self.days():
            for event in events:
                self.statistics.record_event(event)
                yield event

    def run(self, sink: "EventSink") -> SimulationStatistics:
        """Emit every event into ``sink`` and return the run statistics."""
        for event in self.events():
            sink.emit(event)
        self.statistics.log_summary()
        return self.statistics

    def clone_days(self) -> Dict[str, Tuple[int, ...]]:
        answer_key = self.population.answer_key
        return {e.user_id: e.clone_days for e in answer_key.entries() if e.clone_days}
