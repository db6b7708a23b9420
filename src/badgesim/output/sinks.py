"""
Output Sinks - Batch or paced delivery of the merged event stream.

Two modes behind one interface:
1. Buffered: write as fast as possible through a bounded buffer
2. Paced: sleep between records so that simulated time advances at
   ``acceleration_factor`` times wall-clock speed

Pacing never changes event timestamps.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import IO, TYPE_CHECKING, Callable, List, Optional
import logging
import time

from badgesim.output.writers import EventWriter, create_writer
from badgesim.simulation.events import BadgeEvent

if TYPE_CHECKING:
    from badgesim.config import SimulationConfig

logger = logging.getLogger(__name__)


class EventSink(ABC):
    """Abstract base class for event sinks."""

    def __init__(self, writer: EventWriter):
        self.writer = writer
        self.emitted = 0
        self._closed = False

    @abstractmethod
    def emit(self, event: BadgeEvent) -> None:
        """Accept the next event of the stream."""
        pass

    @abstractmethod
    def flush(self) -> None:
        """Push anything buffered to the underlying stream."""
        pass

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True
        logger.debug(f"{type(self).__name__} closed after {self.emitted} events")

    def __enter__(self) -> "EventSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class BufferedSink(EventSink):
    """
    Batch mode: events are buffered and written in blocks.

    Example:
        >>> with BufferedSink(JsonLinesWriter(sys.stdout), capacity=1000) as sink:
        ...     engine.run(sink)
    """

    def __init__(self, writer: EventWriter, capacity: int = 1000):
        super().__init__(writer)
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._buffer: List[BadgeEvent] = []

    def emit(self, event: BadgeEvent) -> None:
        self._buffer.append(event)
        self.emitted += 1
        if len(self._buffer) >= self.capacity:
            self.flush()

    def flush(self) -> None:
        if self._buffer:
            self.writer.write_many(self._buffer)
            self._buffer.clear()
        self.writer.flush()


class PacedSink(EventSink):
    """
    Streaming mode: one record at a time, paced by simulated time.

    The wait before a record is the simulated gap to the previous record
    divided by ``acceleration_factor``, capped at ``max_delay`` seconds
    so overnight gaps do not stall the stream.
    """

    def __init__(
        self,
        writer: EventWriter,
        acceleration_factor: float = 60.0,
        max_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(writer)
        if acceleration_factor <= 0:
            raise ValueError("acceleration_factor must be positive")
        self.acceleration_factor = acceleration_factor
        self.max_delay = max_delay
        self._sleep = sleep
        self._last: Optional[datetime] = None
        self.total_delay = 0.0

    def delay_for(self, event: BadgeEvent) -> float:
        if self._last is None:
            return 0.0
        gap = (event.timestamp - self._last).total_seconds()
        return min(max(gap, 0.0) / self.acceleration_factor, self.max_delay)

    def emit(self, event: BadgeEvent) -> None:
        delay = self.delay_for(event)
        if delay > 0:
            self._sleep(delay)
            self.total_delay += delay
        self.writer.write(event)
        self.writer.flush()
        self._last = event.timestamp
        self.emitted += 1

    def flush(self) -> None:
        self.writer.flush()


def create_sink(
    config: "SimulationConfig",
    stream: IO[str],
    sleep: Callable[[float], None] = time.sleep,
) -> EventSink:
    """Build the writer and sink selected by the configuration."""
    writer = create_writer(config.output_format, stream, config.output_fields.extra_fields())
    if config.streaming:
        logger.info(
            f"Streaming at {config.time_acceleration_factor}x "
            f"(max {config.max_emit_delay_seconds}s between events)"
        )
        return PacedSink(
            writer,
            acceleration_factor=config.time_acceleration_factor,
            max_delay=config.max_emit_delay_seconds,
            sleep=sleep,
        )
    return BufferedSink(writer, capacity=config.batch_size)
