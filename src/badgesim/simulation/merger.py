"""
Stream Merger - Stable k-way merge of per-user sub-streams.

Each sub-stream is already in timestamp order. The merged stream is
ordered by (timestamp, user_id, sub-stream order, position), so ties are
broken the same way on every run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Sequence, Tuple
import heapq
import logging

from badgesim.simulation.events import BadgeEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _EventStream:
    """A time-ordered sub-stream and its place in generation order."""
    order: int
    events: Sequence[BadgeEvent]

    def is_sorted(self) -> bool:
        return all(a.timestamp <= b.timestamp for a, b in zip(self.events, self.events[1:]))

    def keyed(self) -> Iterator[Tuple[tuple, BadgeEvent]]:
        for position, event in enumerate(self.events):
            yield (event.timestamp, event.user_id, self.order, position), event


class StreamMerger:
    """
    Merge sorted sub-streams into one non-decreasing stream.

    Example:
        >>> merger = StreamMerger()
        >>> merged = list(merger.merge([alice_events, bob_events]))
        >>> all(a.timestamp <= b.timestamp for a, b in zip(merged, merged[1:]))
        True
    """

    def __init__(self, validate: bool = True):
        self.validate = validate

    def merge(self, sub_streams: Iterable[Sequence[BadgeEvent]]) -> Iterator[BadgeEvent]:
        """
        Lazily merge sub-streams.

        Args:
            sub_streams: Timestamp-ordered event sequences, in generation order

        Returns:
            Iterator over the merged events

        Raises:
            ValueError: If a sub-stream is not in timestamp order
        """
        streams = self._streams(sub_streams)
        merged = heapq.merge(*(s.keyed() for s in streams), key=lambda item: item[0])
        return (event for _key, event in merged)

    def merge_all(self, sub_streams: Iterable[Sequence[BadgeEvent]]) -> List[BadgeEvent]:
        return list(self.merge(sub_streams))

    def _streams(self, sub_streams: Iterable[Sequence[BadgeEvent]]) -> List[_EventStream]:
        streams = [_EventStream(order=i, events=events) for i, events in enumerate(sub_streams)]
        if self.validate:
            for stream in streams:
                if not stream.is_sorted():
                    raise ValueError(f"Sub-stream {stream.order} is not in timestamp order")
        return streams
