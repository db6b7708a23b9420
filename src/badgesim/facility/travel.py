"""
Travel-time feasibility table.

Generation (schedule feasibility, cloned-badge injection) and analysis
(impossible-traveler detection) both answer "how long does it take at
least to get from here to there?" through this one lookup so that they
always agree on the constants.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, Mapping


class TravelScope(str, Enum):
    """Spatial relationship between two badge readers."""
    SAME_BUILDING = "same_building"
    SAME_LOCATION = "same_location"
    CROSS_LOCATION = "cross_location"


DEFAULT_INTER_LOCATION = timedelta(hours=4)
DEFAULT_INTER_BUILDING = timedelta(minutes=30)


@dataclass(frozen=True)
class TravelTimeTable:
    """
    Minimum feasible travel time per TravelScope.

    Example:
        >>> table = TravelTimeTable.default()
        >>> table.required("bldg_001_01", "loc_001", "bldg_002_01", "loc_002")
        datetime.timedelta(seconds=14400)
    """
    minimums: Mapping[TravelScope, timedelta]

    @classmethod
    def default(cls) -> "TravelTimeTable":
        return cls.from_constants(DEFAULT_INTER_BUILDING, DEFAULT_INTER_LOCATION)

    @classmethod
    def from_constants(
        cls,
        inter_building: timedelta,
        inter_location: timedelta,
    ) -> "TravelTimeTable":
        if inter_building > inter_location:
            raise ValueError("Inter-building travel cannot exceed inter-location travel")
        return cls(minimums={
            TravelScope.SAME_BUILDING: timedelta(0),
            TravelScope.SAME_LOCATION: inter_building,
            TravelScope.CROSS_LOCATION: inter_location,
        })

    @classmethod
    def from_config(cls, config) -> "TravelTimeTable":
        """Build from a SimulationConfig's travel constants."""
        return cls.from_constants(
            timedelta(minutes=config.inter_building_travel_minutes),
            timedelta(hours=config.inter_location_travel_hours),
        )

    @staticmethod
    def scope(
        from_building: str,
        from_location: str,
        to_building: str,
        to_location: str,
    ) -> TravelScope:
        if from_location != to_location:
            return TravelScope.CROSS_LOCATION
        if from_building != to_building:
            return TravelScope.SAME_LOCATION
        return TravelScope.SAME_BUILDING

    def required(
        self,
        from_building: str,
        from_location: str,
        to_building: str,
        to_location: str,
    ) -> timedelta:
        """Minimum time needed between badge events at the two places."""
        return self.minimums[self.scope(from_building, from_location, to_building, to_location)]

    def is_feasible(
        self,
        from_building: str,
        from_location: str,
        to_building: str,
        to_location: str,
        elapsed: timedelta,
    ) -> bool:
        return elapsed >= self.required(from_building, from_location, to_building, to_location)

    def to_dict(self) -> Dict[str, float]:
        """Minimum travel seconds keyed by scope name."""
        return {scope.value: value.total_seconds() for scope, value in self.minimums.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, float]) -> "TravelTimeTable":
        return cls.from_constants(
            timedelta(seconds=data[TravelScope.SAME_LOCATION.value]),
            timedelta(seconds=data[TravelScope.CROSS_LOCATION.value]),
        )
