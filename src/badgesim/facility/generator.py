"""
Facility Generator - Build the location → building → room hierarchy.

Building and room counts are drawn from the configured ranges and room
types by weighted draw, all from a seeded numpy Generator so a given seed
always yields the same facility.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Tuple
import logging

import numpy as np

from badgesim.facility.model import Building, FacilityModel, Location, Room, RoomType

if TYPE_CHECKING:
    from badgesim.config import SimulationConfig

logger = logging.getLogger(__name__)


CITY_NAMES = [
    "Seattle", "Portland", "San Francisco", "Los Angeles", "Denver",
    "Chicago", "Austin", "Dallas", "Atlanta", "Miami",
    "Boston", "New York", "Toronto", "Vancouver", "London",
    "Paris", "Berlin", "Amsterdam", "Stockholm", "Dublin",
    "Madrid", "Zurich", "Tokyo", "Seoul", "Singapore",
    "Sydney", "Bangalore", "Tel Aviv", "Mexico City", "Cape Town",
]

ROOM_NAME_PREFIX = {
    RoomType.LOBBY: "Main Lobby",
    RoomType.OFFICE: "Workspace",
    RoomType.MEETING_ROOM: "Conference Room",
    RoomType.BREAK_ROOM: "Break Room",
    RoomType.CAFETERIA: "Cafeteria",
    RoomType.SERVER_ROOM: "Server Room",
    RoomType.LABORATORY: "Lab",
}


def location_id(location_index: int) -> str:
    return f"loc_{location_index + 1:03d}"


def building_id(location_index: int, building_index: int) -> str:
    return f"bldg_{location_index + 1:03d}_{building_index + 1:02d}"


def room_id(location_index: int, building_index: int, room_index: int) -> str:
    return f"room_{location_index + 1:03d}_{building_index + 1:02d}_{room_index + 1:03d}"


class FacilityGenerator:
    """
    Generate a FacilityModel from configuration.

    Example:
        >>> generator = FacilityGenerator(config)
        >>> facility = generator.generate(derive_rng(seed, FACILITY_STREAM))
        >>> facility.summary()
        {'locations': 5, 'buildings': 24, 'rooms': 712}
    """

    def __init__(self, config: "SimulationConfig"):
        self.config = config
        self._room_types, self._room_weights = self._normalize_weights(config.room_type_weights)

    @staticmethod
    def _normalize_weights(weights: Dict[str, float]) -> Tuple[List[RoomType], np.ndarray]:
        types = [RoomType(name) for name in sorted(weights) if weights[name] > 0]
        if not types:
            # Everything weighted zero: fall back to offices only
            return [RoomType.OFFICE], np.array([1.0])
        p = np.array([weights[t.value] for t in types], dtype=float)
        return types, p / p.sum()

    def generate(self, rng: np.random.Generator) -> FacilityModel:
        """
        Build the whole hierarchy.

        Args:
            rng: Seeded generator dedicated to facility construction

        Returns:
            Immutable FacilityModel
        """
        min_b, max_b = self.config.buildings_per_location()
        locations = []
        for loc_index in range(self.config.location_count):
            n_buildings = int(rng.integers(min_b, max_b, endpoint=True))
            buildings = tuple(
                self._generate_building(rng, loc_index, b_index)
                for b_index in range(n_buildings)
            )
            locations.append(Location(
                location_id=location_id(loc_index),
                buildings=buildings,
                name=self._location_name(loc_index),
            ))

        facility = FacilityModel(locations=tuple(locations))
        logger.info(f"Generated {facility!r}")
        return facility

    def _generate_building(
        self,
        rng: np.random.Generator,
        loc_index: int,
        b_index: int,
    ) -> Building:
        min_r, max_r = self.config.rooms_per_building()
        n_rooms = int(rng.integers(min_r, max_r, endpoint=True))

        # Lobby first (required for building access), then a guaranteed office
        types = [RoomType.LOBBY]
        if n_rooms >= 2:
            types.append(RoomType.OFFICE)
        remaining = n_rooms - len(types)
        if remaining > 0:
            draws = rng.choice(len(self._room_types), size=remaining, p=self._room_weights)
            types.extend(self._room_types[int(i)] for i in draws)

        b_id = building_id(loc_index, b_index)
        l_id = location_id(loc_index)
        counters: Dict[RoomType, int] = {}
        rooms = []
        for r_index, room_type in enumerate(types):
            counters[room_type] = counters.get(room_type, 0) + 1
            name = ROOM_NAME_PREFIX[room_type]
            if room_type is not RoomType.LOBBY:
                name = f"{name} {counters[room_type]}"
            rooms.append(Room(
                room_id=room_id(loc_index, b_index, r_index),
                building_id=b_id,
                location_id=l_id,
                room_type=room_type,
                name=name,
            ))

        return Building(
            building_id=b_id,
            location_id=l_id,
            rooms=tuple(rooms),
            name=f"Building {b_index + 1}",
        )

    @staticmethod
    def _location_name(index: int) -> str:
        if index < len(CITY_NAMES):
            return f"{CITY_NAMES[index]} Office"
        return f"Location {index + 1}"
