"""
Facility Model - Locations, buildings and rooms.

The facility is a static three-level hierarchy built once per run and
shared read-only by every generation worker and detector. Each room
carries a latent RoomType, used only to bias generation, and an
AuthorizationRule deciding which users may badge into it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class Sensitivity(str, Enum):
    """How sensitive a room is to unauthorized entry."""
    PUBLIC = "public"
    STANDARD = "standard"
    RESTRICTED = "restricted"


class RoomClass(str, Enum):
    """Coarse room families the room classifier can infer from traffic."""
    LOBBY = "lobby"
    OFFICE = "office"
    MEETING_ROOM = "meeting_room"
    BREAK_ROOM = "break_room"
    CAFETERIA = "cafeteria"
    RESTRICTED = "restricted"
    UNKNOWN = "unknown"


class AuthorizationRule(str, Enum):
    """
    Default access policy of a room.

    OPEN rooms form the global common-area set. BUILDING and LOCATION
    rooms admit users whose primary building / home location matches.
    ROLE rooms need an explicit role grant at that location.
    """
    OPEN = "open"
    BUILDING = "building"
    LOCATION = "location"
    ROLE = "role"


class RoomType(str, Enum):
    """Generation-time semantic type of a room."""
    LOBBY = "lobby"
    OFFICE = "office"
    MEETING_ROOM = "meeting_room"
    BREAK_ROOM = "break_room"
    CAFETERIA = "cafeteria"
    SERVER_ROOM = "server_room"
    LABORATORY = "laboratory"

    @classmethod
    def drawable(cls) -> List["RoomType"]:
        """Types drawn by weight (every building gets exactly one lobby)."""
        return [t for t in cls if t is not cls.LOBBY]

    @property
    def sensitivity(self) -> Sensitivity:
        return _SENSITIVITY[self]

    @property
    def authorization(self) -> AuthorizationRule:
        return _AUTHORIZATION[self]

    @property
    def room_class(self) -> RoomClass:
        return _ROOM_CLASS[self]

    @property
    def required_role(self) -> Optional[str]:
        """Role granting access to ROLE rooms of this type, if any."""
        return _REQUIRED_ROLE.get(self)


_SENSITIVITY = {
    RoomType.LOBBY: Sensitivity.PUBLIC,
    RoomType.CAFETERIA: Sensitivity.PUBLIC,
    RoomType.BREAK_ROOM: Sensitivity.PUBLIC,
    RoomType.OFFICE: Sensitivity.STANDARD,
    RoomType.MEETING_ROOM: Sensitivity.STANDARD,
    RoomType.SERVER_ROOM: Sensitivity.RESTRICTED,
    RoomType.LABORATORY: Sensitivity.RESTRICTED,
}

_AUTHORIZATION = {
    RoomType.LOBBY: AuthorizationRule.OPEN,
    RoomType.CAFETERIA: AuthorizationRule.OPEN,
    RoomType.BREAK_ROOM: AuthorizationRule.BUILDING,
    RoomType.OFFICE: AuthorizationRule.BUILDING,
    RoomType.MEETING_ROOM: AuthorizationRule.LOCATION,
    RoomType.SERVER_ROOM: AuthorizationRule.ROLE,
    RoomType.LABORATORY: AuthorizationRule.ROLE,
}

_ROOM_CLASS = {
    RoomType.LOBBY: RoomClass.LOBBY,
    RoomType.OFFICE: RoomClass.OFFICE,
    RoomType.MEETING_ROOM: RoomClass.MEETING_ROOM,
    RoomType.BREAK_ROOM: RoomClass.BREAK_ROOM,
    RoomType.CAFETERIA: RoomClass.CAFETERIA,
    RoomType.SERVER_ROOM: RoomClass.RESTRICTED,
    RoomType.LABORATORY: RoomClass.RESTRICTED,
}

_REQUIRED_ROLE = {
    RoomType.SERVER_ROOM: "it",
    RoomType.LABORATORY: "research",
}


@dataclass(frozen=True)
class Room:
    """A badge-controlled room."""
    room_id: str
    building_id: str
    location_id: str
    room_type: RoomType
    name: str = ""

    @property
    def authorization(self) -> AuthorizationRule:
        return self.room_type.authorization

    @property
    def sensitivity(self) -> Sensitivity:
        return self.room_type.sensitivity

    def to_dict(self) -> Dict:
        return {
            "room_id": self.room_id,
            "building_id": self.building_id,
            "location_id": self.location_id,
            "room_type": self.room_type.value,
            "authorization": self.authorization.value,
            "name": self.name,
        }


@dataclass(frozen=True)
class Building:
    """A building and its rooms. Room 0 is always the lobby."""
    building_id: str
    location_id: str
    rooms: Tuple[Room, ...]
    name: str = ""

    @property
    def lobby(self) -> Room:
        return self.rooms[0]

    def rooms_of_type(self, *room_types: RoomType) -> List[Room]:
        return [r for r in self.rooms if r.room_type in room_types]


@dataclass(frozen=True)
class Location:
    """A geographic site holding one or more buildings."""
    location_id: str
    buildings: Tuple[Building, ...]
    name: str = ""


@dataclass
class FacilityModel:
    """
    Read-only location → building → room hierarchy with id lookups.

    Example:
        >>> facility = FacilityGenerator(config).generate(rng)
        >>> room = facility.room("room_001_01_003")
        >>> facility.building(room.building_id).location_id
        'loc_001'
    """
    locations: Tuple[Location, ...]
    _rooms: Dict[str, Room] = field(default_factory=dict, init=False, repr=False)
    _buildings: Dict[str, Building] = field(default_factory=dict, init=False, repr=False)
    _locations: Dict[str, Location] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for location in self.locations:
            self._locations[location.location_id] = location
            for building in location.buildings:
                self._buildings[building.building_id] = building
                for room in building.rooms:
                    self._rooms[room.room_id] = room

    # Lookups

    def room(self, room_id: str) -> Room:
        return self._rooms[room_id]

    def building(self, building_id: str) -> Building:
        return self._buildings[building_id]

    def location(self, location_id: str) -> Location:
        return self._locations[location_id]

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def has_building(self, building_id: str) -> bool:
        return building_id in self._buildings

    def has_location(self, location_id: str) -> bool:
        return location_id in self._locations

    def references_valid(self, room_id: str, building_id: str, location_id: str) -> bool:
        """True if the triple names an existing room in that building and location."""
        room = self._rooms.get(room_id)
        return (
            room is not None
            and room.building_id == building_id
            and room.location_id == location_id
        )

    @property
    def location_ids(self) -> List[str]:
        return [loc.location_id for loc in self.locations]

    def buildings_at(self, location_id: str) -> Tuple[Building, ...]:
        return self._locations[location_id].buildings

    def rooms_in_building(self, building_id: str) -> Tuple[Room, ...]:
        return self._buildings[building_id].rooms

    def all_buildings(self) -> Iterator[Building]:
        for location in self.locations:
            yield from location.buildings

    def all_rooms(self) -> Iterator[Room]:
        for building in self.all_buildings():
            yield from building.rooms

    def room_count(self) -> int:
        return len(self._rooms)

    def validate(self) -> List[str]:
        """
        Check hierarchy integrity.

        Returns:
            List of problems (empty when every room points at an existing
            building and every building at an existing location)
        """
        problems = []
        for building in self.all_buildings():
            if building.location_id not in self._locations:
                problems.append(f"{building.building_id} references unknown {building.location_id}")
            if not building.rooms or building.rooms[0].room_type is not RoomType.LOBBY:
                problems.append(f"{building.building_id} has no lobby")
            for room in building.rooms:
                if room.building_id != building.building_id or room.building_id not in self._buildings:
                    problems.append(f"{room.room_id} references unknown {room.building_id}")
                if room.location_id != building.location_id:
                    problems.append(f"{room.room_id} location differs from its building")
        return problems

    def summary(self) -> Dict[str, int]:
        return {
            "locations": len(self._locations),
            "buildings": len(self._buildings),
            "rooms": len(self._rooms),
        }

    # Serialization

    def to_dict(self) -> Dict:
        return {
            "locations": [
                {
                    "location_id": loc.location_id,
                    "name": loc.name,
                    "buildings": [
                        {
                            "building_id": b.building_id,
                            "name": b.name,
                            "rooms": [r.to_dict() for r in b.rooms],
                        }
                        for b in loc.buildings
                    ],
                }
                for loc in self.locations
            ]
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "FacilityModel":
        locations = []
        for loc in data["locations"]:
            buildings = []
            for b in loc["buildings"]:
                rooms = tuple(
                    Room(
                        room_id=r["room_id"],
                        building_id=b["building_id"],
                        location_id=loc["location_id"],
                        room_type=RoomType(r["room_type"]),
                        name=r.get("name", ""),
                    )
                    for r in b["rooms"]
                )
                buildings.append(Building(
                    building_id=b["building_id"],
                    location_id=loc["location_id"],
                    rooms=rooms,
                    name=b.get("name", ""),
                ))
            locations.append(Location(
                location_id=loc["location_id"],
                buildings=tuple(buildings),
                name=loc.get("name", ""),
            ))
        return cls(locations=tuple(locations))

    def __repr__(self) -> str:
        s = self.summary()
        return f"FacilityModel({s['locations']} locations, {s['buildings']} buildings, {s['rooms']} rooms)"
