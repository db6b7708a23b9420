"""
User profiles and the answer key.

Profiles are immutable once generated. The answer key records the ground
truth (variant, permissions, injected clone days) that detector output is
validated against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from badgesim.facility.model import AuthorizationRule, FacilityModel


class BehaviorVariant(str, Enum):
    """Closed set of behaviors selected once per user at generation time."""
    NORMAL = "normal"
    CURIOUS = "curious"
    CLONED_BADGE = "cloned"


def user_id(index: int) -> str:
    return f"user_{index + 1:06d}"


@dataclass(frozen=True)
class UserProfile:
    """A badge holder."""
    user_id: str
    index: int
    home_location: str
    primary_building: str
    desk_room: str
    authorized_rooms: FrozenSet[str]
    roles: FrozenSet[str] = frozenset()
    variant: BehaviorVariant = BehaviorVariant.NORMAL
    night_shift: bool = False

    def can_access(self, room_id: str) -> bool:
        return room_id in self.authorized_rooms

    @property
    def is_curious(self) -> bool:
        return self.variant is BehaviorVariant.CURIOUS

    @property
    def has_cloned_badge(self) -> bool:
        return self.variant is BehaviorVariant.CLONED_BADGE


def authorized_rooms_for(
    facility: FacilityModel,
    home_location: str,
    primary_building: str,
    roles: FrozenSet[str] = frozenset(),
) -> FrozenSet[str]:
    """
    Derive the authorized-room set from the rooms' AuthorizationRules.

    The set is: admitted rooms of the primary building, meeting rooms of
    the home location, role-granted rooms of the home location, and the
    global common areas (OPEN rooms everywhere).
    """
    allowed: Set[str] = set()
    for room in facility.all_rooms():
        rule = room.authorization
        if rule is AuthorizationRule.OPEN:
            allowed.add(room.room_id)
        elif room.location_id != home_location:
            continue
        elif rule is AuthorizationRule.LOCATION:
            allowed.add(room.room_id)
        elif rule is AuthorizationRule.BUILDING:
            if room.building_id == primary_building:
                allowed.add(room.room_id)
        elif rule is AuthorizationRule.ROLE:
            if room.room_type.required_role in roles:
                allowed.add(room.room_id)
    return frozenset(allowed)


@dataclass(frozen=True)
class AnswerKeyEntry:
    """Ground truth for one user."""
    user_id: str
    home_location: str
    primary_building: str
    authorized_rooms: FrozenSet[str]
    behavior_variant: BehaviorVariant
    clone_days: Tuple[int, ...] = ()
    night_shift: bool = False

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "home_location": self.home_location,
            "primary_building": self.primary_building,
            "authorized_rooms": sorted(self.authorized_rooms),
            "behavior_variant": self.behavior_variant.value,
            "clone_days": list(self.clone_days),
            "night_shift": self.night_shift,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AnswerKeyEntry":
        return cls(
            user_id=data["user_id"],
            home_location=data["home_location"],
            primary_building=data["primary_building"],
            authorized_rooms=frozenset(data.get("authorized_rooms", [])),
            behavior_variant=BehaviorVariant(data["behavior_variant"]),
            clone_days=tuple(data.get("clone_days", [])),
            night_shift=bool(data.get("night_shift", False)),
        )


@dataclass
class AnswerKey:
    """
    Answer key for a run.

    Profile data is fixed at population time; clone days are appended by
    the engine as cloned schedules are injected.
    """
    _profiles: Dict[str, UserProfile] = field(default_factory=dict)
    _clone_days: Dict[str, List[int]] = field(default_factory=dict)

    @classmethod
    def from_profiles(cls, profiles: List[UserProfile]) -> "AnswerKey":
        key = cls()
        for profile in profiles:
            key._profiles[profile.user_id] = profile
        return key

    def record_clone_day(self, user_id: str, day_index: int) -> None:
        days = self._clone_days.setdefault(user_id, [])
        if day_index not in days:
            days.append(day_index)

    def clone_days(self, user_id: str) -> Tuple[int, ...]:
        return tuple(sorted(self._clone_days.get(user_id, ())))

    def entry(self, user_id: str) -> Optional[AnswerKeyEntry]:
        profile = self._profiles.get(user_id)
        if profile is None:
            return None
        return AnswerKeyEntry(
            user_id=profile.user_id,
            home_location=profile.home_location,
            primary_building=profile.primary_building,
            authorized_rooms=profile.authorized_rooms,
            behavior_variant=profile.variant,
            clone_days=self.clone_days(profile.user_id),
            night_shift=profile.night_shift,
        )

    def entries(self) -> Iterator[AnswerKeyEntry]:
        for uid in self._profiles:
            yield self.entry(uid)

    def users_with_variant(self, variant: BehaviorVariant) -> List[str]:
        return [uid for uid, p in self._profiles.items() if p.variant is variant]

    def __len__(self) -> int:
        return len(self._profiles)
