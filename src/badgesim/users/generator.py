"""
User Profile Generator - Build the badge-holder population.

Each user gets a home location, a primary building, a desk, role grants
and an authorized-room set derived from the facility's authorization
rules, plus a behavior variant and a day or night shift. The answer key
is built in the same pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List
import logging

import numpy as np

from badgesim.facility.model import FacilityModel, RoomType
from badgesim.users.profile import (
    AnswerKey,
    BehaviorVariant,
    UserProfile,
    authorized_rooms_for,
    user_id,
)

if TYPE_CHECKING:
    from badgesim.config import SimulationConfig

logger = logging.getLogger(__name__)


@dataclass
class UserPopulation:
    """Generated profiles plus their answer key."""
    profiles: List[UserProfile]
    answer_key: AnswerKey

    def __len__(self) -> int:
        return len(self.profiles)

    def __iter__(self):
        return iter(self.profiles)

    def by_id(self) -> Dict[str, UserProfile]:
        return {p.user_id: p for p in self.profiles}

    def night_shift_count(self) -> int:
        return sum(1 for p in self.profiles if p.night_shift)

    def variant_counts(self) -> Dict[str, int]:
        counts = {v.value: 0 for v in BehaviorVariant}
        for profile in self.profiles:
            counts[profile.variant.value] += 1
        return counts


class UserProfileGenerator:
    """
    Generate the user population for a facility.

    Variants are exclusive. Both Bernoulli draws are always made so the
    random stream does not depend on the outcome; a user hitting both is
    a cloned badge.

    Example:
        >>> generator = UserProfileGenerator(config, facility)
        >>> population = generator.generate(derive_rng(seed, POPULATION_STREAM))
        >>> population.variant_counts()
        {'normal': 9491, 'curious': 498, 'cloned': 11}
    """

    def __init__(self, config: "SimulationConfig", facility: FacilityModel):
        self.config = config
        self.facility = facility
        self._location_ids = facility.location_ids
        self._location_p = self._location_weights()
        self._roles = sorted(config.role_grant_probabilities)
        self._cloned_allowed = len(self._location_ids) >= 2

    def _location_weights(self) -> np.ndarray:
        weights = self.config.location_population_weights
        if weights is None:
            return np.full(len(self._location_ids), 1.0 / len(self._location_ids))
        p = np.array(weights, dtype=float)
        return p / p.sum()

    def generate(self, rng: np.random.Generator) -> UserPopulation:
        """
        Generate ``config.user_count`` profiles.

        Args:
            rng: Seeded generator dedicated to the population

        Returns:
            UserPopulation with profiles in index order
        """
        if not self._cloned_allowed and self.config.cloned_badge_percentage > 0:
            logger.warning(
                "Cloned badges need at least 2 locations; "
                "cloned_badge_percentage is ignored for this run"
            )

        profiles = [self._generate_user(rng, i) for i in range(self.config.user_count)]
        population = UserPopulation(profiles=profiles, answer_key=AnswerKey.from_profiles(profiles))
        logger.info(
            f"Generated {len(profiles)} users: {population.variant_counts()}, "
            f"{population.night_shift_count()} on night shift"
        )
        return population

    def _generate_user(self, rng: np.random.Generator, index: int) -> UserProfile:
        home = self._location_ids[int(rng.choice(len(self._location_ids), p=self._location_p))]
        buildings = self.facility.buildings_at(home)
        building = buildings[int(rng.integers(len(buildings)))]

        offices = building.rooms_of_type(RoomType.OFFICE)
        if offices:
            desk = offices[int(rng.integers(len(offices)))]
        else:
            desk = building.lobby

        roles = frozenset(
            role for role in self._roles
            if rng.random() < self.config.role_grant_probabilities[role]
        )

        cloned_hit = rng.random() < self.config.cloned_badge_percentage
        curious_hit = rng.random() < self.config.curious_user_percentage
        night_shift = rng.random() < self.config.night_shift_percentage
        if cloned_hit and self._cloned_allowed:
            variant = BehaviorVariant.CLONED_BADGE
        elif curious_hit:
            variant = BehaviorVariant.CURIOUS
        else:
            variant = BehaviorVariant.NORMAL

        authorized = authorized_rooms_for(self.facility, home, building.building_id, roles)
        return UserProfile(
            user_id=user_id(index),
            index=index,
            home_location=home,
            primary_building=building.building_id,
            desk_room=desk.room_id,
            authorized_rooms=authorized | {desk.room_id},
            roles=roles,
            variant=variant,
            night_shift=night_shift,
        )
