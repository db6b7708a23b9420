"""
Badge Simulator Users Module

Key components:
- UserProfile: Immutable badge holder with authorized-room set
- UserProfileGenerator: Seeded population generation
- AnswerKey: Ground truth for detector validation
"""

from badgesim.users.profile import (
    AnswerKey,
    AnswerKeyEntry,
    BehaviorVariant,
    UserProfile,
    authorized_rooms_for,
)
from badgesim.users.generator import UserPopulation, UserProfileGenerator

__all__ = [
    "AnswerKey",
    "AnswerKeyEntry",
    "BehaviorVariant",
    "UserProfile",
    "authorized_rooms_for",
    "UserPopulation",
    "UserProfileGenerator",
]
