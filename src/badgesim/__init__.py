"""
Badge Access Simulator

Synthetic, time-ordered physical-access badge events for a multi-site
organization, with injected anomalies (cloned badges, curious users) and
detectors that recover them from the stream.

Key components:
- config: Immutable, validated run configuration
- facility: Locations, buildings, rooms and travel times
- users: Badge holders, permissions and the answer key
- simulation: Day scheduling, behavior variants, stream merging
- output: Event writers and batch/paced sinks
- analysis: Impossible-traveler, curious-user and room-class detectors
"""

__version__ = "0.3.0"

from badgesim.config import (
    ConfigError,
    ConfigValidationError,
    OutputFieldConfig,
    SimulationConfig,
    load_config,
)
from badgesim.facility import FacilityGenerator, FacilityModel, TravelTimeTable
from badgesim.users import AnswerKey, BehaviorVariant, UserProfile, UserProfileGenerator
from badgesim.simulation import BadgeEvent, SimulationEngine, StreamMerger

__all__ = [
    "__version__",
    "ConfigError",
    "ConfigValidationError",
    "OutputFieldConfig",
    "SimulationConfig",
    "load_config",
    "FacilityGenerator",
    "FacilityModel",
    "TravelTimeTable",
    "AnswerKey",
    "BehaviorVariant",
    "UserProfile",
    "UserProfileGenerator",
    "BadgeEvent",
    "SimulationEngine",
    "StreamMerger",
]
