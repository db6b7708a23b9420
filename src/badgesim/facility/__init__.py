"""
Badge Simulator Facility Module

Static topology shared by generation and analysis.

Key components:
- FacilityModel: Location → building → room hierarchy with lookups
- FacilityGenerator: Seeded construction from configuration
- TravelTimeTable: Minimum travel times shared by generator and detectors
"""

from badgesim.facility.model import (
    AuthorizationRule,
    Building,
    FacilityModel,
    Location,
    Room,
    RoomClass,
    RoomType,
    Sensitivity,
)
from badgesim.facility.generator import FacilityGenerator
from badgesim.facility.travel import TravelScope, TravelTimeTable

__all__ = [
    "AuthorizationRule",
    "Building",
    "FacilityModel",
    "Location",
    "Room",
    "RoomClass",
    "RoomType",
    "Sensitivity",
    "FacilityGenerator",
    "TravelScope",
    "TravelTimeTable",
]
