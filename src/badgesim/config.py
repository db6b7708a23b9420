"""
Badge Simulator Configuration Management

Centralized, immutable configuration for a simulation run. Values come
from (lowest to highest priority) the built-in defaults, an optional JSON
configuration file, and command line overrides.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple
import json
import logging
import secrets

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


# Default start of the simulated calendar (a Monday)
DEFAULT_START_DATE = date(2025, 1, 6)

DEFAULT_ROOM_TYPE_WEIGHTS: Dict[str, float] = {
    "office": 0.45,
    "meeting_room": 0.20,
    "break_room": 0.18,
    "cafeteria": 0.07,
    "server_room": 0.05,
    "laboratory": 0.05,
}

DEFAULT_ROLE_GRANT_PROBABILITIES: Dict[str, float] = {
    "it": 0.05,
    "research": 0.03,
}

AFFINITY_TOLERANCE = 0.01


class ConfigError(Exception):
    """Configuration file could not be found, read or parsed."""


class ConfigValidationError(ValueError):
    """Configuration values are out of range or inconsistent."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


class OutputFieldConfig(BaseModel):
    """Optional fields added to each emitted event record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_event_type: bool = False
    include_failure_reason: bool = False
    include_all: bool = False

    def extra_fields(self) -> List[str]:
        """Names of the optional fields to emit, in output order."""
        fields = []
        if self.include_event_type or self.include_all:
            fields.append("event_type")
        if self.include_failure_reason or self.include_all:
            fields.append("failure_reason")
        return fields


class SimulationConfig(BaseModel):
    """Main configuration for a badge simulation run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Population and facility
    user_count: int = Field(default=10_000, gt=0)
    location_count: int = Field(default=5, gt=0)
    min_buildings_per_location: int = Field(default=4, gt=0)
    max_buildings_per_location: int = Field(default=6, gt=0)
    min_rooms_per_building: int = Field(default=10, gt=0)
    max_rooms_per_building: int = Field(default=50, gt=0)
    location_population_weights: Optional[List[float]] = None
    room_type_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ROOM_TYPE_WEIGHTS)
    )
    role_grant_probabilities: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_GRANT_PROBABILITIES)
    )

    # Behavior variants
    curious_user_percentage: float = Field(default=0.05, ge=0.0, le=1.0)
    cloned_badge_percentage: float = Field(default=0.001, ge=0.0, le=1.0)
    curious_attempt_rate: float = Field(default=3.0, ge=0.0)   # Poisson mean per day
    cloned_badge_day_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    incidental_denial_rate: float = Field(default=0.002, ge=0.0, le=1.0)

    # Location affinity (must sum to 1)
    primary_building_affinity: float = Field(default=0.85, ge=0.0, le=1.0)
    same_location_travel: float = Field(default=0.10, ge=0.0, le=1.0)
    different_location_travel: float = Field(default=0.05, ge=0.0, le=1.0)

    # Travel-time feasibility
    inter_location_travel_hours: float = Field(default=4.0, gt=0.0)
    inter_building_travel_minutes: float = Field(default=30.0, ge=0.0)

    # Daily rhythm, hours of day
    arrival_window: Tuple[float, float] = (8.0, 10.0)
    departure_window: Tuple[float, float] = (16.0, 18.0)
    lunch_window: Tuple[float, float] = (11.5, 13.5)
    meetings_per_day: Tuple[int, int] = (1, 4)
    breaks_per_day: Tuple[int, int] = (2, 3)

    # Night shift, hours of the same calendar day
    night_shift_percentage: float = Field(default=0.0, ge=0.0, le=1.0)
    night_arrival_window: Tuple[float, float] = (18.0, 20.0)
    night_departure_window: Tuple[float, float] = (23.0, 23.75)
    night_lunch_window: Tuple[float, float] = (21.0, 22.0)

    # Run shape
    days: int = Field(default=1, gt=0)
    start_date: date = DEFAULT_START_DATE
    seed: Optional[int] = Field(default=None, ge=0)
    workers: int = Field(default=1, ge=1)

    # Output
    output_format: Literal["json", "csv"] = "json"
    output_fields: OutputFieldConfig = Field(default_factory=OutputFieldConfig)
    user_profiles_output: Optional[str] = None
    streaming: bool = False
    time_acceleration_factor: float = Field(default=60.0, gt=0.0)
    max_emit_delay_seconds: float = Field(default=5.0, ge=0.0)
    batch_size: int = Field(default=1000, gt=0)

    @model_validator(mode="after")
    def _check_consistency(self) -> "SimulationConfig":
        problems = []

        if self.min_buildings_per_location > self.max_buildings_per_location:
            problems.append(
                f"Invalid building range: min ({self.min_buildings_per_location}) "
                f"must be <= max ({self.max_buildings_per_location})"
            )
        if self.min_rooms_per_building > self.max_rooms_per_building:
            problems.append(
                f"Invalid room range: min ({self.min_rooms_per_building}) "
                f"must be <= max ({self.max_rooms_per_building})"
            )

        affinity_sum = (
            self.primary_building_affinity
            + self.same_location_travel
            + self.different_location_travel
        )
        if abs(affinity_sum - 1.0) > AFFINITY_TOLERANCE:
            problems.append(f"Affinity values must sum to 1.0, got {affinity_sum:.4f}")

        problems.extend(self._check_shift(""))
        if self.night_shift_percentage > 0:
            problems.extend(self._check_shift("night_"))

        for name in ("meetings_per_day", "breaks_per_day"):
            low, high = getattr(self, name)
            if low < 0 or low > high:
                problems.append(f"Invalid {name}: ({low}, {high})")

        if self.location_population_weights is not None:
            weights = self.location_population_weights
            if len(weights) != self.location_count:
                problems.append(
                    f"location_population_weights has {len(weights)} entries, "
                    f"expected {self.location_count}"
                )
            elif any(w < 0 for w in weights) or sum(weights) <= 0:
                problems.append("location_population_weights must be non-negative with a positive sum")

        problems.extend(_check_room_type_weights(self.room_type_weights))

        for role, probability in self.role_grant_probabilities.items():
            if not 0.0 <= probability <= 1.0:
                problems.append(f"Invalid grant probability for role {role}: {probability}")

        if problems:
            raise ValueError("; ".join(problems))
        return self

    def _check_shift(self, prefix: str) -> List[str]:
        problems = []
        names = [f"{prefix}{part}_window" for part in ("arrival", "departure", "lunch")]
        for name in names:
            start, end = getattr(self, name)
            if not 0.0 <= start < end <= 24.0:
                problems.append(f"Invalid {name}: ({start}, {end})")
        arrival, departure, _ = (getattr(self, name) for name in names)
        if arrival[1] >= departure[0]:
            problems.append(f"{names[0]} must end before {names[1]} starts")
        overnight = 24.0 - departure[1] + arrival[0]
        if overnight < self.inter_location_travel_hours:
            label = "Night shift overnight gap" if prefix else "Overnight gap"
            problems.append(
                f"{label} ({overnight:.1f}h) is shorter than "
                f"inter_location_travel_hours ({self.inter_location_travel_hours}h)"
            )
        return problems

    @classmethod
    def create(cls, **values: Any) -> "SimulationConfig":
        """
        Build a validated config.

        Raises:
            ConfigValidationError: If any value is out of range or inconsistent
        """
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigValidationError(_format_errors(e)) from e

    def replace(self, **changes: Any) -> "SimulationConfig":
        """Return a validated copy with the given fields changed."""
        values = self.model_dump()
        values.update(changes)
        return SimulationConfig.create(**values)

    def resolved_seed(self) -> int:
        """The configured seed, or a fresh run-specific one."""
        if self.seed is not None:
            return self.seed
        return secrets.randbits(32)

    def buildings_per_location(self) -> Tuple[int, int]:
        return (self.min_buildings_per_location, self.max_buildings_per_location)

    def rooms_per_building(self) -> Tuple[int, int]:
        return (self.min_rooms_per_building, self.max_rooms_per_building)

    def affinity(self) -> Tuple[float, float, float]:
        """(primary building, same location, different location) probabilities."""
        return (
            self.primary_building_affinity,
            self.same_location_travel,
            self.different_location_travel,
        )

    def shift_windows(self, night_shift: bool = False) -> Tuple[Tuple[float, float], ...]:
        """(arrival, departure, lunch) windows of the day or the night shift."""
        if night_shift:
            return (self.night_arrival_window, self.night_departure_window, self.night_lunch_window)
        return (self.arrival_window, self.departure_window, self.lunch_window)

    def to_json(self) -> str:
        """Pretty JSON, suitable as a configuration file template."""
        return self.model_dump_json(indent=2)


def _check_room_type_weights(weights: Mapping[str, float]) -> List[str]:
    from badgesim.facility.model import RoomType

    problems = []
    drawable = {t.value for t in RoomType.drawable()}
    for name, weight in weights.items():
        if name not in drawable:
            problems.append(f"Unknown room type in room_type_weights: {name}")
        elif weight < 0:
            problems.append(f"Negative weight for room type {name}: {weight}")
    if weights and sum(weights.values()) <= 0:
        problems.append("room_type_weights must have a positive sum")
    return problems


def _format_errors(error: ValidationError) -> List[str]:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        problems.append(f"{location}: {message}" if location else message)
    return problems


def read_config_file(path: str | Path) -> Dict[str, Any]:
    """
    Read a JSON configuration file into a dict of overrides.

    Raises:
        ConfigError: If the file is missing, unreadable, not JSON or not an object
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    if path.suffix.lower() != ".json":
        raise ConfigError(
            f"Unsupported configuration file format: {path.suffix or 'no extension'} (supported: .json)"
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse JSON configuration: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a JSON object")
    return data


def load_config(
    path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> SimulationConfig:
    """
    Load configuration from defaults, an optional file and overrides.

    Overrides whose value is None are treated as "not given".

    Args:
        path: Optional JSON configuration file
        overrides: Values that take precedence over the file

    Returns:
        Validated SimulationConfig

    Raises:
        ConfigError: If the file cannot be loaded
        ConfigValidationError: If the merged values are invalid
    """
    values: Dict[str, Any] = {}
    if path is not None:
        values.update(read_config_file(path))
        logger.info(f"Loaded configuration file {path}")

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    return SimulationConfig.create(**values)
