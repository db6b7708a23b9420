"""
Deterministic random-source partitioning.

Every independent piece of generation draws from its own numpy Generator
derived from the run seed plus a spawn key, so the output does not depend
on the order or the process in which the pieces are generated.
"""

from __future__ import annotations

import numpy as np

# Spawn-key domains
FACILITY_STREAM = 0
POPULATION_STREAM = 1
DAY_STREAM = 2

# Schedules within one user-day
PRIMARY_SCHEDULE = 0
CLONE_SCHEDULE = 1


def derive_rng(seed: int, *key: int) -> np.random.Generator:
    """Generator for ``key`` under run ``seed``; same inputs give the same draws."""
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=tuple(key)))


def day_rng(seed: int, user_index: int, day_index: int, schedule: int = PRIMARY_SCHEDULE) -> np.random.Generator:
    """Per-user, per-day sub-stream."""
    return derive_rng(seed, DAY_STREAM, user_index, day_index, schedule)
