from __future__ import annotations

import math
import random
import time
from typing import Optional

MULTIPLIER = 9301
INCREMENT = 49297
MODULUS = 233280


class SeededRandom:
    """
    Linear congruential generator shared by every peer in a synchronized race.

    Two instances built from the same seed return the same values for the same
    sequence of calls, so all stochastic call sites must draw from one stream
    in a fixed order.
    """

    def __init__(self, seed: Optional[int] = None):
        if seed is None:
            seed = int(time.time() * 1000)
        self.initial_seed = int(seed)
        self.seed = int(seed)

    def next(self) -> float:
        self.seed = (self.seed * MULTIPLIER + INCREMENT) % MODULUS
        return self.seed / MODULUS

    def next_float(self, min_value: float, max_value: float) -> float:
        return min_value + (max_value - min_value) * self.next()

    def next_int(self, min_value: int, max_value: int) -> int:
        """Inclusive on both bounds."""
        return math.floor(self.next_float(min_value, max_value + 1))

    def __repr__(self) -> str:
        return f"SeededRandom(initial_seed={self.initial_seed}, seed={self.seed})"


class UnseededRandom:
    """Same interface as SeededRandom, backed by the stdlib Mersenne Twister."""

    def __init__(self, source: Optional[random.Random] = None):
        self._source = source or random.Random()

    def next(self) -> float:
        return self._source.random()

    def next_float(self, min_value: float, max_value: float) -> float:
        return min_value + (max_value - min_value) * self.next()

    def next_int(self, min_value: int, max_value: int) -> int:
        return math.floor(self.next_float(min_value, max_value + 1))


_OFFLINE_RNG = UnseededRandom()


def resolve_rng(rng=None):
    """Return ``rng`` or the shared offline source when none is supplied."""
    return rng if rng is not None else _OFFLINE_RNG
