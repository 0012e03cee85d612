import hashlib
import random
import secrets
from typing import Protocol

from .environment import TxContext


class RandomGenerator(Protocol):
    def draw_uniform(self, low: int, high: int) -> int:
        """Uniform integer in the half-open range [low, high)."""
        ...


class RandomnessSource(Protocol):
    def new_generator(self, ctx: TxContext) -> RandomGenerator: ...


def _check_range(low: int, high: int) -> None:
    if high <= low:
        raise ValueError(f"Empty range [{low}, {high})")


class _SystemGenerator:
    def draw_uniform(self, low: int, high: int) -> int:
        _check_range(low, high)
        return low + secrets.randbelow(high - low)


class SystemRandomness:
    """OS entropy. Nothing about a draw can be derived before it happens."""

    def new_generator(self, ctx: TxContext) -> RandomGenerator:
        return _SystemGenerator()


class _SeededGenerator:
    def __init__(self, seed: bytes):
        self._rng = random.Random(seed)

    def draw_uniform(self, low: int, high: int) -> int:
        _check_range(low, high)
        return self._rng.randrange(low, high)


class SeededRandomness:
    """Reproducible draws keyed on (seed, transaction digest).

    Each transaction gets its own generator, so replaying one call does not
    replay another. Meant for simulations and tests, not for live payouts.
    """

    def __init__(self, seed: int = 0):
        self.seed = seed

    def new_generator(self, ctx: TxContext) -> RandomGenerator:
        material = self.seed.to_bytes(16, "big", signed=True) + ctx.digest
        return _SeededGenerator(hashlib.sha256(material).digest())


# Seeded draws are predictable; only these environments may use them.
SEEDED_ENVIRONMENTS = ("dev", "test")


def randomness_from_settings(mode: str, seed: int = 0, environment: str = "dev") -> RandomnessSource:
    if mode == "system":
        return SystemRandomness()
    if mode == "seeded":
        if environment not in SEEDED_ENVIRONMENTS:
            raise ValueError(f"Seeded randomness is not allowed in the {environment!r} environment")
        return SeededRandomness(seed)
    raise ValueError(f"Unknown randomness mode: {mode}")
