"""Random sources for the engine.

Runs use an explicit ``RandomSource`` handle. Effect hooks have no rng parameter, so
they read the process-wide source through ``current()``; a seeded run installs its
generator there and the orchestrator resets it when the run ends.
"""

from __future__ import annotations

import hashlib
import math
import random
from contextlib import contextmanager
from typing import Iterator, Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    def random(self) -> float: ...


class Lcg:
    MULTIPLIER = 1664525
    INCREMENT = 1013904223
    MODULUS = 2**32

    def __init__(self, seed: int) -> None:
        self._state = seed % self.MODULUS

    @property
    def state(self) -> int:
        return self._state

    def random(self) -> float:
        self._state = (self._state * self.MULTIPLIER + self.INCREMENT) % self.MODULUS
        return self._state / self.MODULUS


class SystemSource:
    """Non-deterministic default source."""

    def __init__(self) -> None:
        self._rng = random.Random()

    def random(self) -> float:
        return self._rng.random()


def seed_value(seed: int | str) -> int:
    if isinstance(seed, int):
        return seed
    text = seed.strip()
    try:
        return int(text)
    except ValueError:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "big")


def shuffle(items: Sequence[T], rng: RandomSource) -> list[T]:
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = math.floor(rng.random() * (i + 1))
        out[i], out[j] = out[j], out[i]
    return out


def choice(items: Sequence[T], rng: RandomSource) -> T:
    if not items:
        raise IndexError("choice from empty sequence")
    return items[math.floor(rng.random() * len(items))]


def randint(low: int, high: int, rng: RandomSource) -> int:
    """Inclusive on both ends."""
    return low + math.floor(rng.random() * (high - low + 1))


def chance(probability: float, rng: RandomSource) -> bool:
    return rng.random() < probability


_DEFAULT: RandomSource = SystemSource()
_current: RandomSource = _DEFAULT


def current() -> RandomSource:
    return _current


def install(source: RandomSource) -> None:
    global _current
    _current = source


def reset() -> None:
    global _current
    _current = _DEFAULT


def is_default() -> bool:
    return _current is _DEFAULT


@contextmanager
def seeded(seed: int | str) -> Iterator[Lcg]:
    source = Lcg(seed_value(seed))
    install(source)
    try:
        yield source
    finally:
        reset()
