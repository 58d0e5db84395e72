from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from coronata.engine import rng as rng_mod
from coronata.engine.types import OUTCOMES, MinigameResult, Outcome

# Cumulative thresholds over one roll in [0, 1), best outcome first.
DEFAULT_ODDS: tuple[float, ...] = (0.05, 0.25, 0.45, 0.65, 0.95, 1.0)

REWARDS: Mapping[Outcome, int] = {
    "critical_win": 50,
    "win": 25,
    "partial_win": 10,
    "draw": 0,
    "loss": -10,
    "critical_loss": -25,
}

GAMES: Mapping[str, tuple[float, ...]] = {
    "pinball": DEFAULT_ODDS,
    "blackjack": (0.04, 0.42, 0.48, 0.56, 0.97, 1.0),
    "poker": (0.02, 0.30, 0.50, 0.60, 0.95, 1.0),
    "darts": (0.08, 0.30, 0.55, 0.65, 0.92, 1.0),
    "roulette": (0.03, 0.47, 0.47, 0.47, 0.97, 1.0),
    "pool": DEFAULT_ODDS,
    "slots": (0.01, 0.10, 0.30, 0.45, 0.90, 1.0),
}

TEXT: Mapping[Outcome, str] = {
    "critical_win": "Jackpot!",
    "win": "You win.",
    "partial_win": "A small win.",
    "draw": "Nothing ventured, nothing gained.",
    "loss": "You lose.",
    "critical_loss": "A crushing loss.",
}


@dataclass
class ChanceMinigames:
    """Resolves a minigame with a single weighted roll of the run RNG."""

    games: Mapping[str, tuple[float, ...]] = field(default_factory=lambda: dict(GAMES))
    rewards: Mapping[Outcome, int] = field(default_factory=lambda: dict(REWARDS))

    def play(self, kind: str, rng: rng_mod.RandomSource) -> MinigameResult:
        if kind not in self.games:
            raise KeyError(f"Unknown minigame: {kind}")
        roll = rng.random()
        outcome: Outcome = OUTCOMES[-1]
        for name, limit in zip(OUTCOMES, self.games[kind]):
            if roll < limit:
                outcome = name
                break
        return MinigameResult(outcome=outcome, reward=self.rewards[outcome], text=f"{kind.title()}: {TEXT[outcome]}")
