from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from coronata.engine.types import RunSummary
from coronata.services.telemetry import TelemetryService

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


def _int(d: Mapping[str, object], key: str) -> int:
    v = d.get(key, 0)
    return v if isinstance(v, int) and not isinstance(v, bool) else 0


@dataclass
class PlayerStats:
    runs: int = 0
    wins: int = 0
    losses: int = 0
    current_streak: int = 0
    best_streak: int = 0
    best_score: int = 0
    total_coins: int = 0
    history: list[dict[str, object]] = field(default_factory=list)

    @property
    def win_rate(self) -> float:
        return self.wins / self.runs if self.runs else 0.0

    def record(self, summary: RunSummary) -> None:
        self.runs += 1
        if summary.result == "won":
            self.wins += 1
            self.current_streak += 1
            self.best_streak = max(self.best_streak, self.current_streak)
        else:
            self.losses += 1
            self.current_streak = 0
        self.best_score = max(self.best_score, summary.score)
        self.total_coins += summary.final_coins
        self.history = [summary.to_dict(), *self.history][:HISTORY_LIMIT]

    @staticmethod
    def from_dict(d: Mapping[str, object]) -> "PlayerStats":
        history_raw = d.get("history", [])
        history = [dict(h) for h in history_raw if isinstance(h, dict)] if isinstance(history_raw, list) else []
        return PlayerStats(
            runs=_int(d, "runs"),
            wins=_int(d, "wins"),
            losses=_int(d, "losses"),
            current_streak=_int(d, "current_streak"),
            best_streak=_int(d, "best_streak"),
            best_score=_int(d, "best_score"),
            total_coins=_int(d, "total_coins"),
            history=history[:HISTORY_LIMIT],
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "runs": self.runs,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "current_streak": self.current_streak,
            "best_streak": self.best_streak,
            "best_score": self.best_score,
            "total_coins": self.total_coins,
            "history": list(self.history),
        }


class StatsService:
    """Persists lifetime run statistics; usable as a ``RunRecorder``."""

    def __init__(self, path: Path, telemetry: TelemetryService | None = None) -> None:
        self._path = path
        self.telemetry = telemetry
        self.stats = self._load_or_create()

    def _load_or_create(self) -> PlayerStats:
        if not self._path.exists():
            return PlayerStats()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Starting fresh stats; %s is not valid JSON", self._path)
            return PlayerStats()
        if not isinstance(raw, dict):
            return PlayerStats()
        return PlayerStats.from_dict(raw)

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self.stats.to_dict(), indent=2), encoding="utf-8")

    def record_run(self, summary: RunSummary) -> None:
        self.stats.record(summary)
        self.save()
        if self.telemetry is not None:
            self.telemetry.log("RUN_SUMMARY", summary.to_dict())
