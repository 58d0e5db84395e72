from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from coronata.engine.run import RunConfig

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    seed: str | None = None
    ranks_as_printed: bool = False
    run_length: int = 15

    @staticmethod
    def from_dict(d: Mapping[str, object]) -> "Settings":
        seed = d.get("seed")
        run_length = d.get("run_length", 15)
        if isinstance(run_length, bool) or not isinstance(run_length, int) or run_length < 1:
            run_length = 15
        return Settings(
            seed=str(seed) if isinstance(seed, (str, int)) and not isinstance(seed, bool) else None,
            ranks_as_printed=bool(d.get("ranks_as_printed", False)),
            run_length=run_length,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "seed": self.seed,
            "ranks_as_printed": self.ranks_as_printed,
            "run_length": self.run_length,
        }

    def run_config(self) -> RunConfig:
        return RunConfig(run_length=self.run_length, ranks_as_printed=self.ranks_as_printed)


class SettingsService:
    def __init__(self, path: Path) -> None:
        self._path = path
        self.settings = self._load_or_create()

    def _load_or_create(self) -> Settings:
        if not self._path.exists():
            settings = Settings()
            self._write(settings)
            return settings
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable settings file %s", self._path)
            return Settings()
        if not isinstance(raw, dict):
            return Settings()
        return Settings.from_dict(raw)

    def _write(self, settings: Settings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")

    def save(self) -> None:
        self._write(self.settings)

    def set_ranks_as_printed(self, value: bool) -> None:
        self.settings.ranks_as_printed = value
        self.save()

    def set_seed(self, seed: str | None) -> None:
        self.settings.seed = seed
        self.save()
