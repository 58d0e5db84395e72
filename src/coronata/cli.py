from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from coronata.engine import rng as rng_mod
from coronata.engine.ai import AISpec, choose_action
from coronata.engine.run import Game, generate_run_plan
from coronata.engine.serialize import encounter_to_dict, snapshot
from coronata.logging_config import setup_logging
from coronata.paths import get_paths
from coronata.services.content import ContentError, ContentService
from coronata.services.minigames import ChanceMinigames
from coronata.services.settings import Settings, SettingsService
from coronata.services.stats import StatsService
from coronata.services.telemetry import TelemetryService

logger = logging.getLogger(__name__)


def _settings(path: Path | None) -> Settings:
    if path is None:
        path = get_paths().userdata_dir / "settings.json"
        if not path.exists():
            return Settings()
    return SettingsService(path).settings


def _cmd_validate(content: ContentService, args: argparse.Namespace) -> int:
    content.validate_all()
    print("Content OK")
    return 0


def _cmd_plan(content: ContentService, args: argparse.Namespace) -> int:
    settings = _settings(args.settings)
    config = settings.run_config()
    registry = content.load_effects()
    seed = args.seed if args.seed is not None else settings.seed
    if seed is None:
        plan = generate_run_plan(registry, rng_mod.current(), config)
    else:
        with rng_mod.seeded(seed) as source:
            plan = generate_run_plan(registry, source, config)
    print(json.dumps([encounter_to_dict(e) for e in plan], indent=2))
    return 0


def _cmd_autoplay(content: ContentService, args: argparse.Namespace) -> int:
    paths = get_paths()
    settings = _settings(args.settings)
    config = settings.run_config()
    recorder = None
    if args.record:
        telemetry = TelemetryService(paths.userdata_dir / "telemetry.jsonl")
        recorder = StatsService(paths.userdata_dir / "stats.json", telemetry=telemetry)
    game = Game(
        registry=content.load_effects(),
        wanders=content.load_wanders(),
        config=config,
        minigames=ChanceMinigames(),
        recorder=recorder,
    )
    seed = args.seed if args.seed is not None else settings.seed
    game.start_run(seed)

    spec = AISpec(spend_coins=not args.frugal)
    steps = 0
    while steps < args.moves:
        action = choose_action(game, spec)
        if action is None:
            break
        result = game.step(action)
        if not result.ok:
            logger.debug("Autoplay action rejected: %s (%s)", action, result.error)
            break
        steps += 1
    if game.phase not in ("run_complete", "run_resigned"):
        game.resign()
    print(json.dumps(snapshot(game), indent=2))
    if game.last_summary is not None:
        logger.info("Final score %d, coins %d", game.last_summary.score, game.last_summary.final_coins)
    return 0


def _cmd_stats(content: ContentService, args: argparse.Namespace) -> int:
    stats = StatsService(get_paths().userdata_dir / "stats.json")
    print(json.dumps(stats.stats.to_dict(), indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="coronata")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--settings", type=Path, default=None, help="settings JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", help="schema-check effects and wanders")

    p_plan = sub.add_parser("plan", help="print the encounter plan for a seed")
    p_plan.add_argument("--seed", default=None)

    p_auto = sub.add_parser("autoplay", help="play a run with the greedy bot")
    p_auto.add_argument("--seed", default=None)
    p_auto.add_argument("--moves", type=int, default=2000)
    p_auto.add_argument("--frugal", action="store_true", help="never buy from the shop")
    p_auto.add_argument("--record", action="store_true", help="save the result to player stats")

    sub.add_parser("stats", help="print lifetime statistics")

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    paths = get_paths()
    content = ContentService(data_dir=paths.data_dir, schema_dir=paths.schema_dir)
    commands = {
        "validate": _cmd_validate,
        "plan": _cmd_plan,
        "autoplay": _cmd_autoplay,
        "stats": _cmd_stats,
    }
    try:
        return commands[args.command](content, args)
    except ContentError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
