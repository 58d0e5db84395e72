"""Deterministic, headless rules engine for Coronata.

IMPORTANT: This package must never import the services layer.
"""

from .actions import Action, MoveAction
from .effects import Effect, EffectPipeline, EffectRegistry
from .encounter import ValidMoves, attempt_move, deal_hand, find_valid_moves
from .rules import RankOrder, is_standard_move_valid, stack_rank
from .run import Game, RunConfig, StepResult, generate_run_plan, replay
from .types import Card, Encounter, GameState, MoveContext, Pile, RunSummary

__all__ = [
    "Action",
    "Card",
    "Effect",
    "EffectPipeline",
    "EffectRegistry",
    "Encounter",
    "Game",
    "GameState",
    "MoveAction",
    "MoveContext",
    "Pile",
    "RankOrder",
    "RunConfig",
    "RunSummary",
    "StepResult",
    "ValidMoves",
    "attempt_move",
    "deal_hand",
    "find_valid_moves",
    "generate_run_plan",
    "is_standard_move_valid",
    "replay",
    "stack_rank",
]
