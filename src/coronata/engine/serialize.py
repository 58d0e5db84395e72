from __future__ import annotations

from .actions import (
    Action,
    BuyEffectAction,
    ChooseBlessingAction,
    ChooseWanderAction,
    MoveAction,
    PlayBlessingAction,
    ResolveWanderAction,
    ToggleEffectAction,
)
from .run import Game
from .types import Card, Encounter, GameState, Pile


def action_to_dict(a: Action) -> dict[str, object]:
    if isinstance(a, MoveAction):
        return {"type": "move", "card_ids": list(a.card_ids), "source": a.source, "target": a.target}
    if isinstance(a, (ToggleEffectAction, BuyEffectAction, ChooseBlessingAction)):
        return {"type": type(a).__name__, "effect_id": a.effect_id}
    if isinstance(a, PlayBlessingAction):
        return {"type": "play_blessing", "card_id": a.card_id}
    if isinstance(a, ChooseWanderAction):
        return {"type": "choose_wander", "wander_id": a.wander_id}
    if isinstance(a, ResolveWanderAction):
        return {"type": "resolve_wander", "choice_index": a.choice_index}
    return {"type": type(a).__name__}


def card_to_dict(c: Card) -> dict[str, object]:
    out: dict[str, object] = {"id": c.id, "suit": c.suit, "rank": c.rank, "face_up": c.face_up}
    f = c.flags
    for name in ("locked", "wild", "key", "persistent"):
        if getattr(f, name):
            out[name] = True
    if f.charges:
        out["charges"] = f.charges
    if f.locked_rank is not None:
        out["locked_rank"] = f.locked_rank
        out["locked_suit"] = f.locked_suit
    if f.blessing_id is not None:
        out["blessing_id"] = f.blessing_id
    return out


def _pile_to_dict(p: Pile) -> dict[str, object]:
    return {
        "kind": p.kind,
        "locked": p.locked,
        "hidden": p.hidden,
        "accepted_suit": p.accepted_suit,
        "cards": [card_to_dict(c) for c in p.cards],
    }


def encounter_to_dict(e: Encounter) -> dict[str, object]:
    return {
        "index": e.index,
        "effect_id": e.effect_id,
        "extra_effect_ids": list(e.extra_effect_ids),
        "goal": e.goal,
        "completed": e.completed,
    }


def state_to_dict(s: GameState) -> dict[str, object]:
    return {
        "piles": {pid: _pile_to_dict(p) for pid, p in s.piles.items()},
        "score": s.score,
        "coins": s.coins,
        "moves": s.moves,
        "scored_tableau": sorted(s.scored_tableau),
        "scored_foundation": sorted(s.scored_foundation),
        "charges": dict(sorted(s.charges.items())),
        "run_index": s.run_index,
        "current_score_goal": s.current_score_goal,
        "is_level_complete": s.is_level_complete,
        "ranks_as_printed": s.ranks_as_printed,
        "owned_effects": list(s.owned_effects),
        "active_effects": list(s.active_effects),
        "hand_size": s.hand_size,
        "curse_queue": list(s.curse_queue),
        "wander": {"phase": s.wander.phase, "round": s.wander.round, "seen": sorted(s.wander.seen)},
        "minigame": None if s.minigame is None else s.minigame.kind,
    }


def snapshot(game: Game) -> dict[str, object]:
    """Return a JSON-serializable canonical snapshot of a game."""
    return {
        "seed": game.state.seed,
        "phase": game.phase,
        "plan": [encounter_to_dict(e) for e in game.plan],
        "state": state_to_dict(game.state),
        "shop": list(game.shop),
        "action_log": [action_to_dict(a) for a in game.action_log],
    }
