"""Compile declarative effect definitions into ``Effect`` hooks.

A definition is the parsed JSON object from ``data/effects.json``. Movement rules,
score and coin rules, state actions and visual rules are each small named patterns,
optionally gated by ``when``/``unless`` trigger lists. Anything that cannot be said
with these patterns belongs in ``builtin``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Sequence

from . import rng
from .effects import TRIGGER_MINIGAME, Effect
from .rules import (
    RankOrder,
    card_color,
    continues_tableau,
    foundation_accepts_suit,
    opposite_colors,
)
from .types import Card, CardFlags, GameState, MoveContext, Pile

Params = Mapping[str, Any]


class PatternError(ValueError):
    pass


@dataclass(frozen=True)
class _Env:
    state: GameState
    context: MoveContext | None
    moves: int

    @property
    def leader(self) -> Card | None:
        if self.context is None or not self.context.cards:
            return None
        return self.context.cards[0]

    def pile_kind(self, pile_id: str) -> str | None:
        pile = self.state.piles.get(pile_id)
        return pile.kind if pile is not None else None


# -------- Triggers --------


def _t_target_type(p: Params, env: _Env) -> bool:
    return env.context is not None and env.pile_kind(env.context.target) == p["kind"]


def _t_source_type(p: Params, env: _Env) -> bool:
    return env.context is not None and env.pile_kind(env.context.source) == p["kind"]


def _t_card_rank(p: Params, env: _Env) -> bool:
    leader = env.leader
    return leader is not None and leader.effective_rank in p["ranks"]


def _t_card_suit(p: Params, env: _Env) -> bool:
    leader = env.leader
    return leader is not None and leader.effective_suit in p["suits"]


def _t_card_color(p: Params, env: _Env) -> bool:
    leader = env.leader
    return leader is not None and card_color(leader.effective_suit) == p["color"]


def _t_move_count(p: Params, env: _Env) -> bool:
    every = int(p["every"])
    return every > 0 and env.moves > 0 and env.moves % every == 0


def _t_score_threshold(p: Params, env: _Env) -> bool:
    return env.state.score >= int(p["min"])


def _t_goal_percentage(p: Params, env: _Env) -> bool:
    goal = env.state.current_score_goal
    return goal > 0 and env.state.score * 100 >= goal * float(p["percent"])


def _t_chance(p: Params, env: _Env) -> bool:
    return rng.chance(float(p["probability"]), rng.current())


def _t_reveal(p: Params, env: _Env) -> bool:
    return env.context is not None and env.context.reveal


def _t_visible_rank_count(p: Params, env: _Env) -> bool:
    rank = int(p["rank"])
    seen = 0
    for pile in env.state.piles.values():
        if pile.kind != "tableau":
            continue
        seen += sum(1 for c in pile.cards if c.face_up and c.effective_rank == rank)
    return seen >= int(p["count"])


def _t_foundation_complete(p: Params, env: _Env) -> bool:
    if env.context is None:
        return False
    pile = env.state.piles.get(env.context.target)
    return pile is not None and pile.kind == "foundation" and len(pile.cards) >= 13


TRIGGERS: dict[str, Callable[[Params, _Env], bool]] = {
    "target_type": _t_target_type,
    "source_type": _t_source_type,
    "card_rank": _t_card_rank,
    "card_suit": _t_card_suit,
    "card_color": _t_card_color,
    "move_count": _t_move_count,
    "score_threshold": _t_score_threshold,
    "goal_percentage": _t_goal_percentage,
    "chance": _t_chance,
    "reveal": _t_reveal,
    "visible_rank_count": _t_visible_rank_count,
    "foundation_complete": _t_foundation_complete,
}


def _gate(rule: Params, env: _Env) -> bool:
    for trig in rule.get("when", ()):
        if not TRIGGERS[trig["trigger"]](trig, env):
            return False
    for trig in rule.get("unless", ()):
        if TRIGGERS[trig["trigger"]](trig, env):
            return False
    return True


# -------- Movement --------


def _rank_ok(pattern: str, leader: Card, top: Card | None, order: RankOrder) -> bool:
    if pattern == "any":
        return True
    if pattern == "alternate_descending":
        if top is None:
            return order.stack_rank(leader.effective_rank) == order.max_stack_rank
        return continues_tableau(top, leader, order)
    if pattern == "ignore_color":
        if top is None:
            return order.stack_rank(leader.effective_rank) == order.max_stack_rank
        return order.stack_rank(top.effective_rank) == order.stack_rank(leader.effective_rank) + 1
    if pattern == "ignore_rank":
        return top is None or opposite_colors(top, leader)
    if pattern == "up_or_down":
        if top is None:
            return order.stack_rank(leader.effective_rank) == order.max_stack_rank
        gap = abs(order.stack_rank(top.effective_rank) - order.stack_rank(leader.effective_rank))
        return gap == 1 and opposite_colors(top, leader)
    if pattern == "same_rank":
        return top is not None and top.effective_rank == leader.effective_rank
    raise PatternError(f"Unknown rank pattern: {pattern}")


def _suit_ok(pattern: str, leader: Card, target: Pile) -> bool:
    top = target.top
    if pattern == "any":
        return True
    if top is None:
        if pattern == "same_suit_ascending":
            return leader.effective_rank == 1 and foundation_accepts_suit(target, leader.effective_suit)
        if pattern in ("same_color_ascending", "any_suit_ascending"):
            return leader.effective_rank == 1
        raise PatternError(f"Unknown suit pattern: {pattern}")
    if leader.effective_rank != top.effective_rank + 1:
        return False
    if pattern == "same_suit_ascending":
        return leader.effective_suit == top.effective_suit
    if pattern == "same_color_ascending":
        color = card_color(leader.effective_suit)
        return color is not None and color == card_color(top.effective_suit)
    if pattern == "any_suit_ascending":
        return True
    raise PatternError(f"Unknown suit pattern: {pattern}")


def _stack_ok(pattern: str, cards: Sequence[Card], source: Pile, target: Pile) -> bool:
    if pattern == "single_card_only":
        return len(cards) == 1
    if pattern == "no_tableau_to_tableau":
        return not (source.kind == "tableau" and target.kind == "tableau")
    if pattern == "no_foundation_plays":
        return target.kind != "foundation"
    if pattern == "no_hand_plays":
        return source.kind != "hand"
    if pattern == "no_locked_piles":
        return not source.locked and not target.locked
    raise PatternError(f"Unknown stack pattern: {pattern}")


def _compile_movement(movement: Mapping[str, Params]) -> Callable[..., bool | None]:
    def can_move(
        cards: tuple[Card, ...], source: Pile, target: Pile, allowed: bool, state: GameState
    ) -> bool | None:
        rule = movement.get(target.kind) or movement.get("any")
        if rule is None:
            return None
        env = _Env(state=state, context=MoveContext(source.id, target.id, cards), moves=state.moves)
        if not _gate(rule, env):
            return None
        leader = cards[0]
        ok = True
        if "rank" in rule:
            ok = ok and _rank_ok(rule["rank"], leader, target.top, state.order)
        if "suit" in rule:
            ok = ok and _suit_ok(rule["suit"], leader, target)
        for pattern in rule.get("stack", ()):
            ok = ok and _stack_ok(pattern, cards, source, target)
        if rule.get("mode", "override") == "restrict":
            return None if ok else False
        return ok

    return can_move


# -------- Score & coins --------


def _by_key(table: Params, key: str | None) -> int:
    if key is None:
        return 0
    return int(table.get(key, 0))


def _score_rule(rule: Params, delta: int, env: _Env) -> int:
    pattern = rule["pattern"]
    leader = env.leader
    if pattern == "flat_bonus":
        return delta + int(rule["amount"])
    if pattern == "percentage_multiplier":
        return math.floor(delta * float(rule["multiplier"]))
    if pattern == "conditional_target":
        assert env.context is not None
        return delta + _by_key(rule["bonus"], env.pile_kind(env.context.target))
    if pattern == "conditional_source":
        assert env.context is not None
        return delta + _by_key(rule["bonus"], env.pile_kind(env.context.source))
    if pattern == "conditional_suit":
        return delta + _by_key(rule["bonus"], leader.effective_suit if leader else None)
    if pattern == "conditional_rank":
        if leader is None or leader.effective_rank not in rule["ranks"]:
            return delta
        return math.floor(delta * float(rule.get("multiplier", 1))) + int(rule.get("amount", 0))
    if pattern == "streak_multiplier":
        streak = int(env.state.effect_state.get(rule["key"], 0))
        return math.floor(delta * (1 + float(rule["step"]) * streak))
    if pattern == "score_floor":
        return max(delta, int(rule["min"]))
    raise PatternError(f"Unknown score pattern: {pattern}")


def _coin_rule(rule: Params, delta: int, env: _Env) -> int:
    pattern = rule["pattern"]
    leader = env.leader
    if pattern == "coin_flat_bonus":
        return delta + int(rule["amount"])
    if pattern == "coin_multiplier":
        return math.floor(delta * float(rule["multiplier"]))
    if pattern == "coin_conditional_target":
        assert env.context is not None
        return delta + _by_key(rule["bonus"], env.pile_kind(env.context.target))
    if pattern == "coin_per_rank":
        if leader is None:
            return delta
        return delta + math.floor(max(0, leader.effective_rank) * float(rule["factor"]))
    if pattern == "coin_from_score":
        return delta + math.floor(env.state.score * float(rule["percent"]) / 100)
    if pattern == "foundation_completion":
        if leader is not None and leader.effective_rank == 13 and _t_target_type({"kind": "foundation"}, env):
            return delta + int(rule["bonus"])
        return delta
    raise PatternError(f"Unknown coin pattern: {pattern}")


def _compile_amounts(
    rules: Sequence[Params], apply: Callable[[Params, int, _Env], int]
) -> Callable[[int, MoveContext, GameState], int]:
    def hook(delta: int, context: MoveContext, state: GameState) -> int:
        # hooks see the state before the move lands
        env = _Env(state=state, context=context, moves=state.moves + 1)
        for rule in rules:
            if _gate(rule, env):
                delta = apply(rule, delta, env)
        return delta

    return hook


# -------- State actions --------


def _next_pile_id(state: GameState, prefix: str) -> str:
    n = 0
    while f"{prefix}-{n}" in state.piles:
        n += 1
    return f"{prefix}-{n}"


def _a_add_piles(p: Params, state: GameState) -> dict[str, Any]:
    kind = p["kind"]
    piles = dict(state.piles)
    probe = state
    for _ in range(int(p.get("count", 1))):
        prefix = "tableau" if kind == "tableau" else "foundation-extra"
        pid = _next_pile_id(probe, prefix)
        piles[pid] = Pile(id=pid, kind=kind)
        probe = replace(probe, piles=piles)
    return {"piles": piles}


def _a_lock_piles(p: Params, state: GameState) -> dict[str, Any]:
    candidates = [pile for pile in state.piles_of(p["kind"]) if not pile.locked]
    if p.get("random", True):
        candidates = rng.shuffle(candidates, rng.current())
    chosen = candidates[: int(p.get("count", 1))]
    return {"piles": {**state.piles, **{c.id: replace(c, locked=True) for c in chosen}}}


def _a_unlock_piles(p: Params, state: GameState) -> dict[str, Any]:
    piles = {pid: (replace(pile, locked=False) if pile.kind == p["kind"] else pile) for pid, pile in state.piles.items()}
    return {"piles": piles}


def _a_add_card_to_hand(p: Params, state: GameState) -> dict[str, Any]:
    card_id = p["id"]
    if any(c.id == card_id for c in state.all_cards()):
        return {}
    card = Card(
        id=card_id,
        suit=p.get("suit", "special"),
        rank=int(p.get("rank", 0)),
        face_up=True,
        flags=CardFlags(
            wild=bool(p.get("wild", False)),
            key=bool(p.get("key_card", False)),
            persistent=bool(p.get("persistent", False)),
            charges=int(p.get("charges", 0)),
        ),
    )
    hand = state.hand
    return {"piles": {**state.piles, hand.id: hand.with_cards(hand.cards + (card,))}}


def _a_set_effect_state(p: Params, state: GameState) -> dict[str, Any]:
    return {"effect_state": {**state.effect_state, **dict(p["values"])}}


def _a_increment_effect_state(p: Params, state: GameState) -> dict[str, Any]:
    key = p["key"]
    current = int(state.effect_state.get(key, 0))
    return {"effect_state": {**state.effect_state, key: current + int(p.get("amount", 1))}}


def _a_modify_coins(p: Params, state: GameState) -> dict[str, Any]:
    return {"coins": max(0, state.coins + int(p["amount"]))}


def _a_modify_score_goal_pct(p: Params, state: GameState) -> dict[str, Any]:
    factor = 1 + float(p["percent"]) / 100
    return {"current_score_goal": max(1, math.floor(state.current_score_goal * factor))}


def _a_scale_multipliers(p: Params, state: GameState) -> dict[str, Any]:
    return {
        "score_multiplier": state.score_multiplier * float(p.get("score", 1)),
        "coin_multiplier": state.coin_multiplier * float(p.get("coins", 1)),
    }


def _a_trigger_minigame(p: Params, state: GameState) -> dict[str, Any]:
    return {TRIGGER_MINIGAME: p["game"]}


def _a_shuffle_pile(p: Params, state: GameState) -> dict[str, Any]:
    pile = state.pile(p["pile"])
    cards = tuple(rng.shuffle(pile.cards, rng.current()))
    return {"piles": {**state.piles, pile.id: pile.with_cards(cards)}}


ACTIONS: dict[str, Callable[[Params, GameState], dict[str, Any]]] = {
    "add_piles": _a_add_piles,
    "lock_piles": _a_lock_piles,
    "unlock_piles": _a_unlock_piles,
    "add_card_to_hand": _a_add_card_to_hand,
    "set_effect_state": _a_set_effect_state,
    "increment_effect_state": _a_increment_effect_state,
    "modify_coins": _a_modify_coins,
    "modify_score_goal_pct": _a_modify_score_goal_pct,
    "scale_multipliers": _a_scale_multipliers,
    "trigger_minigame": _a_trigger_minigame,
    "shuffle_pile": _a_shuffle_pile,
}


def run_actions(
    actions: Sequence[Params], state: GameState, context: MoveContext | None = None
) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    for action in actions:
        if not _gate(action, _Env(state=state, context=context, moves=state.moves)):
            continue
        changes = ACTIONS[action["action"]](action, state)
        minigame = changes.pop(TRIGGER_MINIGAME, None)
        if minigame is not None:
            patch[TRIGGER_MINIGAME] = minigame
        if changes:
            state = replace(state, **changes)
            patch.update(changes)
    return patch


# -------- Visuals --------


def _compile_visuals(rules: Sequence[Params]) -> Callable[[Card, Pile | None], Mapping[str, Any] | None]:
    def transform(card: Card, pile: Pile | None) -> Mapping[str, Any] | None:
        patch: dict[str, Any] = {}
        flags: dict[str, Any] = {}
        for rule in rules:
            kind = rule.get("kind")
            if kind is not None and (pile is None or pile.kind != kind):
                continue
            visual = rule["visual"]
            if visual == "face_up":
                patch["face_up"] = True
            elif visual == "hide_rank":
                flags["hide_rank"] = True
            elif visual == "show_lock":
                flags["show_lock"] = card.flags.locked or (pile is not None and pile.locked)
            else:
                raise PatternError(f"Unknown visual: {visual}")
        if flags:
            patch["flags"] = flags
        return patch or None

    return transform


# -------- Compiler --------


def _check_names(defn: Params) -> None:
    for rule in [*defn.get("scoring", ()), *defn.get("coins", ())]:
        for trig in [*rule.get("when", ()), *rule.get("unless", ())]:
            if trig["trigger"] not in TRIGGERS:
                raise PatternError(f"Unknown trigger: {trig['trigger']}")
    for key in ("on_activate", "on_move", "on_encounter_start"):
        for action in defn.get(key, ()):
            if action["action"] not in ACTIONS:
                raise PatternError(f"Unknown action: {action['action']}")
            for trig in [*action.get("when", ()), *action.get("unless", ())]:
                if trig["trigger"] not in TRIGGERS:
                    raise PatternError(f"Unknown trigger: {trig['trigger']}")


def compile_effect(defn: Params) -> Effect:
    _check_names(defn)

    can_move = None
    movement = defn.get("movement")
    if movement:
        can_move = _compile_movement(movement)

    calculate_score = None
    if defn.get("scoring"):
        calculate_score = _compile_amounts(tuple(defn["scoring"]), _score_rule)

    calculate_coins = None
    if defn.get("coins"):
        calculate_coins = _compile_amounts(tuple(defn["coins"]), _coin_rule)

    on_activate = None
    if defn.get("on_activate"):
        activate_actions = tuple(defn["on_activate"])

        def on_activate(state: GameState, active: tuple[str, ...]) -> Mapping[str, Any]:
            return run_actions(activate_actions, state)

    on_move = None
    if defn.get("on_move"):
        move_actions = tuple(defn["on_move"])

        def on_move(state: GameState, context: MoveContext) -> Mapping[str, Any]:
            return run_actions(move_actions, state, context)

    on_start = None
    if defn.get("on_encounter_start"):
        start_actions = tuple(defn["on_encounter_start"])

        def on_start(state: GameState) -> Mapping[str, Any]:
            return run_actions(start_actions, state)

    visuals = None
    if defn.get("visuals"):
        visuals = _compile_visuals(tuple(defn["visuals"]))

    return Effect(
        id=defn["id"],
        name=defn["name"],
        category=defn["category"],
        description=defn.get("description", ""),
        cost=int(defn.get("cost", 0)),
        max_charges=defn.get("max_charges"),
        charge_reset=defn.get("charge_reset"),
        draw_count=defn.get("draw_count"),
        can_move=can_move,
        calculate_score=calculate_score,
        calculate_coin_transaction=calculate_coins,
        on_activate=on_activate,
        on_move_complete=on_move,
        on_encounter_start=on_start,
        transform_card_visual=visuals,
    )
