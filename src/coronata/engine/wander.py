from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence

from . import rng as rng_mod
from .effects import EXPLOIT_CATEGORIES, EffectRegistry, activate
from .types import GameState

logger = logging.getLogger(__name__)

Instruction = Mapping[str, Any]


@dataclass(frozen=True)
class WanderResources:
    """The slice of a run a wander is allowed to touch."""

    coins: int
    score: int
    hand_size: int
    shuffles: int
    discards: int
    exploits: tuple[str, ...]
    curses: tuple[str, ...]
    blessings: tuple[str, ...]
    curse_queue: tuple[str, ...]
    next_goal_modifier: float = 0.0
    modifiers: Mapping[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_state(state: GameState, registry: EffectRegistry) -> "WanderResources":
        exploits: list[str] = []
        blessings: list[str] = []
        curses: list[str] = []
        for eid in state.owned_effects:
            eff = registry.find(eid)
            if eff is None:
                continue
            if eff.category == "blessing":
                blessings.append(eid)
            elif eff.category == "curse":
                curses.append(eid)
            elif eff.category in EXPLOIT_CATEGORIES:
                exploits.append(eid)
        return WanderResources(
            coins=state.coins,
            score=state.score,
            hand_size=state.hand_size,
            shuffles=state.shuffles,
            discards=state.discards,
            exploits=tuple(exploits),
            curses=tuple(curses),
            blessings=tuple(blessings),
            curse_queue=state.curse_queue,
            next_goal_modifier=state.next_goal_modifier,
            modifiers=dict(state.modifiers),
        )

    def owns(self, effect_id: str) -> bool:
        return effect_id in self.exploits or effect_id in self.curses or effect_id in self.blessings


@dataclass(frozen=True)
class WanderChoice:
    label: str
    result: str
    instructions: tuple[Instruction, ...] = ()
    on_choose: Callable[[WanderResources, rng_mod.RandomSource], WanderResources] | None = None


@dataclass(frozen=True)
class Wander:
    id: str
    label: str
    description: str
    choices: tuple[WanderChoice, ...]
    min_encounter: int = 0
    hidden: bool = False


class WanderError(ValueError):
    pass


_NUMERIC = {
    "modify_coin": "amount",
    "modify_score": "amount",
    "modify_coin_pct": "percent",
    "modify_score_pct": "percent",
    "modify_next_score_goal_pct": "percent",
    "set_coin": "amount",
    "modify_hand_size": "amount",
    "modify_shuffle_count": "amount",
    "modify_discard_count": "amount",
}
_BY_ID = {"add_specific_curse", "add_blessing_by_id", "add_exploit_by_id", "force_next_curse"}
_PLAIN = {
    "add_random_curse",
    "add_random_blessing",
    "add_random_exploit",
    "remove_curse",
    "lose_random_blessing",
    "lose_random_exploit",
}


def check_instructions(instructions: Sequence[Instruction]) -> None:
    """Raise ``WanderError`` for the first malformed instruction, recursively."""
    for ins in instructions:
        if not isinstance(ins, Mapping):
            raise WanderError(f"Instruction must be an object: {ins!r}")
        kind = ins.get("type")
        if kind in _NUMERIC:
            value = ins.get(_NUMERIC[kind])
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise WanderError(f"{kind} needs a numeric {_NUMERIC[kind]}")
        elif kind in _BY_ID:
            if not isinstance(ins.get("id"), str):
                raise WanderError(f"{kind} needs an id")
        elif kind in _PLAIN:
            continue
        elif kind == "add_hidden_modifier":
            if not isinstance(ins.get("key"), str):
                raise WanderError("add_hidden_modifier needs a key")
        elif kind == "random_outcome":
            chance = ins.get("chance")
            if isinstance(chance, bool) or not isinstance(chance, (int, float)) or not 0 <= chance <= 1:
                raise WanderError("random_outcome needs a chance in [0, 1]")
            for branch in ("success", "failure"):
                nested = ins.get(branch, [])
                if not isinstance(nested, list):
                    raise WanderError(f"random_outcome.{branch} must be a list")
                check_instructions(nested)
        else:
            raise WanderError(f"Unknown wander instruction: {kind!r}")


class WanderResolver:
    def __init__(self, registry: EffectRegistry, rng: rng_mod.RandomSource) -> None:
        self.registry = registry
        self.rng = rng

    def resolve(self, choice: WanderChoice, state: GameState) -> GameState:
        res = WanderResources.from_state(state, self.registry)
        if choice.on_choose is not None:
            updated = choice.on_choose(res, self.rng)
        else:
            try:
                check_instructions(choice.instructions)
            except WanderError as e:
                logger.warning("Skipping malformed wander choice %r: %s", choice.label, e)
                return state
            updated = self.apply(choice.instructions, res)
        return self.fold(state, updated)

    def apply(self, instructions: Sequence[Instruction], res: WanderResources) -> WanderResources:
        for ins in instructions:
            res = self._apply_one(ins, res)
        return res

    def _pick_unowned(self, res: WanderResources, categories: Sequence[str]) -> str | None:
        pool = [e.id for e in self.registry.by_category(*categories) if not res.owns(e.id)]
        if not pool:
            return None
        return rng_mod.choice(pool, self.rng)

    def _grant(self, res: WanderResources, effect_id: str | None) -> WanderResources:
        if effect_id is None or res.owns(effect_id):
            return res
        eff = self.registry.find(effect_id)
        if eff is None:
            logger.warning("Wander granted unknown effect %s", effect_id)
            return res
        if eff.category == "curse":
            return replace(res, curses=(*res.curses, effect_id), curse_queue=(*res.curse_queue, effect_id))
        if eff.category == "blessing":
            return replace(res, blessings=(*res.blessings, effect_id))
        return replace(res, exploits=(*res.exploits, effect_id))

    def _apply_one(self, ins: Instruction, res: WanderResources) -> WanderResources:
        kind = ins["type"]
        if kind == "modify_coin":
            return replace(res, coins=max(0, res.coins + int(ins["amount"])))
        if kind == "set_coin":
            return replace(res, coins=max(0, int(ins["amount"])))
        if kind == "modify_coin_pct":
            return replace(res, coins=max(0, res.coins + math.floor(res.coins * ins["percent"] / 100)))
        if kind == "modify_score":
            return replace(res, score=max(0, res.score + int(ins["amount"])))
        if kind == "modify_score_pct":
            return replace(res, score=max(0, res.score + math.floor(res.score * ins["percent"] / 100)))
        if kind == "modify_next_score_goal_pct":
            return replace(res, next_goal_modifier=res.next_goal_modifier + ins["percent"] / 100)
        if kind == "modify_hand_size":
            return replace(res, hand_size=max(1, res.hand_size + int(ins["amount"])))
        if kind == "modify_shuffle_count":
            return replace(res, shuffles=max(0, res.shuffles + int(ins["amount"])))
        if kind == "modify_discard_count":
            return replace(res, discards=max(0, res.discards + int(ins["amount"])))
        if kind == "add_random_curse":
            return self._grant(res, self._pick_unowned(res, ("curse",)))
        if kind == "add_random_blessing":
            return self._grant(res, self._pick_unowned(res, ("blessing",)))
        if kind == "add_random_exploit":
            return self._grant(res, self._pick_unowned(res, tuple(sorted(EXPLOIT_CATEGORIES))))
        if kind in ("add_specific_curse", "add_blessing_by_id", "add_exploit_by_id"):
            return self._grant(res, ins["id"])
        if kind == "force_next_curse":
            if ins["id"] not in self.registry:
                logger.warning("Cannot force unknown curse %s", ins["id"])
                return res
            return replace(res, curse_queue=(ins["id"], *res.curse_queue))
        if kind == "remove_curse":
            if not res.curses:
                return res
            gone = rng_mod.choice(res.curses, self.rng)
            return replace(
                res,
                curses=tuple(c for c in res.curses if c != gone),
                curse_queue=tuple(c for c in res.curse_queue if c != gone),
            )
        if kind == "lose_random_blessing":
            if not res.blessings:
                return res
            gone = rng_mod.choice(res.blessings, self.rng)
            return replace(res, blessings=tuple(b for b in res.blessings if b != gone))
        if kind == "lose_random_exploit":
            if not res.exploits:
                return res
            gone = rng_mod.choice(res.exploits, self.rng)
            return replace(res, exploits=tuple(e for e in res.exploits if e != gone))
        if kind == "add_hidden_modifier":
            return replace(res, modifiers={**res.modifiers, ins["key"]: ins.get("value", True)})
        if kind == "random_outcome":
            branch = "success" if rng_mod.chance(float(ins["chance"]), self.rng) else "failure"
            return self.apply(ins.get(branch, []), res)
        raise WanderError(f"Unknown wander instruction: {kind!r}")

    def fold(self, state: GameState, after: WanderResources) -> GameState:
        """Write a resource view back into the game state."""
        owned = [e for e in state.owned_effects if self._still_owned(e, after)]
        active = [e for e in state.active_effects if e in owned or self._is_encounter_curse(e, state)]
        granted: list[str] = []
        for eid in (*after.exploits, *after.blessings, *after.curses):
            if eid not in owned:
                owned.append(eid)
                if eid in after.exploits:
                    granted.append(eid)
        state = replace(
            state,
            coins=max(0, after.coins),
            score=max(0, after.score),
            hand_size=after.hand_size,
            shuffles=after.shuffles,
            discards=after.discards,
            owned_effects=tuple(owned),
            active_effects=tuple(active),
            curse_queue=after.curse_queue,
            next_goal_modifier=after.next_goal_modifier,
            modifiers=dict(after.modifiers),
        )
        for eid in granted:
            if eid not in state.active_effects:
                state = activate(self.registry, state, eid)
        return state

    def _still_owned(self, effect_id: str, res: WanderResources) -> bool:
        eff = self.registry.find(effect_id)
        if eff is None:
            return True
        if eff.category == "passive":
            return True
        return res.owns(effect_id)

    def _is_encounter_curse(self, effect_id: str, state: GameState) -> bool:
        eff = self.registry.find(effect_id)
        return eff is not None and eff.is_curse and effect_id not in state.owned_effects
