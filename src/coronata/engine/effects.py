from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Iterator, Literal, Mapping, Sequence

from .types import Card, Category, GameState, MoveContext, Pile

logger = logging.getLogger(__name__)

ChargeReset = Literal["encounter", "run"]
StatePatch = Mapping[str, Any]

CATEGORY_ORDER: dict[str, int] = {
    "curse": 0,
    "exploit": 1,
    "epic": 2,
    "legendary": 3,
    "rare": 4,
    "uncommon": 5,
    "blessing": 6,
    "passive": 7,
}
UNKNOWN_CATEGORY_RANK = 999

# Categories that are bought in the shop and stay active between encounters.
EXPLOIT_CATEGORIES = frozenset({"exploit", "epic", "legendary", "rare", "uncommon"})

# Reserved patch keys.
TRIGGER_MINIGAME = "trigger_minigame"
NEW_ACTIVE_EFFECTS = "new_active_effects"

CanMoveHook = Callable[[tuple[Card, ...], Pile, Pile, bool, GameState], "bool | None"]
InterceptHook = Callable[[MoveContext, GameState], "Mapping[str, Any] | None"]
MoveCompleteHook = Callable[[GameState, MoveContext], "StatePatch | None"]
AmountHook = Callable[[int, MoveContext, GameState], int]
ActivateHook = Callable[[GameState, tuple[str, ...]], "StatePatch | None"]
EncounterStartHook = Callable[[GameState], "StatePatch | None"]
VisualHook = Callable[[Card, "Pile | None"], "Mapping[str, Any] | None"]


@dataclass(frozen=True)
class Effect:
    id: str
    name: str
    category: Category
    description: str = ""
    cost: int = 0
    max_charges: int | None = None
    charge_reset: ChargeReset | None = None
    draw_count: int | None = None
    can_move: CanMoveHook | None = None
    intercept_move: InterceptHook | None = None
    on_move_complete: MoveCompleteHook | None = None
    calculate_score: AmountHook | None = None
    calculate_coin_transaction: AmountHook | None = None
    on_activate: ActivateHook | None = None
    on_encounter_start: EncounterStartHook | None = None
    transform_card_visual: VisualHook | None = None

    @property
    def sort_key(self) -> tuple[int, str, str]:
        return (CATEGORY_ORDER.get(self.category, UNKNOWN_CATEGORY_RANK), self.name, self.id)

    @property
    def is_curse(self) -> bool:
        return self.category == "curse"


class EffectRegistry:
    """All effect definitions known to a game, keyed by id."""

    def __init__(self, effects: Iterable[Effect] = ()) -> None:
        self._effects: dict[str, Effect] = {}
        for eff in effects:
            self.register(eff)

    def register(self, effect: Effect) -> None:
        if effect.id in self._effects:
            raise ValueError(f"Duplicate effect id: {effect.id}")
        self._effects[effect.id] = effect

    def get(self, effect_id: str) -> Effect:
        return self._effects[effect_id]

    def find(self, effect_id: str) -> Effect | None:
        return self._effects.get(effect_id)

    def __contains__(self, effect_id: object) -> bool:
        return effect_id in self._effects

    def __iter__(self) -> Iterator[Effect]:
        return iter(self._effects.values())

    def __len__(self) -> int:
        return len(self._effects)

    def ids(self) -> list[str]:
        return list(self._effects.keys())

    def by_category(self, *categories: str) -> list[Effect]:
        wanted = set(categories)
        return sorted((e for e in self._effects.values() if e.category in wanted), key=lambda e: e.sort_key)

    def ordered(self, effect_ids: Iterable[str]) -> list[Effect]:
        found: dict[str, Effect] = {}
        for eid in effect_ids:
            eff = self._effects.get(eid)
            if eff is None:
                logger.debug("Ignoring unknown active effect %s", eid)
                continue
            found[eid] = eff
        return sorted(found.values(), key=lambda e: e.sort_key)


def apply_patch(state: GameState, patch: StatePatch | None) -> GameState:
    if not patch:
        return state
    return replace(state, **dict(patch))


class EffectPipeline:
    """Folds the hooks of the active effects of a state in pipeline order."""

    def __init__(self, effects: Sequence[Effect]) -> None:
        self.effects = list(effects)

    @classmethod
    def for_state(cls, registry: EffectRegistry, state: GameState) -> "EffectPipeline":
        return cls(registry.ordered(state.active_effects))

    def can_move(
        self, cards: tuple[Card, ...], source: Pile, target: Pile, allowed: bool, state: GameState
    ) -> bool:
        for eff in self.effects:
            if eff.can_move is None:
                continue
            verdict = eff.can_move(cards, source, target, allowed, state)
            if verdict is not None:
                allowed = bool(verdict)
        return allowed

    def intercept(self, context: MoveContext, state: GameState) -> MoveContext:
        for eff in self.effects:
            if eff.intercept_move is None:
                continue
            partial = eff.intercept_move(context, state)
            if partial:
                context = replace(context, **dict(partial))
        return context

    def score(self, delta: int, context: MoveContext, state: GameState) -> int:
        for eff in self.effects:
            if eff.calculate_score is not None:
                delta = eff.calculate_score(delta, context, state)
        return delta

    def coins(self, delta: int, context: MoveContext, state: GameState) -> int:
        for eff in self.effects:
            if eff.calculate_coin_transaction is not None:
                delta = eff.calculate_coin_transaction(delta, context, state)
        return delta

    def move_complete(self, state: GameState, context: MoveContext) -> tuple[GameState, str | None]:
        minigame: str | None = None
        for eff in self.effects:
            if eff.on_move_complete is None:
                continue
            patch = dict(eff.on_move_complete(state, context) or {})
            requested = patch.pop(TRIGGER_MINIGAME, None)
            if requested:
                minigame = str(requested)
            state = apply_patch(state, patch)
        return state, minigame

    def encounter_start(self, state: GameState) -> GameState:
        for eff in self.effects:
            if eff.on_encounter_start is not None:
                state = apply_patch(state, eff.on_encounter_start(state))
        return state

    def draw_count(self) -> int | None:
        counts = [e.draw_count for e in self.effects if e.draw_count is not None]
        return max(counts) if counts else None

    def card_view(self, card: Card, pile: Pile | None) -> Card:
        for eff in self.effects:
            if eff.transform_card_visual is None:
                continue
            patch = dict(eff.transform_card_visual(card, pile) or {})
            flag_changes = patch.pop("flags", None)
            if patch:
                card = replace(card, **patch)
            if flag_changes:
                card = card.with_flags(**dict(flag_changes))
        return card


def activate(registry: EffectRegistry, state: GameState, effect_id: str) -> GameState:
    """Turn an owned effect on, running its ``on_activate`` hook once."""
    effect = registry.get(effect_id)
    previous = state.active_effects
    new_active = previous if effect_id in previous else (*previous, effect_id)
    if effect.on_activate is not None:
        patch = dict(effect.on_activate(state, previous) or {})
        replacement = patch.pop(NEW_ACTIVE_EFFECTS, None)
        state = apply_patch(state, patch)
        if replacement is not None:
            new_active = tuple(replacement)
    return replace(state, active_effects=new_active)


def deactivate(state: GameState, effect_id: str) -> GameState:
    return replace(state, active_effects=tuple(e for e in state.active_effects if e != effect_id))


def active_curses(registry: EffectRegistry, state: GameState) -> list[str]:
    out: list[str] = []
    for eid in state.active_effects:
        eff = registry.find(eid)
        if eff is not None and eff.is_curse:
            out.append(eid)
    return out


def reset_charges(registry: EffectRegistry, state: GameState, policy: ChargeReset) -> GameState:
    charges = dict(state.charges)
    for eff in registry:
        if eff.max_charges is None:
            continue
        if policy == "run" or eff.charge_reset == "encounter":
            charges[eff.id] = eff.max_charges
    return replace(state, charges=charges)
