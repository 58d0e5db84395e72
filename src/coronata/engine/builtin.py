"""Effects whose hooks are written in Python rather than declared in effects.json."""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Any, Mapping

from . import rng
from .effects import NEW_ACTIVE_EFFECTS, Effect, EffectRegistry
from .rules import is_standard_move_valid, wild_lock_for
from .types import Card, CardFlags, GameState, MoveContext, Pile

KEY_CARD_ID = "bakeneko-key"
JESTER_CARD_ID = "jester-wild"
SCHRODINGER_STATE = "schrodingers_deck.hidden"


def _with_piles(state: GameState, *piles: Pile) -> dict[str, Any]:
    return {"piles": {**state.piles, **{p.id: p for p in piles}}}


def _add_to_hand(state: GameState, card: Card) -> dict[str, Any]:
    if any(c.id == card.id for c in state.all_cards()):
        return {}
    hand = state.hand
    return _with_piles(state, hand.with_cards(hand.cards + (card,)))


# -------- Curses --------


def _herding_cats_intercept(context: MoveContext, state: GameState) -> Mapping[str, Any] | None:
    target = state.pile(context.target)
    if target.kind != "tableau" or not rng.chance(1 / 3, rng.current()):
        return None
    others = [
        p.id
        for p in state.piles_of("tableau")
        if p.id not in (context.target, context.source)
        and is_standard_move_valid(context.cards, p, state.order)
    ]
    if not others:
        return None
    return {"target": rng.choice(others, rng.current())}


def _bakeneko_activate(state: GameState, active: tuple[str, ...]) -> Mapping[str, Any]:
    tableaus = [p for p in state.piles_of("tableau") if p.cards and not p.locked]
    chosen = rng.shuffle(tableaus, rng.current())[:3]
    locked = [replace(p, locked=True) for p in chosen]
    patch = _with_piles(state, *locked)
    key = Card(
        id=KEY_CARD_ID,
        suit="special",
        rank=0,
        face_up=True,
        flags=CardFlags(key=True, charges=len(locked)),
    )
    state = replace(state, **patch)
    return {**patch, **_add_to_hand(state, key)}


def _bakeneko_can_move(
    cards: tuple[Card, ...], source: Pile, target: Pile, allowed: bool, state: GameState
) -> bool | None:
    if cards[0].flags.key:
        return target.kind == "tableau" and target.locked
    if source.locked or target.locked:
        return False
    return None


def _bakeneko_move_complete(state: GameState, context: MoveContext) -> Mapping[str, Any] | None:
    if not context.cards or not context.cards[0].flags.key:
        return None
    key = context.cards[0]
    pile = state.pile(context.target)
    unlocked = replace(pile, locked=False, cards=tuple(c for c in pile.cards if c.id != key.id))
    piles = [unlocked]
    remaining = key.flags.charges - 1
    if remaining > 0:
        hand = state.hand
        piles.append(hand.with_cards(hand.cards + (key.with_flags(charges=remaining),)))
    return _with_piles(state, *piles)


def _schrodinger_hide(state: GameState) -> dict[str, Any]:
    tableaus = state.piles_of("tableau")
    hidden = {p.id for p in rng.shuffle(tableaus, rng.current())[:2]}
    piles = [replace(p, hidden=p.id in hidden) for p in tableaus]
    return {
        **_with_piles(state, *piles),
        "effect_state": {**state.effect_state, SCHRODINGER_STATE: sorted(hidden)},
    }


def _schrodinger_activate(state: GameState, active: tuple[str, ...]) -> Mapping[str, Any]:
    return _schrodinger_hide(state)


def _schrodinger_move_complete(state: GameState, context: MoveContext) -> Mapping[str, Any] | None:
    if context.source == "hand" and context.target == "deck":
        return None
    if state.moves == 0 or state.moves % 5 != 0:
        return None
    return _schrodinger_hide(state)


def _schrodinger_can_move(
    cards: tuple[Card, ...], source: Pile, target: Pile, allowed: bool, state: GameState
) -> bool | None:
    if target.hidden or source.hidden:
        return False
    return None


def _schrodinger_visual(card: Card, pile: Pile | None) -> Mapping[str, Any] | None:
    if pile is not None and pile.hidden:
        return {"face_up": False}
    return None


def _revolving_door_move_complete(state: GameState, context: MoveContext) -> Mapping[str, Any] | None:
    pile = state.piles.get(context.target)
    if pile is None or pile.kind != "foundation" or not context.cards:
        return None
    if not rng.chance(0.2, rng.current()):
        return None
    played = context.cards[0]
    if pile.top is None or pile.top.id != played.id:
        return None
    deck = state.deck
    return _with_piles(
        state,
        pile.with_cards(pile.cards[:-1]),
        deck.with_cards((played.flipped(False),) + deck.cards),
    )


# -------- Blessings & exploits --------


def _jester_activate(state: GameState, active: tuple[str, ...]) -> Mapping[str, Any]:
    wild = Card(id=JESTER_CARD_ID, suit="special", rank=0, face_up=True, flags=CardFlags(wild=True, persistent=True))
    return _add_to_hand(state, wild)


def _jester_start(state: GameState) -> Mapping[str, Any]:
    return _jester_activate(state, state.active_effects)


def _jester_can_move(
    cards: tuple[Card, ...], source: Pile, target: Pile, allowed: bool, state: GameState
) -> bool | None:
    if len(cards) == 1 and cards[0].is_unresolved_wild and target.kind in ("tableau", "foundation"):
        return not target.locked and wild_lock_for(target, state.order) is not None
    return None


def _compound_interest_start(state: GameState) -> Mapping[str, Any]:
    return {"coins": state.coins + math.floor(state.coins * 0.1)}


def register_builtins(registry: EffectRegistry) -> None:
    def exorcism_activate(state: GameState, active: tuple[str, ...]) -> Mapping[str, Any]:
        keep = []
        for eid in active:
            eff = registry.find(eid)
            if eff is not None and eff.is_curse:
                continue
            keep.append(eid)
        keep.append("exorcism")
        piles = [replace(p, locked=False, hidden=False) for p in state.piles.values() if p.locked or p.hidden]
        return {**_with_piles(state, *piles), NEW_ACTIVE_EFFECTS: tuple(keep)}

    registry.register(
        Effect(
            id="herding_cats",
            name="Herding Cats",
            category="curse",
            description="A third of tableau plays wander off to another legal tableau.",
            intercept_move=_herding_cats_intercept,
        )
    )
    registry.register(
        Effect(
            id="caged_bakeneko",
            name="Caged Bakeneko",
            category="curse",
            description="Three tableaus are caged. Play the key on a cage to open it.",
            on_activate=_bakeneko_activate,
            can_move=_bakeneko_can_move,
            on_move_complete=_bakeneko_move_complete,
        )
    )
    registry.register(
        Effect(
            id="schrodingers_deck",
            name="Schrodinger's Deck",
            category="curse",
            description="Two tableaus vanish. They shift every fifth move.",
            on_activate=_schrodinger_activate,
            on_move_complete=_schrodinger_move_complete,
            can_move=_schrodinger_can_move,
            transform_card_visual=_schrodinger_visual,
        )
    )
    registry.register(
        Effect(
            id="revolving_door",
            name="Revolving Door",
            category="curse",
            description="Cards played to a foundation sometimes slip back under the deck.",
            on_move_complete=_revolving_door_move_complete,
        )
    )
    registry.register(
        Effect(
            id="jester",
            name="Jester",
            category="blessing",
            description="Adds a wild card to your hand that becomes whatever it lands on.",
            on_activate=_jester_activate,
            on_encounter_start=_jester_start,
            can_move=_jester_can_move,
        )
    )
    registry.register(
        Effect(
            id="compound_interest",
            name="Compound Interest",
            category="epic",
            description="Earn 10% interest on your coins at the start of each encounter.",
            cost=80,
            on_encounter_start=_compound_interest_start,
        )
    )
    registry.register(
        Effect(
            id="exorcism",
            name="Exorcism",
            category="legendary",
            description="Banishes every active curse and frees all caged or hidden piles.",
            cost=150,
            on_activate=exorcism_activate,
        )
    )
