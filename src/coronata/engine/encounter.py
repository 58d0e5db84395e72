from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Sequence

from . import rng as rng_mod
from .effects import EffectPipeline, EffectRegistry
from .rules import (
    is_movable_selection,
    is_standard_move_valid,
    moving_cards,
    wild_lock_for,
)
from .types import SUITS, Card, CardFlags, GameState, MoveContext, PendingMinigame, Pile, Suit

logger = logging.getLogger(__name__)

TABLEAU_COUNT = 7
PLAY_TARGETS = ("tableau", "foundation")


@dataclass(frozen=True)
class ValidMoves:
    tableau: tuple[str, ...] = ()
    foundation: tuple[str, ...] = ()

    @property
    def all(self) -> tuple[str, ...]:
        return self.tableau + self.foundation

    def __bool__(self) -> bool:
        return bool(self.tableau or self.foundation)


@dataclass(frozen=True)
class MoveResult:
    ok: bool
    state: GameState
    context: MoveContext | None = None
    score_delta: int = 0
    coin_delta: int = 0
    minigame: str | None = None


def standard_deck() -> list[Card]:
    return [Card(id=f"{suit}-{rank}", suit=suit, rank=rank) for suit in SUITS for rank in range(1, 14)]


def blessing_card(effect_id: str) -> Card:
    return Card(
        id=f"blessing-{effect_id}",
        suit="special",
        rank=0,
        flags=CardFlags(blessing_id=effect_id),
    )


def new_board(
    rng: rng_mod.RandomSource,
    *,
    tableau_count: int = TABLEAU_COUNT,
    extra_cards: Sequence[Card] = (),
) -> dict[str, Pile]:
    """Shuffle a fresh deck and deal the classic Klondike layout."""
    cards = rng_mod.shuffle(standard_deck(), rng)

    piles: dict[str, Pile] = {}
    for i in range(tableau_count):
        dealt = [cards.pop() for _ in range(i + 1)]
        dealt[-1] = dealt[-1].flipped(True)
        piles[f"tableau-{i}"] = Pile(id=f"tableau-{i}", kind="tableau", cards=tuple(dealt))

    for suit in SUITS:
        fid = f"foundation-{suit}"
        piles[fid] = Pile(id=fid, kind="foundation", accepted_suit=suit)

    if extra_cards:
        cards = rng_mod.shuffle([*cards, *extra_cards], rng)
    piles["deck"] = Pile(id="deck", kind="deck", cards=tuple(cards))
    piles["hand"] = Pile(id="hand", kind="hand")
    return piles


def deal_hand(state: GameState, registry: EffectRegistry) -> GameState:
    hand = state.hand
    deck = state.deck
    kept = tuple(c for c in hand.cards if c.retained_on_deal)
    returned = tuple(c.flipped(False) for c in hand.cards if not c.retained_on_deal)
    deck_cards = returned + deck.cards

    pipeline = EffectPipeline.for_state(registry, state)
    count = pipeline.draw_count()
    k = max(0, state.hand_size if count is None else count)
    n = min(k, len(deck_cards))
    drawn = tuple(c.flipped(True) for c in reversed(deck_cards[len(deck_cards) - n :]))
    deck_cards = deck_cards[: len(deck_cards) - n]

    state = state.with_piles(deck.with_cards(deck_cards), hand.with_cards(kept + drawn))
    context = MoveContext(source="hand", target="deck", cards=returned)
    state, minigame = pipeline.move_complete(state, context)
    if minigame:
        state = replace(state, minigame=PendingMinigame(kind=minigame))
    logger.debug("Dealt %d cards (%d retained, %d returned)", n, len(kept), len(returned))
    return state


def find_valid_moves(
    state: GameState,
    registry: EffectRegistry,
    card_ids: Sequence[str],
    source_id: str,
) -> ValidMoves:
    order = state.order
    source = state.pile(source_id)
    cards = moving_cards(source, card_ids)
    if not is_movable_selection(source, cards, order):
        return ValidMoves()

    pipeline = EffectPipeline.for_state(registry, state)
    tableau: list[str] = []
    foundation: list[str] = []
    for pile in state.piles.values():
        if pile.id == source_id or pile.kind not in PLAY_TARGETS:
            continue
        allowed = is_standard_move_valid(cards, pile, order)
        allowed = pipeline.can_move(cards, source, pile, allowed, state)
        if not allowed:
            continue
        if pile.kind == "tableau":
            tableau.append(pile.id)
        else:
            foundation.append(pile.id)
    return ValidMoves(tableau=tuple(tableau), foundation=tuple(foundation))


def wild_lock(state: GameState, target: Pile) -> tuple[int, Suit] | None:
    """Value an unresolved wild card would take on ``target``, or None if nothing fits."""
    taken = [
        p.accepted_suit
        for p in state.piles.values()
        if p.kind == "foundation" and p.id != target.id and p.accepted_suit is not None
    ]
    return wild_lock_for(target, state.order, taken=taken)


def _relocate(
    state: GameState, source: Pile, target: Pile, cards: tuple[Card, ...]
) -> tuple[Pile, Pile, tuple[Card, ...], bool]:
    moved_ids = {c.id for c in cards}
    remaining = tuple(c for c in source.cards if c.id not in moved_ids)
    reveal = False
    if source.kind == "tableau" and remaining and not remaining[-1].face_up:
        remaining = remaining[:-1] + (remaining[-1].flipped(True),)
        reveal = True

    landed: list[Card] = []
    for i, card in enumerate(cards):
        card = card.flipped(True)
        if i == 0 and card.is_unresolved_wild:
            lock = wild_lock(state, target)
            if lock is None:
                raise ValueError(f"No value for wild card on {target.id}")
            rank, suit = lock
            card = card.with_flags(locked_rank=rank, locked_suit=suit)
        landed.append(card)

    new_target = target.with_cards(target.cards + tuple(landed))
    leader_suit = landed[0].effective_suit
    if new_target.kind == "foundation" and new_target.accepted_suit is None and leader_suit in SUITS:
        new_target = replace(new_target, accepted_suit=leader_suit)
    return source.with_cards(remaining), new_target, tuple(landed), reveal


def attempt_move(
    state: GameState,
    registry: EffectRegistry,
    card_ids: Sequence[str],
    source_id: str,
    target_id: str,
) -> MoveResult:
    order = state.order
    source = state.pile(source_id)
    cards = moving_cards(source, card_ids)
    if not is_movable_selection(source, cards, order):
        return MoveResult(ok=False, state=state)

    pipeline = EffectPipeline.for_state(registry, state)
    context = pipeline.intercept(MoveContext(source=source_id, target=target_id, cards=cards), state)
    if context.target == source_id:
        return MoveResult(ok=False, state=state)
    target = state.pile(context.target)

    allowed = is_standard_move_valid(cards, target, order)
    allowed = pipeline.can_move(cards, source, target, allowed, state)
    if not allowed:
        return MoveResult(ok=False, state=state)
    if cards[0].is_unresolved_wild and wild_lock(state, target) is None:
        return MoveResult(ok=False, state=state)

    new_source, new_target, landed, reveal = _relocate(state, source, target, cards)

    leader = landed[0]
    base = 0
    scored_tableau = state.scored_tableau
    scored_foundation = state.scored_foundation
    if new_target.kind == "tableau" and leader.id not in scored_tableau:
        base = leader.effective_rank
        scored_tableau = scored_tableau | {leader.id}
    elif new_target.kind == "foundation" and leader.id not in scored_foundation:
        base = 2 * leader.effective_rank
        scored_foundation = scored_foundation | {leader.id}

    context = MoveContext(source=source_id, target=new_target.id, cards=landed, reveal=reveal)
    score_delta = math.floor(pipeline.score(base, context, state) * state.score_multiplier)
    coin_delta = math.floor(pipeline.coins(0, context, state) * state.coin_multiplier)

    moved = replace(
        state.with_piles(new_source, new_target),
        score=state.score + score_delta,
        coins=max(0, state.coins + coin_delta),
        moves=state.moves + 1,
        scored_tableau=scored_tableau,
        scored_foundation=scored_foundation,
        selected_card_ids=None,
    )
    moved, minigame = pipeline.move_complete(moved, context)
    if minigame:
        moved = replace(moved, minigame=PendingMinigame(kind=minigame))

    if not moved.is_level_complete and moved.current_score_goal > 0 and moved.score >= moved.current_score_goal:
        moved = replace(moved, is_level_complete=True)

    logger.debug(
        "Moved %s from %s to %s (+%d score, %+d coins)",
        [c.id for c in landed],
        source_id,
        new_target.id,
        score_delta,
        coin_delta,
    )
    return MoveResult(
        ok=True,
        state=moved,
        context=context,
        score_delta=score_delta,
        coin_delta=coin_delta,
        minigame=minigame,
    )
