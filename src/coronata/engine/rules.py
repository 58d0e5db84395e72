from __future__ import annotations

from typing import Sequence

from .types import MAX_RANK, SUITS, Card, Color, Pile, RankOrder, Suit

_RED: frozenset[Suit] = frozenset({"hearts", "diamonds"})
_BLACK: frozenset[Suit] = frozenset({"clubs", "spades"})

DEFAULT_ORDER = RankOrder()


def card_color(suit: Suit) -> Color | None:
    if suit in _RED:
        return "red"
    if suit in _BLACK:
        return "black"
    return None


def opposite_colors(a: Card, b: Card) -> bool:
    ca = card_color(a.effective_suit)
    cb = card_color(b.effective_suit)
    if ca is None or cb is None:
        return False
    return ca != cb


def stack_rank(rank: int, *, ranks_as_printed: bool = False) -> int:
    return RankOrder(ranks_as_printed=ranks_as_printed).stack_rank(rank)


def continues_tableau(lower: Card, upper: Card, order: RankOrder = DEFAULT_ORDER) -> bool:
    """True when ``upper`` may sit directly on top of ``lower``."""
    if not opposite_colors(lower, upper):
        return False
    return order.stack_rank(lower.effective_rank) == order.stack_rank(upper.effective_rank) + 1


def is_tableau_sequence(cards: Sequence[Card], order: RankOrder = DEFAULT_ORDER) -> bool:
    if any(not c.face_up for c in cards):
        return False
    for lower, upper in zip(cards, cards[1:]):
        if not continues_tableau(lower, upper, order):
            return False
    return True


def foundation_accepts_suit(pile: Pile, suit: Suit) -> bool:
    if suit not in SUITS:
        return False
    if pile.accepted_suit is None:
        return True
    return pile.accepted_suit == suit


def is_standard_move_valid(
    moving: Sequence[Card], target: Pile, order: RankOrder = DEFAULT_ORDER
) -> bool:
    if not moving:
        return False
    leader = moving[0]
    top = target.top

    if target.kind == "tableau":
        if top is None:
            return order.stack_rank(leader.effective_rank) == order.max_stack_rank
        return continues_tableau(top, leader, order)

    if target.kind == "foundation":
        if len(moving) > 1:
            return False
        if top is None:
            return leader.effective_rank == 1 and foundation_accepts_suit(
                target, leader.effective_suit
            )
        return (
            leader.effective_suit == top.effective_suit
            and leader.effective_rank == top.effective_rank + 1
        )

    return False


def selectable(cards: Sequence[Card]) -> bool:
    return bool(cards) and all(c.face_up and not c.flags.locked for c in cards)


def moving_cards(source: Pile, card_ids: Sequence[str]) -> tuple[Card, ...]:
    wanted = set(card_ids)
    return tuple(c for c in source.cards if c.id in wanted)


def is_movable_selection(
    source: Pile, cards: Sequence[Card], order: RankOrder = DEFAULT_ORDER
) -> bool:
    if not selectable(cards):
        return False
    if source.kind in ("tableau", "foundation") and tuple(source.cards[-len(cards) :]) != tuple(cards):
        # only the top run of a pile can be picked up
        return False
    if len(cards) == 1:
        return True
    if source.kind != "tableau":
        return False
    return is_tableau_sequence(cards, order)


def wild_lock_for(
    target: Pile, order: RankOrder = DEFAULT_ORDER, *, taken: Sequence[Suit] = ()
) -> tuple[int, Suit] | None:
    """Rank and suit an unresolved wild card takes when it lands on ``target``.

    Returns None when no card could legally continue the pile: a finished foundation,
    or a tableau topped by its lowest card.
    """
    top = target.top
    if target.kind == "foundation":
        if top is None:
            if target.accepted_suit is not None:
                return 1, target.accepted_suit
            free = [s for s in SUITS if s not in taken]
            return 1, (free[0] if free else SUITS[0])
        if top.effective_rank >= MAX_RANK or top.effective_suit not in SUITS:
            return None
        return top.effective_rank + 1, top.effective_suit

    if top is None:
        return order.highest_rank, SUITS[0]
    color = card_color(top.effective_suit)
    below = order.stack_rank(top.effective_rank) - 1
    if below < 1 or color is None:
        return None
    suit = next(s for s in SUITS if card_color(s) != color)
    return order.rank_for(below), suit
