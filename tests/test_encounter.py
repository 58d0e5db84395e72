from __future__ import annotations

from coronata.engine.builtin import JESTER_CARD_ID, register_builtins
from coronata.engine.effects import Effect, EffectRegistry
from coronata.engine.encounter import attempt_move, deal_hand, find_valid_moves, new_board
from coronata.engine.rng import Lcg
from coronata.engine.rules import is_standard_move_valid
from coronata.engine.types import SUITS, Card, CardFlags, GameState, Pile


def _c(suit: str, rank: int, up: bool = True) -> Card:
    return Card(id=f"{suit}-{rank}", suit=suit, rank=rank, face_up=up)  # type: ignore[arg-type]


def _state(tableaus: list[list[Card]], hand: list[Card] = [], deck: list[Card] = [], **kw: object) -> GameState:
    piles: dict[str, Pile] = {}
    for i, cards in enumerate(tableaus):
        piles[f"tableau-{i}"] = Pile(id=f"tableau-{i}", kind="tableau", cards=tuple(cards))
    for suit in SUITS:
        piles[f"foundation-{suit}"] = Pile(id=f"foundation-{suit}", kind="foundation", accepted_suit=suit)
    piles["deck"] = Pile(id="deck", kind="deck", cards=tuple(deck))
    piles["hand"] = Pile(id="hand", kind="hand", cards=tuple(hand))
    return GameState(piles=piles, **kw)  # type: ignore[arg-type]


def test_new_board_deals_klondike_layout() -> None:
    piles = new_board(Lcg(5))
    for i in range(7):
        pile = piles[f"tableau-{i}"]
        assert len(pile.cards) == i + 1
        assert pile.cards[-1].face_up
        assert not any(c.face_up for c in pile.cards[:-1])
    assert len(piles["deck"].cards) == 52 - 28
    assert piles["hand"].is_empty
    assert piles["foundation-clubs"].accepted_suit == "clubs"


def test_each_card_scores_once_per_destination_kind() -> None:
    state = _state([[_c("clubs", 10)], [_c("spades", 10)], [_c("hearts", 9)]])
    reg = EffectRegistry()

    first = attempt_move(state, reg, ["hearts-9"], "tableau-2", "tableau-0")
    assert first.ok
    assert first.score_delta == 9
    assert first.state.score == 9

    second = attempt_move(first.state, reg, ["hearts-9"], "tableau-0", "tableau-1")
    assert second.ok
    assert second.score_delta == 0
    assert second.state.score == 9
    assert second.state.moves == 2


def test_foundation_play_scores_double_rank() -> None:
    state = _state([[_c("hearts", 1)], [_c("hearts", 2)]])
    reg = EffectRegistry()
    first = attempt_move(state, reg, ["hearts-1"], "tableau-0", "foundation-hearts")
    second = attempt_move(first.state, reg, ["hearts-2"], "tableau-1", "foundation-hearts")
    assert first.score_delta == 2
    assert second.score_delta == 4
    assert [c.id for c in second.state.pile("foundation-hearts").cards] == ["hearts-1", "hearts-2"]
    assert second.state.scored_foundation == frozenset({"hearts-1", "hearts-2"})


def test_moving_off_a_hidden_card_reveals_it() -> None:
    state = _state([[_c("diamonds", 5, up=False), _c("clubs", 9)], [_c("hearts", 10)]])
    result = attempt_move(state, EffectRegistry(), ["clubs-9"], "tableau-0", "tableau-1")
    assert result.ok
    assert result.context is not None and result.context.reveal
    assert result.state.pile("tableau-0").cards[-1].face_up


def test_illegal_move_changes_nothing() -> None:
    state = _state([[_c("clubs", 9)], [_c("spades", 10)]])
    result = attempt_move(state, EffectRegistry(), ["clubs-9"], "tableau-0", "tableau-1")
    assert not result.ok
    assert result.state is state


def test_moves_keep_the_card_pool() -> None:
    state = _state(
        [[_c("diamonds", 5, up=False), _c("clubs", 9)], [_c("hearts", 10)], [_c("spades", 1)]],
        hand=[_c("hearts", 1)],
        deck=[_c("clubs", 2, up=False)],
    )
    before = sorted(c.id for c in state.all_cards())
    reg = EffectRegistry()
    for ids, src, dst in [
        (["clubs-9"], "tableau-0", "tableau-1"),
        (["spades-1"], "tableau-2", "foundation-spades"),
        (["hearts-1"], "hand", "foundation-hearts"),
    ]:
        result = attempt_move(state, reg, ids, src, dst)
        assert result.ok
        state = result.state
    assert sorted(c.id for c in state.all_cards()) == before


def test_find_valid_moves_is_pure() -> None:
    state = _state([[_c("hearts", 1)], [_c("diamonds", 2)], []])
    reg = EffectRegistry()
    a = find_valid_moves(state, reg, ["hearts-1"], "tableau-0")
    b = find_valid_moves(state, reg, ["hearts-1"], "tableau-0")
    assert a == b
    assert a.foundation == ("foundation-hearts",)
    assert a.tableau == ()
    assert state.pile("tableau-0").cards[0].id == "hearts-1"


def test_deal_hand_keeps_persistent_and_charged_cards() -> None:
    wild = Card(id="wild", suit="special", rank=0, face_up=True, flags=CardFlags(wild=True, persistent=True))
    key = Card(id="key", suit="special", rank=0, face_up=True, flags=CardFlags(key=True, charges=2))
    deck = [_c("spades", r, up=False) for r in range(1, 7)]
    state = _state([], hand=[wild, _c("clubs", 2), key], deck=deck)

    dealt = deal_hand(state, EffectRegistry())
    hand_ids = [c.id for c in dealt.hand.cards]
    assert hand_ids[:2] == ["wild", "key"]
    assert hand_ids[2:] == ["spades-6", "spades-5", "spades-4", "spades-3", "spades-2"]
    assert all(c.face_up for c in dealt.hand.cards)
    # discarded cards go face down under the deck
    assert [c.id for c in dealt.deck.cards] == ["clubs-2", "spades-1"]
    assert not dealt.deck.cards[0].face_up


def test_draw_count_override_takes_the_largest() -> None:
    reg = EffectRegistry(
        [
            Effect(id="famine", name="Famine", category="curse", draw_count=3),
            Effect(id="plenty", name="Plenty", category="exploit", draw_count=4),
        ]
    )
    deck = [_c("spades", r, up=False) for r in range(1, 11)]
    state = _state([], deck=deck, active_effects=("famine",))
    assert len(deal_hand(state, reg).hand.cards) == 3
    state = _state([], deck=deck, active_effects=("famine", "plenty"))
    assert len(deal_hand(state, reg).hand.cards) == 4


def test_wild_card_locks_to_what_it_lands_on() -> None:
    reg = EffectRegistry()
    register_builtins(reg)
    wild = Card(id=JESTER_CARD_ID, suit="special", rank=0, face_up=True, flags=CardFlags(wild=True, persistent=True))
    state = _state([[_c("spades", 9)]], hand=[wild], active_effects=("jester",))

    result = attempt_move(state, reg, [JESTER_CARD_ID], "hand", "tableau-0")
    assert result.ok
    landed = result.state.pile("tableau-0").top
    assert landed is not None
    assert (landed.effective_rank, landed.effective_suit) == (8, "hearts")
    assert is_standard_move_valid([_c("clubs", 7)], result.state.pile("tableau-0"))


def test_wild_ace_binds_an_open_foundation() -> None:
    reg = EffectRegistry()
    register_builtins(reg)
    wild = Card(id=JESTER_CARD_ID, suit="special", rank=0, face_up=True, flags=CardFlags(wild=True, persistent=True))
    state = _state([], hand=[wild], active_effects=("jester",))
    extra = Pile(id="foundation-extra-0", kind="foundation")
    state = state.with_piles(extra)

    result = attempt_move(state, reg, [JESTER_CARD_ID], "hand", "foundation-extra-0")
    assert result.ok
    pile = result.state.pile("foundation-extra-0")
    assert pile.top is not None and pile.top.effective_rank == 1
    # every suit is already bound, so the wild falls back to hearts
    assert pile.accepted_suit == "hearts"


def test_wild_card_is_refused_where_nothing_can_follow() -> None:
    reg = EffectRegistry()
    register_builtins(reg)
    wild = Card(id=JESTER_CARD_ID, suit="special", rank=0, face_up=True, flags=CardFlags(wild=True, persistent=True))
    state = _state([[_c("spades", 1)]], hand=[wild], active_effects=("jester",))
    full = Pile(
        id="foundation-hearts",
        kind="foundation",
        cards=tuple(_c("hearts", r) for r in range(1, 14)),
        accepted_suit="hearts",
    )
    state = state.with_piles(full)

    valid = find_valid_moves(state, reg, [JESTER_CARD_ID], "hand")
    assert "tableau-0" not in valid.tableau
    assert "foundation-hearts" not in valid.foundation
    assert "foundation-clubs" in valid.foundation

    on_full = attempt_move(state, reg, [JESTER_CARD_ID], "hand", "foundation-hearts")
    assert not on_full.ok
    assert len(on_full.state.pile("foundation-hearts").cards) == 13
    on_ace = attempt_move(state, reg, [JESTER_CARD_ID], "hand", "tableau-0")
    assert not on_ace.ok
    assert [c.id for c in on_ace.state.pile("tableau-0").cards] == ["spades-1"]


def test_empty_tableau_follows_the_state_rank_order() -> None:
    reg = EffectRegistry()
    hand = [_c("spades", 13), _c("hearts", 12)]
    default = _state([[]], hand=hand)
    printed = _state([[]], hand=hand, ranks_as_printed=True)

    assert attempt_move(default, reg, ["hearts-12"], "hand", "tableau-0").ok
    assert not attempt_move(default, reg, ["spades-13"], "hand", "tableau-0").ok
    assert attempt_move(printed, reg, ["spades-13"], "hand", "tableau-0").ok
    assert not attempt_move(printed, reg, ["hearts-12"], "hand", "tableau-0").ok
