from __future__ import annotations

from dataclasses import replace

import pytest

from coronata.engine import rng
from coronata.engine.builtin import KEY_CARD_ID, SCHRODINGER_STATE, register_builtins
from coronata.engine.effects import (
    Effect,
    EffectPipeline,
    EffectRegistry,
    activate,
    active_curses,
    reset_charges,
)
from coronata.engine.encounter import attempt_move
from coronata.engine.types import SUITS, Card, GameState, MoveContext, Pile


def _c(suit: str, rank: int, up: bool = True) -> Card:
    return Card(id=f"{suit}-{rank}", suit=suit, rank=rank, face_up=up)  # type: ignore[arg-type]


def _board(tableau_count: int = 4) -> GameState:
    piles: dict[str, Pile] = {}
    for i in range(tableau_count):
        piles[f"tableau-{i}"] = Pile(id=f"tableau-{i}", kind="tableau", cards=(_c(SUITS[i % 4], 13 - i),))
    for suit in SUITS:
        piles[f"foundation-{suit}"] = Pile(id=f"foundation-{suit}", kind="foundation", accepted_suit=suit)
    piles["deck"] = Pile(id="deck", kind="deck")
    piles["hand"] = Pile(id="hand", kind="hand")
    return GameState(piles=piles)


class _Fixed:
    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


def _builtins() -> EffectRegistry:
    reg = EffectRegistry()
    register_builtins(reg)
    return reg


def _verdict(value: bool) -> object:
    return lambda cards, source, target, allowed, state: value


def test_later_categories_override_can_move() -> None:
    exploit = Effect(id="e", name="Exploit", category="exploit", can_move=_verdict(True))  # type: ignore[arg-type]
    blessing = Effect(id="b", name="Blessing", category="blessing", can_move=_verdict(False))  # type: ignore[arg-type]
    state = GameState(active_effects=("e", "b"))
    card = (_c("hearts", 5),)
    src = Pile(id="hand", kind="hand")
    dst = Pile(id="tableau-0", kind="tableau")

    for reg in (EffectRegistry([exploit, blessing]), EffectRegistry([blessing, exploit])):
        pipeline = EffectPipeline.for_state(reg, state)
        assert [e.id for e in pipeline.effects] == ["e", "b"]
        assert pipeline.can_move(card, src, dst, True, state) is False


def test_undecided_hooks_keep_the_standard_verdict() -> None:
    abstain = Effect(id="a", name="Abstain", category="exploit", can_move=lambda *args: None)
    reg = EffectRegistry([abstain])
    state = GameState(active_effects=("a",))
    pipeline = EffectPipeline.for_state(reg, state)
    src = Pile(id="hand", kind="hand")
    dst = Pile(id="tableau-0", kind="tableau")
    assert pipeline.can_move((_c("hearts", 5),), src, dst, True, state) is True
    assert pipeline.can_move((_c("hearts", 5),), src, dst, False, state) is False


def test_pipeline_order_and_unknown_ids() -> None:
    reg = EffectRegistry(
        [
            Effect(id="z", name="Zed", category="passive"),
            Effect(id="odd", name="Odd", category="mystery"),  # type: ignore[arg-type]
            Effect(id="c2", name="Beta", category="curse"),
            Effect(id="c1", name="Alpha", category="curse"),
            Effect(id="x", name="Alpha", category="exploit"),
        ]
    )
    ordered = reg.ordered(["odd", "z", "missing", "x", "c2", "c1"])
    assert [e.id for e in ordered] == ["c1", "c2", "x", "z", "odd"]


def test_duplicate_ids_are_rejected() -> None:
    reg = EffectRegistry([Effect(id="a", name="A", category="exploit")])
    with pytest.raises(ValueError):
        reg.register(Effect(id="a", name="Again", category="curse"))


def test_score_and_coin_hooks_fold_in_order() -> None:
    reg = EffectRegistry(
        [
            Effect(id="plus", name="Plus", category="exploit", calculate_score=lambda d, c, s: d + 5),
            Effect(id="double", name="Double", category="passive", calculate_score=lambda d, c, s: d * 2),
            Effect(id="tip", name="Tip", category="exploit", calculate_coin_transaction=lambda d, c, s: d + 1),
        ]
    )
    state = GameState(active_effects=("double", "plus", "tip"))
    pipeline = EffectPipeline.for_state(reg, state)
    ctx = MoveContext(source="hand", target="tableau-0", cards=())
    assert pipeline.score(3, ctx, state) == 16
    assert pipeline.coins(0, ctx, state) == 1


def test_score_multiplier_applies_after_hooks() -> None:
    reg = EffectRegistry([Effect(id="plus", name="Plus", category="exploit", calculate_score=lambda d, c, s: d + 1)])
    state = _board().with_piles(Pile(id="tableau-0", kind="tableau", cards=(_c("hearts", 1),)))
    state = replace(state, active_effects=("plus",), score_multiplier=1.5)
    result = attempt_move(state, reg, ["hearts-1"], "tableau-0", "foundation-hearts")
    assert result.ok
    assert result.score_delta == 4  # floor((2 + 1) * 1.5)


def test_activation_can_rewrite_the_active_set() -> None:
    reg = EffectRegistry()
    register_builtins(reg)
    state = _board()
    locked = replace(state.pile("tableau-1"), locked=True, hidden=True)
    state = replace(state.with_piles(locked), active_effects=("herding_cats", "compound_interest"))
    state = activate(reg, state, "exorcism")
    assert state.active_effects == ("compound_interest", "exorcism")
    assert active_curses(reg, state) == []
    assert not state.pile("tableau-1").locked
    assert not state.pile("tableau-1").hidden


def test_charges_reset_by_policy() -> None:
    reg = EffectRegistry(
        [
            Effect(id="enc", name="Enc", category="exploit", max_charges=2, charge_reset="encounter"),
            Effect(id="run", name="Run", category="exploit", max_charges=1, charge_reset="run"),
        ]
    )
    state = GameState(charges={"enc": 0, "run": 0})
    assert reset_charges(reg, state, "encounter").charges == {"enc": 2, "run": 0}
    assert reset_charges(reg, state, "run").charges == {"enc": 2, "run": 1}


def test_bakeneko_cages_tableaus_until_the_key_is_used() -> None:
    reg = EffectRegistry()
    register_builtins(reg)
    with rng.seeded(11):
        state = activate(reg, _board(), "caged_bakeneko")
    caged = [p.id for p in state.piles_of("tableau") if p.locked]
    assert len(caged) == 3
    key = next(c for c in state.hand.cards if c.id == KEY_CARD_ID)
    assert key.flags.charges == 3

    pipeline = EffectPipeline.for_state(reg, state)
    target = state.pile(caged[0])
    assert not pipeline.can_move((_c("hearts", 1),), state.hand, target, True, state)

    result = attempt_move(state, reg, [KEY_CARD_ID], "hand", caged[0])
    assert result.ok
    assert not result.state.pile(caged[0]).locked
    assert KEY_CARD_ID not in [c.id for c in result.state.pile(caged[0]).cards]
    left = next(c for c in result.state.hand.cards if c.id == KEY_CARD_ID)
    assert left.flags.charges == 2


def test_move_complete_folds_patches_and_keeps_last_minigame() -> None:
    reg = EffectRegistry(
        [
            Effect(
                id="tip",
                name="Tip",
                category="exploit",
                on_move_complete=lambda s, c: {"coins": s.coins + 5, "trigger_minigame": "pinball"},
            ),
            Effect(id="quiet", name="Quiet", category="rare", on_move_complete=lambda s, c: None),
            Effect(
                id="double",
                name="Double",
                category="blessing",
                on_move_complete=lambda s, c: {"coins": s.coins * 2, "trigger_minigame": "slots"},
            ),
        ]
    )
    state = GameState(coins=1, active_effects=("double", "quiet", "tip"))
    ctx = MoveContext(source="hand", target="tableau-0", cards=())
    state, minigame = EffectPipeline.for_state(reg, state).move_complete(state, ctx)
    assert state.coins == 12
    assert minigame == "slots"


def _herding_board(**kw: object) -> GameState:
    piles = {
        "tableau-0": Pile(id="tableau-0", kind="tableau", cards=(_c("hearts", 12),)),
        "tableau-1": Pile(id="tableau-1", kind="tableau", cards=(_c("diamonds", 13),)),
        "deck": Pile(id="deck", kind="deck"),
        "hand": Pile(id="hand", kind="hand", cards=(_c("clubs", 11),)),
    }
    return GameState(piles=piles, active_effects=("herding_cats",), **kw)  # type: ignore[arg-type]


def test_herding_cats_redirects_to_another_legal_tableau() -> None:
    reg = _builtins()
    state = _herding_board()
    rng.install(_Fixed(0.0))
    try:
        result = attempt_move(state, reg, ["clubs-11"], "hand", "tableau-0")
    finally:
        rng.reset()
    # the J is not legal on the Q in default order, so only the redirect can land it
    assert result.ok
    assert result.context is not None and result.context.target == "tableau-1"
    assert result.state.pile("tableau-1").top == _c("clubs", 11)
    assert result.state.pile("tableau-0").cards == (_c("hearts", 12),)


def test_herding_cats_respects_printed_ranks() -> None:
    reg = _builtins()
    state = _herding_board(ranks_as_printed=True)
    rng.install(_Fixed(0.0))
    try:
        result = attempt_move(state, reg, ["clubs-11"], "hand", "tableau-0")
    finally:
        rng.reset()
    # as printed only the Q accepts the J, so there is nowhere else to wander to
    assert result.ok
    assert result.state.pile("tableau-0").top == _c("clubs", 11)


def test_revolving_door_sends_foundation_plays_under_the_deck() -> None:
    reg = _builtins()
    state = _board().with_piles(Pile(id="tableau-0", kind="tableau", cards=(_c("hearts", 1),)))
    state = replace(state, active_effects=("revolving_door",))

    rng.install(_Fixed(0.0))
    try:
        slipped = attempt_move(state, reg, ["hearts-1"], "tableau-0", "foundation-hearts")
    finally:
        rng.reset()
    assert slipped.ok
    assert slipped.state.pile("foundation-hearts").is_empty
    bottom = slipped.state.deck.cards[0]
    assert bottom.id == "hearts-1" and not bottom.face_up
    assert "hearts-1" in slipped.state.scored_foundation

    rng.install(_Fixed(0.9))
    try:
        kept = attempt_move(state, reg, ["hearts-1"], "tableau-0", "foundation-hearts")
    finally:
        rng.reset()
    assert [c.id for c in kept.state.pile("foundation-hearts").cards] == ["hearts-1"]


def test_schrodingers_deck_hides_two_tableaus() -> None:
    reg = _builtins()
    with rng.seeded(3):
        state = activate(reg, _board(), "schrodingers_deck")
    hidden = [p.id for p in state.piles_of("tableau") if p.hidden]
    assert len(hidden) == 2
    assert state.effect_state[SCHRODINGER_STATE] == sorted(hidden)

    pipeline = EffectPipeline.for_state(reg, state)
    target = state.pile(hidden[0])
    assert not pipeline.can_move((_c("hearts", 1),), state.hand, target, True, state)
    top = target.top
    assert top is not None and top.face_up
    assert not pipeline.card_view(top, target).face_up

    with rng.seeded(4):
        reshuffled, _ = pipeline.move_complete(replace(state, moves=5), MoveContext("tableau-0", "tableau-1", ()))
    assert len([p for p in reshuffled.piles_of("tableau") if p.hidden]) == 2
    untouched, _ = pipeline.move_complete(replace(state, moves=4), MoveContext("tableau-0", "tableau-1", ()))
    assert untouched.effect_state == state.effect_state
