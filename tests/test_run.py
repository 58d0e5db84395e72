from __future__ import annotations

from dataclasses import replace

from coronata.engine import rng
from coronata.engine.effects import active_curses
from coronata.engine.run import Game, RunConfig, score_goal
from coronata.engine.types import PendingMinigame, Pile, RunSummary
from coronata.paths import get_paths
from coronata.services.content import ContentService
from coronata.services.minigames import ChanceMinigames


class _Recorder:
    def __init__(self) -> None:
        self.runs: list[RunSummary] = []

    def record_run(self, summary: RunSummary) -> None:
        self.runs.append(summary)


def _game(**kw: object) -> Game:
    paths = get_paths()
    content = ContentService(paths.data_dir, paths.schema_dir)
    return Game(
        registry=content.load_effects(),
        wanders=content.load_wanders(),
        minigames=ChanceMinigames(),
        clock=lambda: 0.0,
        **kw,  # type: ignore[arg-type]
    )


def _start(game: Game, seed: int = 7) -> None:
    assert game.start_run(seed).ok
    if game.phase == "blessing_select":
        assert game.choose_blessing(None).ok
    assert game.phase == "encounter"


def _win_encounter(game: Game) -> None:
    game.state = replace(game.state, score=game.state.current_score_goal, is_level_complete=True)
    game.phase = "level_complete"


def _through_wanders(game: Game) -> None:
    while game.phase == "wander":
        w = game.state.wander
        if w.phase == "selection":
            assert game.choose_wander_option(w.options[0]).ok
        elif w.phase == "active":
            assert game.resolve_wander(0).ok
        else:
            assert game.finish_wander().ok


def _next_encounter(game: Game) -> None:
    _win_encounter(game)
    assert game.complete_level().ok
    assert game.open_shop().ok
    if game.phase == "shop":
        assert game.leave_shop().ok
    elif game.phase == "blessing_select":
        assert game.choose_blessing(None).ok
    _through_wanders(game)


def test_goals_scale_linearly() -> None:
    config = RunConfig()
    assert score_goal(0, config) == 150
    assert score_goal(14, config) == 4200
    assert score_goal(7, config) == 2175


def test_start_run_offers_a_blessing_first() -> None:
    game = _game()
    assert game.start_run(3).ok
    assert game.phase == "blessing_select"
    assert len(game.blessing_choices) == 3
    chosen = game.blessing_choices[0]
    assert game.choose_blessing(chosen).ok
    assert game.phase == "encounter"
    assert chosen in game.state.owned_effects
    assert f"blessing-{chosen}" in [c.id for c in game.state.deck.cards]
    assert not game.start_run(4).ok


def test_encounter_starts_with_its_curse() -> None:
    game = _game()
    _start(game)
    curse = game.plan[0].effect_id
    assert game.state.is_active(curse)
    assert active_curses(game.registry, game.state) == [curse]
    drawn = [c for c in game.state.hand.cards if c.suit != "special"]
    assert len(drawn) == (3 if curse == "famine" else 5)
    if curse != "inflation":
        assert game.state.current_score_goal == 150


def test_curses_cannot_be_toggled_off_or_stacked() -> None:
    game = _game()
    _start(game)
    curse = game.plan[0].effect_id
    assert not game.toggle_effect(curse).ok
    assert game.state.is_active(curse)

    other = next(e.id for e in game.registry.by_category("curse") if e.id != curse)
    game.state = replace(game.state, owned_effects=(*game.state.owned_effects, other))
    result = game.toggle_effect(other)
    assert not result.ok
    assert not game.state.is_active(other)


def test_passives_stay_on_and_blessings_need_their_card() -> None:
    game = _game()
    _start(game)
    game.state = replace(game.state, owned_effects=("pocket_change", "lucky_charm"))
    assert game.toggle_effect("pocket_change").ok
    assert game.state.is_active("pocket_change")
    assert not game.toggle_effect("pocket_change").ok
    assert not game.toggle_effect("lucky_charm").ok


def test_charged_exploit_spends_a_charge() -> None:
    game = _game()
    _start(game)
    game.state = replace(game.state, owned_effects=("knock_on_wood",))
    assert game.state.charges["knock_on_wood"] == 2
    assert game.toggle_effect("knock_on_wood").ok
    assert game.state.charges["knock_on_wood"] == 1
    assert game.toggle_effect("knock_on_wood").ok  # toggles off
    assert game.toggle_effect("knock_on_wood").ok
    assert game.state.charges["knock_on_wood"] == 0
    assert game.toggle_effect("knock_on_wood").ok
    assert not game.toggle_effect("knock_on_wood").ok


def test_playing_a_blessing_card_activates_it() -> None:
    game = _game()
    assert game.start_run(3).ok
    chosen = game.blessing_choices[0]
    game.choose_blessing(chosen)
    card_id = f"blessing-{chosen}"
    deck = game.state.deck
    card = next(c for c in deck.cards if c.id == card_id)
    game.state = game.state.with_piles(
        deck.with_cards(tuple(c for c in deck.cards if c.id != card_id)),
        game.state.hand.with_cards((*game.state.hand.cards, card.flipped(True))),
    )
    assert game.play_blessing(card_id).ok
    assert game.state.is_active(chosen)
    assert card_id not in [c.id for c in game.state.all_cards()]


def test_completing_a_level_pays_and_lifts_the_curse() -> None:
    game = _game()
    _start(game)
    coins = game.state.coins
    assert not game.complete_level().ok
    _win_encounter(game)
    assert game.complete_level().ok
    assert game.plan[0].completed
    assert game.state.coins == coins + 25
    assert active_curses(game.registry, game.state) == []
    assert not game.complete_level().ok


def test_shop_buying_and_curse_deals() -> None:
    game = _game()
    _start(game)
    _win_encounter(game)
    game.complete_level()
    assert game.open_shop().ok
    assert game.phase == "shop"

    items = [game.registry.get(i) for i in game.shop]
    exploit = next(e for e in items if not e.is_curse)
    curse = next(e for e in items if e.is_curse)
    assert sum(1 for e in items if not e.is_curse) <= 4
    assert sum(1 for e in items if e.is_curse) <= 4

    game.state = replace(game.state, coins=0)
    assert not game.buy_effect(exploit.id).ok
    game.state = replace(game.state, coins=1000)
    assert game.buy_effect(exploit.id).ok
    assert exploit.id in game.state.owned_effects
    assert exploit.id not in game.shop
    if exploit.category != "blessing":
        assert game.state.is_active(exploit.id)

    coins = game.state.coins
    assert game.buy_effect(curse.id).ok
    assert game.state.coins == coins + 50
    assert game.state.curse_queue == (curse.id,)

    assert game.leave_shop().ok
    _through_wanders(game)
    assert game.phase == "encounter"
    assert game.state.run_index == 1
    assert game.state.is_active(curse.id)
    assert curse.id not in game.state.curse_queue


def test_wander_rounds_never_repeat_an_event() -> None:
    game = _game()
    _start(game)
    _win_encounter(game)
    game.complete_level()
    game.open_shop()
    game.leave_shop()

    offered: list[str] = []
    for round_no in (1, 2):
        w = game.state.wander
        assert game.phase == "wander"
        assert w.phase == "selection" and w.round == round_no
        assert 0 < len(w.options) <= 3
        assert not set(w.options) & set(offered)
        for wid in w.options:
            wander = next(x for x in game.wanders if x.id == wid)
            assert not wander.hidden or game.state.modifiers.get(wid)
            assert wander.min_encounter <= game.state.run_index
        offered.extend(w.options)
        assert not game.resolve_wander(0).ok
        assert game.choose_wander_option(w.options[0]).ok
        assert game.resolve_wander(0).ok
        assert game.state.wander.phase == "result"
        assert game.finish_wander().ok
    assert game.phase == "encounter"
    assert game.state.run_index == 1


def test_every_third_level_offers_a_blessing() -> None:
    game = _game()
    _start(game)
    _next_encounter(game)
    _next_encounter(game)
    assert game.state.run_index == 2
    _win_encounter(game)
    game.complete_level()
    assert game.open_shop().ok
    assert game.phase == "blessing_select"
    assert all(not game.state.is_owned(b) for b in game.blessing_choices)
    assert game.choose_blessing(game.blessing_choices[0]).ok
    assert game.phase == "wander"


def test_final_encounter_carries_extra_curses_and_ends_the_run() -> None:
    recorder = _Recorder()
    game = _game(config=RunConfig(run_length=2), recorder=recorder)
    _start(game)
    assert game.plan[-1].extra_effect_ids
    _next_encounter(game)
    assert game.is_final_encounter
    curses = active_curses(game.registry, game.state)
    assert 1 < len(curses) <= 3

    _win_encounter(game)
    assert game.complete_level().ok
    assert game.phase == "run_complete"
    assert recorder.runs[-1].result == "won"
    assert recorder.runs[-1].encounters_completed == 2
    assert rng.is_default()


def test_resign_reports_and_resets_the_rng() -> None:
    recorder = _Recorder()
    game = _game(recorder=recorder)
    _start(game, seed=99)
    assert not rng.is_default()
    result = game.resign()
    assert result.ok
    assert [e["type"] for e in result.events] == ["RUN_ENDED"]
    assert game.phase == "run_resigned"
    assert rng.is_default()
    summary = recorder.runs[0]
    assert summary.result == "lost"
    assert summary.seed == "99"
    assert summary.encounters_completed == 0
    assert summary.curses == (game.plan[0].effect_id,)
    assert not game.resign().ok
    assert game.return_home().ok
    assert game.phase == "home"


def test_printed_ranks_reach_every_move_check() -> None:
    game = _game(config=RunConfig(ranks_as_printed=True))
    _start(game)
    assert game.state.ranks_as_printed

    state = replace(game.state, active_effects=())
    wanted = {"spades-13", "hearts-12"}
    pulled = [c.flipped(True) for c in state.all_cards() if c.id in wanted]
    piles = {pid: p.with_cards(tuple(c for c in p.cards if c.id not in wanted)) for pid, p in state.piles.items()}
    cleared = piles["tableau-0"].cards
    piles["deck"] = piles["deck"].with_cards(tuple(c.flipped(False) for c in cleared) + piles["deck"].cards)
    piles["tableau-0"] = Pile(id="tableau-0", kind="tableau")
    piles["hand"] = piles["hand"].with_cards(tuple(pulled))
    game.state = replace(state, piles=piles)

    assert "tableau-0" not in game.find_valid_moves(["hearts-12"], "hand").tableau
    assert "tableau-0" in game.find_valid_moves(["spades-13"], "hand").tableau
    assert not game.attempt_move(["hearts-12"], "hand", "tableau-0").ok
    assert game.attempt_move(["spades-13"], "hand", "tableau-0").ok
    top = game.state.pile("tableau-0").top
    assert top is not None and top.id == "spades-13"


def test_reactivating_an_effect_runs_its_activation_again() -> None:
    game = _game()
    _start(game)
    game.state = replace(game.state, owned_effects=(*game.state.owned_effects, "golden_touch"))
    base = game.state.score_multiplier

    assert game.toggle_effect("golden_touch").ok
    assert game.state.score_multiplier == base * 1.5
    assert game.toggle_effect("golden_touch").ok
    assert not game.state.is_active("golden_touch")
    # switching back on pays the one-shot bonus a second time
    assert game.toggle_effect("golden_touch").ok
    assert game.state.score_multiplier == base * 1.5 * 1.5


def test_pending_minigame_is_announced_then_played_once() -> None:
    game = _game()
    _start(game)
    game.state = replace(game.state, minigame=PendingMinigame(kind="slots"))

    dealt = game.discard_and_draw_hand()
    assert dealt.ok
    assert {"type": "MINIGAME_TRIGGERED", "kind": "slots"} in dealt.events

    before = game.state.coins
    played = game.play_minigame()
    assert played.ok
    resolved = played.events[-1]
    assert resolved["type"] == "MINIGAME_RESOLVED"
    assert game.state.coins == max(0, before + int(resolved["reward"]))  # type: ignore[call-overload]
    assert game.state.minigame is None
    assert not game.play_minigame().ok
