from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Literal, Protocol, Sequence

from . import rng as rng_mod
from .actions import (
    Action,
    BuyEffectAction,
    ChooseBlessingAction,
    ChooseWanderAction,
    CompleteLevelAction,
    DrawAction,
    FinishWanderAction,
    LeaveShopAction,
    MoveAction,
    OpenShopAction,
    PlayBlessingAction,
    PlayMinigameAction,
    ResignAction,
    ResolveWanderAction,
    ToggleEffectAction,
)
from .effects import (
    EXPLOIT_CATEGORIES,
    EffectPipeline,
    EffectRegistry,
    activate,
    active_curses,
    deactivate,
    reset_charges,
)
from .encounter import ValidMoves, attempt_move, blessing_card, deal_hand, find_valid_moves, new_board
from .rules import RankOrder
from .types import (
    Card,
    Encounter,
    EncounterRecord,
    GameState,
    MinigameResult,
    Pile,
    RunResult,
    RunSummary,
    WanderState,
)
from .wander import Wander, WanderResolver

logger = logging.getLogger(__name__)

Event = dict[str, object]
Phase = Literal[
    "home",
    "encounter",
    "level_complete",
    "blessing_select",
    "shop",
    "wander",
    "run_complete",
    "run_resigned",
]
IN_RUN: frozenset[str] = frozenset(
    {"encounter", "level_complete", "blessing_select", "shop", "wander"}
)


@dataclass(frozen=True)
class RunConfig:
    run_length: int = 15
    min_goal: int = 150
    max_goal: int = 4200
    starting_coins: int = 150
    hand_size: int = 5
    tableau_count: int = 7
    level_coin_bonus: int = 25
    default_cost: int = 50
    curse_coin_bonus: int = 50
    shop_exploits: int = 4
    shop_curses: int = 4
    blessing_choices: int = 3
    blessing_interval: int = 3
    wander_rounds: int = 2
    wander_options: int = 3
    curse_limit: int = 1
    final_curse_limit: int = 3
    ranks_as_printed: bool = False

    @property
    def order(self) -> RankOrder:
        return RankOrder(ranks_as_printed=self.ranks_as_printed)


class MinigameProvider(Protocol):
    def play(self, kind: str, rng: rng_mod.RandomSource) -> MinigameResult: ...


class RunRecorder(Protocol):
    def record_run(self, summary: RunSummary) -> None: ...


@dataclass
class StepResult:
    ok: bool
    events: list[Event]
    error: str | None = None


def _fail(msg: str) -> StepResult:
    return StepResult(ok=False, events=[], error=msg)


def score_goal(index: int, config: RunConfig) -> int:
    if config.run_length <= 1:
        return config.min_goal
    t = index / (config.run_length - 1)
    return math.floor(config.min_goal + t * (config.max_goal - config.min_goal))


def generate_run_plan(
    registry: EffectRegistry, rng: rng_mod.RandomSource, config: RunConfig = RunConfig()
) -> tuple[Encounter, ...]:
    curses = [e.id for e in registry.by_category("curse")]
    pool = rng_mod.shuffle(curses, rng)
    plan: list[Encounter] = []
    for i in range(config.run_length):
        effect_id = pool[i % len(pool)] if pool else ""
        extras: tuple[str, ...] = ()
        if i == config.run_length - 1 and pool:
            wanted = min(config.final_curse_limit - 1, len(pool) - 1)
            extras = tuple(pool[(i + k) % len(pool)] for k in range(1, wanted + 1))
        plan.append(Encounter(index=i, effect_id=effect_id, goal=score_goal(i, config), extra_effect_ids=extras))
    return tuple(plan)


@dataclass
class Game:
    """Owns the game state of one player and drives the run/encounter phases."""

    registry: EffectRegistry
    wanders: Sequence[Wander] = ()
    config: RunConfig = field(default_factory=RunConfig)
    minigames: MinigameProvider | None = None
    recorder: RunRecorder | None = None
    clock: Callable[[], float] = time.monotonic

    phase: Phase = "home"
    state: GameState = field(default_factory=GameState)
    plan: tuple[Encounter, ...] = ()
    rng: rng_mod.RandomSource = field(default_factory=rng_mod.current)
    shop: tuple[str, ...] = ()
    blessing_choices: tuple[str, ...] = ()
    last_summary: RunSummary | None = None
    action_log: list[Action] = field(default_factory=list)
    event_log: list[Event] = field(default_factory=list)
    _after_blessing: Literal["encounter", "wander"] = "encounter"
    _started_at: float = 0.0
    _curses_seen: list[str] = field(default_factory=list)

    # -------- helpers --------

    def _emit(self, event_type: str, **payload: object) -> None:
        self.event_log.append({"type": event_type, **payload})

    def _since(self, start: int) -> StepResult:
        return StepResult(ok=True, events=self.event_log[start:])

    def _wander_by_id(self, wander_id: str) -> Wander | None:
        for w in self.wanders:
            if w.id == wander_id:
                return w
        return None

    @property
    def current_encounter(self) -> Encounter | None:
        if not self.plan:
            return None
        return self.plan[self.state.run_index]

    @property
    def is_final_encounter(self) -> bool:
        return bool(self.plan) and self.state.run_index == len(self.plan) - 1

    def _curse_limit(self) -> int:
        return self.config.final_curse_limit if self.is_final_encounter else self.config.curse_limit

    # -------- queries --------

    def find_valid_moves(self, card_ids: Sequence[str], source: str) -> ValidMoves:
        return find_valid_moves(self.state, self.registry, card_ids, source)

    def select(self, card_ids: Sequence[str] | None, source: str | None = None) -> ValidMoves:
        if not card_ids or source is None:
            self.state = replace(self.state, selected_card_ids=None)
            return ValidMoves()
        self.state = replace(self.state, selected_card_ids=tuple(card_ids))
        return self.find_valid_moves(card_ids, source)

    def card_view(self, card: Card, pile: Pile | None = None) -> Card:
        return EffectPipeline.for_state(self.registry, self.state).card_view(card, pile)

    # -------- run lifecycle --------

    def start_run(self, seed: int | str | None = None) -> StepResult:
        if self.phase in IN_RUN:
            return _fail("A run is already in progress.")
        start = len(self.event_log)
        rng_mod.reset()
        if seed is not None:
            self.rng = rng_mod.Lcg(rng_mod.seed_value(seed))
            rng_mod.install(self.rng)
        else:
            self.rng = rng_mod.current()

        self.plan = generate_run_plan(self.registry, self.rng, self.config)
        self.shop = ()
        self.last_summary = None
        self._curses_seen = []
        self._started_at = self.clock()

        state = GameState(
            coins=self.config.starting_coins,
            hand_size=self.config.hand_size,
            seed=None if seed is None else str(seed),
            ranks_as_printed=self.config.ranks_as_printed,
        )
        self.state = reset_charges(self.registry, state, "run")
        self._emit("RUN_STARTED", seed=self.state.seed, encounters=len(self.plan))
        self._enter_encounter(0)

        self.blessing_choices = self._roll_blessings()
        if self.blessing_choices:
            self.phase = "blessing_select"
            self._after_blessing = "encounter"
            self._emit("BLESSING_PROMPT", choices=list(self.blessing_choices))
        else:
            self.phase = "encounter"
        return self._since(start)

    def _roll_blessings(self) -> tuple[str, ...]:
        pool = [e.id for e in self.registry.by_category("blessing") if not self.state.is_owned(e.id)]
        return tuple(rng_mod.shuffle(pool, self.rng)[: self.config.blessing_choices])

    def _enter_encounter(self, index: int) -> None:
        enc = self.plan[index]
        state = self.state
        kept = tuple(e for e in state.active_effects if not self._is_curse(e))

        queue = state.curse_queue
        curse_ids = enc.effect_ids
        if queue:
            curse_ids = (queue[0], *enc.extra_effect_ids)
            queue = queue[1:]

        goal = enc.goal
        if state.next_goal_modifier:
            goal = max(1, math.floor(goal * (1 + state.next_goal_modifier)))

        blessing_cards = [
            blessing_card(eid)
            for eid in state.owned_effects
            if self._category(eid) == "blessing" and eid not in kept
        ]
        piles = new_board(self.rng, tableau_count=self.config.tableau_count, extra_cards=blessing_cards)

        state = replace(
            state,
            piles=piles,
            score=0,
            moves=0,
            selected_card_ids=None,
            scored_tableau=frozenset(),
            scored_foundation=frozenset(),
            score_multiplier=1.0,
            coin_multiplier=1.0,
            run_index=index,
            current_score_goal=goal,
            is_level_complete=False,
            active_effects=kept,
            effect_state={},
            curse_queue=queue,
            next_goal_modifier=0.0,
            wander=replace(state.wander, phase="none", options=(), active_id=None, result_text=None),
            minigame=None,
        )
        state = reset_charges(self.registry, state, "encounter")
        for cid in curse_ids:
            if cid not in self.registry or cid in state.active_effects:
                continue
            state = activate(self.registry, state, cid)
            self._curses_seen.append(cid)
        state = EffectPipeline.for_state(self.registry, state).encounter_start(state)
        self.state = deal_hand(state, self.registry)
        self._emit("ENCOUNTER_STARTED", index=index, goal=goal, curses=list(curse_ids))
        logger.debug("Encounter %d started (goal %d, curses %s)", index, goal, curse_ids)

    def _category(self, effect_id: str) -> str | None:
        eff = self.registry.find(effect_id)
        return eff.category if eff is not None else None

    def _is_curse(self, effect_id: str) -> bool:
        return self._category(effect_id) == "curse"

    def start_next_encounter(self) -> StepResult:
        if self.phase not in ("wander", "level_complete", "shop", "blessing_select"):
            return _fail("Cannot start an encounter now.")
        if self.current_encounter is None or not self.current_encounter.completed:
            return _fail("Finish the current encounter first.")
        start = len(self.event_log)
        nxt = self.state.run_index + 1
        if nxt >= len(self.plan):
            self._finish_run("won")
            return self._since(start)
        self._enter_encounter(nxt)
        self.phase = "encounter"
        return self._since(start)

    def resign(self) -> StepResult:
        if self.phase not in IN_RUN:
            return _fail("No run in progress.")
        start = len(self.event_log)
        self._finish_run("lost")
        return self._since(start)

    def return_home(self) -> StepResult:
        if self.phase in IN_RUN:
            return _fail("Finish or resign the run first.")
        self.phase = "home"
        return StepResult(ok=True, events=[])

    def _summary(self, result: RunResult) -> RunSummary:
        records: list[EncounterRecord] = []
        last = len(self.plan) - 1
        for enc in self.plan[: self.state.run_index + 1]:
            eff = self.registry.find(enc.effect_id)
            records.append(
                EncounterRecord(
                    index=enc.index,
                    name=eff.name if eff is not None else enc.effect_id,
                    kind="boss" if enc.index == last else "curse",
                    passed=enc.completed,
                )
            )
        exploits = tuple(e for e in self.state.owned_effects if self._category(e) in EXPLOIT_CATEGORIES)
        blessings = tuple(e for e in self.state.owned_effects if self._category(e) == "blessing")
        curses = tuple(dict.fromkeys(self._curses_seen))
        return RunSummary(
            result=result,
            score=self.state.score,
            final_coins=self.state.coins,
            duration=max(0.0, self.clock() - self._started_at),
            encounters_completed=sum(1 for e in self.plan if e.completed),
            total_encounters=len(self.plan),
            exploits=exploits,
            curses=curses,
            blessings=blessings,
            encounters=tuple(records),
            seed=self.state.seed,
        )

    def _finish_run(self, result: RunResult) -> None:
        summary = self._summary(result)
        self.last_summary = summary
        self.phase = "run_complete" if result == "won" else "run_resigned"
        self._emit("RUN_ENDED", result=result, score=summary.score, coins=summary.final_coins)
        logger.info("Run ended: %s after %d encounters", result, summary.encounters_completed)
        try:
            if self.recorder is not None:
                self.recorder.record_run(summary)
        finally:
            rng_mod.reset()

    # -------- encounter actions --------

    def attempt_move(self, card_ids: Sequence[str], source: str, target: str) -> StepResult:
        if self.phase != "encounter":
            return _fail("No encounter in progress.")
        result = attempt_move(self.state, self.registry, card_ids, source, target)
        if not result.ok or result.context is None:
            return _fail("Illegal move.")
        start = len(self.event_log)
        self.state = result.state
        self._emit(
            "CARD_MOVED",
            cards=[c.id for c in result.context.cards],
            source=source,
            target=result.context.target,
            score=result.score_delta,
            coins=result.coin_delta,
        )
        if result.context.reveal:
            self._emit("CARD_REVEALED", pile=source)
        if result.minigame:
            self._emit("MINIGAME_TRIGGERED", kind=result.minigame)
        if self.state.is_level_complete:
            self.phase = "level_complete"
            self._emit("LEVEL_COMPLETE", index=self.state.run_index, score=self.state.score)
        return self._since(start)

    def discard_and_draw_hand(self) -> StepResult:
        if self.phase != "encounter":
            return _fail("No encounter in progress.")
        start = len(self.event_log)
        self.state = deal_hand(self.state, self.registry)
        self._emit("HAND_DEALT", hand=[c.id for c in self.state.hand.cards])
        if self.state.minigame is not None:
            self._emit("MINIGAME_TRIGGERED", kind=self.state.minigame.kind)
        return self._since(start)

    def play_blessing(self, card_id: str) -> StepResult:
        if self.phase != "encounter":
            return _fail("No encounter in progress.")
        hand = self.state.hand
        idx = hand.index_of(card_id)
        if idx is None or hand.cards[idx].flags.blessing_id is None:
            return _fail("That is not a blessing card in hand.")
        effect_id = hand.cards[idx].flags.blessing_id
        start = len(self.event_log)
        state = self.state.with_piles(hand.with_cards(hand.cards[:idx] + hand.cards[idx + 1 :]))
        if effect_id not in state.active_effects:
            state = activate(self.registry, state, effect_id)
        self.state = state
        self._emit("BLESSING_INVOKED", effect_id=effect_id)
        return self._since(start)

    def play_minigame(self) -> StepResult:
        pending = self.state.minigame
        if pending is None:
            return _fail("No minigame pending.")
        if self.minigames is None:
            return _fail("No minigame provider configured.")
        result = self.minigames.play(pending.kind, self.rng)
        start = len(self.event_log)
        self.state = replace(self.state, coins=max(0, self.state.coins + result.reward), minigame=None)
        self._emit("MINIGAME_RESOLVED", kind=pending.kind, outcome=result.outcome, reward=result.reward)
        return self._since(start)

    # -------- effects --------

    def toggle_effect(self, effect_id: str) -> StepResult:
        if self.phase not in IN_RUN:
            return _fail("No run in progress.")
        eff = self.registry.get(effect_id)
        start = len(self.event_log)
        if self.state.is_active(effect_id):
            if eff.category in ("curse", "passive"):
                return _fail(f"{eff.name} cannot be turned off.")
            self.state = deactivate(self.state, effect_id)
            self._emit("EFFECT_DEACTIVATED", effect_id=effect_id)
            return self._since(start)

        if not self.state.is_owned(effect_id):
            return _fail("You do not own that effect.")
        if eff.category == "blessing":
            return _fail("Blessings are invoked by playing their card.")
        if eff.is_curse and len(active_curses(self.registry, self.state)) >= self._curse_limit():
            return _fail("Another curse already holds this encounter.")
        # each switch-on is a fresh activation, so one-shot bonuses apply again
        if not self._activate_owned(effect_id):
            return _fail(f"{eff.name} has no charges left.")
        return self._since(start)

    def _activate_owned(self, effect_id: str) -> bool:
        eff = self.registry.get(effect_id)
        state = self.state
        if eff.max_charges is not None:
            left = state.charges.get(effect_id, 0)
            if left <= 0:
                return False
            state = replace(state, charges={**state.charges, effect_id: left - 1})
        self.state = activate(self.registry, state, effect_id)
        self._emit("EFFECT_ACTIVATED", effect_id=effect_id)
        return True

    def buy_effect(self, effect_id: str) -> StepResult:
        eff = self.registry.get(effect_id)
        if self.phase != "shop":
            return _fail("The shop is closed.")
        if effect_id not in self.shop:
            return _fail("That is not for sale.")
        start = len(self.event_log)
        state = self.state
        if eff.is_curse:
            owned = state.owned_effects if state.is_owned(effect_id) else (*state.owned_effects, effect_id)
            self.state = replace(
                state,
                coins=state.coins + self.config.curse_coin_bonus,
                owned_effects=owned,
                curse_queue=(*state.curse_queue, effect_id),
            )
            self._emit("CURSE_TAKEN", effect_id=effect_id, coins=self.config.curse_coin_bonus)
        else:
            if state.is_owned(effect_id):
                return _fail("Already owned.")
            cost = eff.cost or self.config.default_cost
            if state.coins < cost:
                return _fail("Not enough coins.")
            self.state = replace(state, coins=state.coins - cost, owned_effects=(*state.owned_effects, effect_id))
            self._emit("EFFECT_BOUGHT", effect_id=effect_id, cost=cost)
            if eff.category != "blessing":
                self._activate_owned(effect_id)
        self.shop = tuple(x for x in self.shop if x != effect_id)
        return self._since(start)

    # -------- between encounters --------

    def complete_level(self) -> StepResult:
        if self.phase != "level_complete":
            return _fail("The level is not complete.")
        enc = self.current_encounter
        if enc is None or enc.completed:
            return _fail("The level was already completed.")
        start = len(self.event_log)
        plan = list(self.plan)
        plan[enc.index] = replace(enc, completed=True)
        self.plan = tuple(plan)

        state = replace(self.state, coins=self.state.coins + self.config.level_coin_bonus)
        for cid in active_curses(self.registry, state):
            state = deactivate(state, cid)
        self.state = state
        self._emit("LEVEL_COMPLETED", index=enc.index, bonus=self.config.level_coin_bonus)

        if enc.index + 1 >= len(self.plan):
            self._finish_run("won")
        return self._since(start)

    def open_shop(self) -> StepResult:
        if self.phase != "level_complete":
            return _fail("The shop opens after a completed level.")
        enc = self.current_encounter
        if enc is None or not enc.completed:
            return _fail("Complete the level first.")
        start = len(self.event_log)
        if (enc.index + 1) % self.config.blessing_interval == 0:
            self.blessing_choices = self._roll_blessings()
            if self.blessing_choices:
                self.phase = "blessing_select"
                self._after_blessing = "wander"
                self._emit("BLESSING_PROMPT", choices=list(self.blessing_choices))
                return self._since(start)

        for_sale = [
            e.id
            for e in self.registry
            if not e.is_curse and not self.state.is_owned(e.id)
        ]
        curses = [e.id for e in self.registry.by_category("curse")]
        self.shop = tuple(
            rng_mod.shuffle(sorted(for_sale), self.rng)[: self.config.shop_exploits]
            + rng_mod.shuffle(curses, self.rng)[: self.config.shop_curses]
        )
        self.phase = "shop"
        self._emit("SHOP_OPENED", items=list(self.shop))
        return self._since(start)

    def leave_shop(self) -> StepResult:
        if self.phase != "shop":
            return _fail("The shop is not open.")
        start = len(self.event_log)
        self.shop = ()
        self._begin_wander_round(1)
        return self._since(start)

    def choose_blessing(self, effect_id: str | None) -> StepResult:
        if self.phase != "blessing_select":
            return _fail("No blessing to choose.")
        if effect_id is not None and effect_id not in self.blessing_choices:
            return _fail("That blessing is not on offer.")
        start = len(self.event_log)
        if effect_id is not None:
            self.state = replace(self.state, owned_effects=(*self.state.owned_effects, effect_id))
            self._emit("BLESSING_CHOSEN", effect_id=effect_id)
            if self._after_blessing == "encounter":
                self._shuffle_into_deck(blessing_card(effect_id))
        self.blessing_choices = ()
        if self._after_blessing == "encounter":
            self.phase = "encounter"
        else:
            self._begin_wander_round(1)
        return self._since(start)

    def _shuffle_into_deck(self, card: Card) -> None:
        deck = self.state.deck
        at = rng_mod.randint(0, len(deck.cards), self.rng)
        self.state = self.state.with_piles(deck.with_cards(deck.cards[:at] + (card,) + deck.cards[at:]))

    # -------- wanders --------

    def _begin_wander_round(self, round_no: int) -> None:
        if round_no > self.config.wander_rounds:
            self._leave_wander()
            return
        seen = self.state.wander.seen
        eligible = [
            w.id
            for w in self.wanders
            if (not w.hidden or self.state.modifiers.get(w.id))
            and w.min_encounter <= self.state.run_index
            and w.id not in seen
        ]
        if not eligible:
            self._leave_wander()
            return
        options = tuple(rng_mod.shuffle(eligible, self.rng)[: self.config.wander_options])
        self.state = replace(
            self.state,
            wander=WanderState(phase="selection", round=round_no, options=options, seen=seen | set(options)),
        )
        self.phase = "wander"
        self._emit("WANDER_OFFERED", round=round_no, options=list(options))

    def _leave_wander(self) -> None:
        self.state = replace(self.state, wander=replace(self.state.wander, phase="none", options=()))
        nxt = self.state.run_index + 1
        if nxt >= len(self.plan):
            self._finish_run("won")
            return
        self._enter_encounter(nxt)
        self.phase = "encounter"

    def choose_wander_option(self, wander_id: str) -> StepResult:
        w = self.state.wander
        if self.phase != "wander" or w.phase != "selection":
            return _fail("No wander to choose.")
        if wander_id not in w.options:
            return _fail("That wander is not on offer.")
        self.state = replace(self.state, wander=replace(w, phase="active", active_id=wander_id))
        start = len(self.event_log)
        self._emit("WANDER_CHOSEN", wander_id=wander_id)
        return self._since(start)

    def resolve_wander(self, choice_index: int) -> StepResult:
        w = self.state.wander
        if self.phase != "wander" or w.phase != "active" or w.active_id is None:
            return _fail("No wander in progress.")
        wander = self._wander_by_id(w.active_id)
        if wander is None:
            raise KeyError(w.active_id)
        if not 0 <= choice_index < len(wander.choices):
            return _fail("No such choice.")
        choice = wander.choices[choice_index]
        start = len(self.event_log)
        state = WanderResolver(self.registry, self.rng).resolve(choice, self.state)
        self.state = replace(state, wander=replace(state.wander, phase="result", result_text=choice.result))
        self._emit("WANDER_RESOLVED", wander_id=wander.id, choice=choice.label, result=choice.result)
        return self._since(start)

    def finish_wander(self) -> StepResult:
        w = self.state.wander
        if self.phase != "wander" or w.phase != "result":
            return _fail("No wander result to dismiss.")
        start = len(self.event_log)
        self._begin_wander_round(w.round + 1)
        return self._since(start)

    # -------- actions --------

    def step(self, action: Action) -> StepResult:
        self.action_log.append(action)
        if isinstance(action, MoveAction):
            return self.attempt_move(action.card_ids, action.source, action.target)
        if isinstance(action, DrawAction):
            return self.discard_and_draw_hand()
        if isinstance(action, PlayBlessingAction):
            return self.play_blessing(action.card_id)
        if isinstance(action, ToggleEffectAction):
            return self.toggle_effect(action.effect_id)
        if isinstance(action, BuyEffectAction):
            return self.buy_effect(action.effect_id)
        if isinstance(action, ChooseBlessingAction):
            return self.choose_blessing(action.effect_id)
        if isinstance(action, CompleteLevelAction):
            return self.complete_level()
        if isinstance(action, OpenShopAction):
            return self.open_shop()
        if isinstance(action, LeaveShopAction):
            return self.leave_shop()
        if isinstance(action, ChooseWanderAction):
            return self.choose_wander_option(action.wander_id)
        if isinstance(action, ResolveWanderAction):
            return self.resolve_wander(action.choice_index)
        if isinstance(action, FinishWanderAction):
            return self.finish_wander()
        if isinstance(action, PlayMinigameAction):
            return self.play_minigame()
        if isinstance(action, ResignAction):
            return self.resign()
        return _fail("Unknown action.")


def replay(
    registry: EffectRegistry,
    wanders: Sequence[Wander],
    *,
    seed: int | str,
    actions: Iterable[Action],
    config: RunConfig = RunConfig(),
    minigames: MinigameProvider | None = None,
) -> Game:
    game = Game(registry=registry, wanders=wanders, config=config, minigames=minigames)
    game.start_run(seed)
    for a in actions:
        game.step(a)
    return game
