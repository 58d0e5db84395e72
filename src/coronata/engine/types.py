from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping

Suit = Literal["hearts", "diamonds", "clubs", "spades", "special"]
Color = Literal["red", "black"]
PileKind = Literal["deck", "hand", "foundation", "tableau"]
Category = Literal[
    "curse", "exploit", "epic", "legendary", "rare", "uncommon", "blessing", "passive"
]
Outcome = Literal["critical_win", "win", "partial_win", "draw", "loss", "critical_loss"]
WanderPhase = Literal["none", "selection", "active", "result"]
RunResult = Literal["won", "lost"]

SUITS: tuple[Suit, ...] = ("hearts", "diamonds", "clubs", "spades")
OUTCOMES: tuple[Outcome, ...] = (
    "critical_win",
    "win",
    "partial_win",
    "draw",
    "loss",
    "critical_loss",
)

MAX_RANK = 13


@dataclass(frozen=True)
class RankOrder:
    """Tableau build order.

    The default order puts the Queen on top (Q,K,J,10..A). With ``ranks_as_printed``
    the King is highest as on the printed cards.
    """

    ranks_as_printed: bool = False

    def stack_rank(self, rank: int) -> int:
        if self.ranks_as_printed:
            return rank
        if rank == 12:
            return 13
        if rank == 13:
            return 12
        return rank

    def rank_for(self, stack_rank: int) -> int:
        # the remap is its own inverse
        return self.stack_rank(stack_rank)

    @property
    def max_stack_rank(self) -> int:
        return MAX_RANK

    @property
    def highest_rank(self) -> int:
        return self.rank_for(MAX_RANK)


@dataclass(frozen=True)
class CardFlags:
    locked: bool = False
    wild: bool = False
    key: bool = False
    persistent: bool = False
    charges: int = 0
    locked_rank: int | None = None
    locked_suit: Suit | None = None
    blessing_id: str | None = None
    # visual only
    show_lock: bool = False
    hide_rank: bool = False


@dataclass(frozen=True)
class Card:
    id: str
    suit: Suit
    rank: int
    face_up: bool = False
    flags: CardFlags = CardFlags()

    @property
    def effective_rank(self) -> int:
        if self.flags.locked_rank is not None:
            return self.flags.locked_rank
        return self.rank

    @property
    def effective_suit(self) -> Suit:
        if self.flags.locked_suit is not None:
            return self.flags.locked_suit
        return self.suit

    @property
    def is_unresolved_wild(self) -> bool:
        return self.flags.wild and self.flags.locked_rank is None

    @property
    def retained_on_deal(self) -> bool:
        return self.flags.persistent or self.flags.charges > 0

    def with_flags(self, **changes: Any) -> "Card":
        return replace(self, flags=replace(self.flags, **changes))

    def flipped(self, face_up: bool) -> "Card":
        if self.face_up == face_up:
            return self
        return replace(self, face_up=face_up)


@dataclass(frozen=True)
class Pile:
    id: str
    kind: PileKind
    cards: tuple[Card, ...] = ()
    locked: bool = False
    hidden: bool = False
    accepted_suit: Suit | None = None

    @property
    def top(self) -> Card | None:
        return self.cards[-1] if self.cards else None

    @property
    def is_empty(self) -> bool:
        return not self.cards

    def with_cards(self, cards: tuple[Card, ...]) -> "Pile":
        return replace(self, cards=cards)

    def index_of(self, card_id: str) -> int | None:
        for i, c in enumerate(self.cards):
            if c.id == card_id:
                return i
        return None


@dataclass(frozen=True)
class MoveContext:
    source: str
    target: str
    cards: tuple[Card, ...]
    reveal: bool = False


@dataclass(frozen=True)
class Encounter:
    index: int
    effect_id: str
    goal: int
    extra_effect_ids: tuple[str, ...] = ()
    completed: bool = False

    @property
    def effect_ids(self) -> tuple[str, ...]:
        ids = (self.effect_id, *self.extra_effect_ids)
        return tuple(i for i in ids if i)


@dataclass(frozen=True)
class MinigameResult:
    outcome: Outcome
    reward: int
    text: str


@dataclass(frozen=True)
class PendingMinigame:
    kind: str


@dataclass(frozen=True)
class WanderState:
    phase: WanderPhase = "none"
    round: int = 0
    options: tuple[str, ...] = ()
    active_id: str | None = None
    result_text: str | None = None
    seen: frozenset[str] = frozenset()


@dataclass(frozen=True)
class GameState:
    """Snapshot of one encounter in progress plus the run resources it carries."""

    piles: Mapping[str, Pile] = field(default_factory=dict)
    score: int = 0
    coins: int = 0
    moves: int = 0
    selected_card_ids: tuple[str, ...] | None = None
    scored_tableau: frozenset[str] = frozenset()
    scored_foundation: frozenset[str] = frozenset()
    charges: Mapping[str, int] = field(default_factory=dict)
    score_multiplier: float = 1.0
    coin_multiplier: float = 1.0
    run_index: int = 0
    current_score_goal: int = 0
    is_level_complete: bool = False
    seed: str | None = None
    ranks_as_printed: bool = False
    owned_effects: tuple[str, ...] = ()
    active_effects: tuple[str, ...] = ()
    effect_state: Mapping[str, Any] = field(default_factory=dict)
    hand_size: int = 5
    shuffles: int = 0
    discards: int = 0
    curse_queue: tuple[str, ...] = ()
    next_goal_modifier: float = 0.0
    modifiers: Mapping[str, Any] = field(default_factory=dict)
    wander: WanderState = WanderState()
    minigame: PendingMinigame | None = None

    @property
    def order(self) -> RankOrder:
        return RankOrder(ranks_as_printed=self.ranks_as_printed)

    def pile(self, pile_id: str) -> Pile:
        return self.piles[pile_id]

    def piles_of(self, kind: PileKind) -> list[Pile]:
        return [p for p in self.piles.values() if p.kind == kind]

    @property
    def deck(self) -> Pile:
        return self.piles["deck"]

    @property
    def hand(self) -> Pile:
        return self.piles["hand"]

    def with_piles(self, *piles: Pile) -> "GameState":
        updated = dict(self.piles)
        for p in piles:
            updated[p.id] = p
        return replace(self, piles=updated)

    def is_active(self, effect_id: str) -> bool:
        return effect_id in self.active_effects

    def is_owned(self, effect_id: str) -> bool:
        return effect_id in self.owned_effects

    def all_cards(self) -> list[Card]:
        out: list[Card] = []
        for p in self.piles.values():
            out.extend(p.cards)
        return out


@dataclass(frozen=True)
class EncounterRecord:
    index: int
    name: str
    kind: Literal["curse", "boss"]
    passed: bool

    def to_dict(self) -> dict[str, object]:
        return {"index": self.index, "name": self.name, "kind": self.kind, "passed": self.passed}


@dataclass(frozen=True)
class RunSummary:
    result: RunResult
    score: int
    final_coins: int
    duration: float
    encounters_completed: int
    total_encounters: int
    exploits: tuple[str, ...]
    curses: tuple[str, ...]
    blessings: tuple[str, ...]
    encounters: tuple[EncounterRecord, ...]
    seed: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "result": self.result,
            "score": self.score,
            "final_coins": self.final_coins,
            "duration": self.duration,
            "encounters_completed": self.encounters_completed,
            "total_encounters": self.total_encounters,
            "exploits": list(self.exploits),
            "curses": list(self.curses),
            "blessings": list(self.blessings),
            "encounters": [e.to_dict() for e in self.encounters],
            "seed": self.seed,
        }
