from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MoveAction:
    card_ids: tuple[str, ...]
    source: str
    target: str


@dataclass(frozen=True)
class DrawAction:
    pass


@dataclass(frozen=True)
class PlayBlessingAction:
    card_id: str


@dataclass(frozen=True)
class ToggleEffectAction:
    effect_id: str


@dataclass(frozen=True)
class BuyEffectAction:
    effect_id: str


@dataclass(frozen=True)
class ChooseBlessingAction:
    effect_id: str | None = None  # None skips the prompt


@dataclass(frozen=True)
class CompleteLevelAction:
    pass


@dataclass(frozen=True)
class OpenShopAction:
    pass


@dataclass(frozen=True)
class LeaveShopAction:
    pass


@dataclass(frozen=True)
class ChooseWanderAction:
    wander_id: str


@dataclass(frozen=True)
class ResolveWanderAction:
    choice_index: int


@dataclass(frozen=True)
class FinishWanderAction:
    pass


@dataclass(frozen=True)
class PlayMinigameAction:
    pass


@dataclass(frozen=True)
class ResignAction:
    pass


Action = (
    MoveAction
    | DrawAction
    | PlayBlessingAction
    | ToggleEffectAction
    | BuyEffectAction
    | ChooseBlessingAction
    | CompleteLevelAction
    | OpenShopAction
    | LeaveShopAction
    | ChooseWanderAction
    | ResolveWanderAction
    | FinishWanderAction
    | PlayMinigameAction
    | ResignAction
)
