from __future__ import annotations

from dataclasses import dataclass

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
    ResolveWanderAction,
)
from .rules import is_tableau_sequence
from .run import Game


@dataclass(frozen=True)
class AISpec:
    """Autoplay tuning parameters.

    spend_coins: buy the cheapest affordable shop item before leaving
    take_blessings: pick the first offered blessing instead of skipping
    """

    spend_coins: bool = True
    take_blessings: bool = True


def _candidate_moves(game: Game) -> list[tuple[float, MoveAction]]:
    state = game.state
    order = state.order
    out: list[tuple[float, MoveAction]] = []

    sources: list[tuple[str, tuple[str, ...], bool]] = []
    for card in state.hand.cards:
        if card.flags.blessing_id is None:
            sources.append(("hand", (card.id,), False))
    for pile in state.piles_of("tableau"):
        cards = pile.cards
        for i in range(len(cards)):
            run = cards[i:]
            if not is_tableau_sequence(run, order):
                continue
            reveals = i > 0 and not cards[i - 1].face_up
            clears = i == 0
            sources.append((pile.id, tuple(c.id for c in run), reveals or clears))

    for source, ids, frees in sources:
        valid = game.find_valid_moves(ids, source)
        leader = state.pile(source).cards[state.pile(source).index_of(ids[0]) or 0]
        for target in valid.foundation:
            out.append((100.0 + leader.effective_rank, MoveAction(card_ids=ids, source=source, target=target)))
        for target in valid.tableau:
            target_empty = state.pile(target).is_empty
            if source != "hand" and not frees:
                continue
            if source != "hand" and target_empty and not any(not c.face_up for c in state.pile(source).cards):
                # shuffling a whole pile between empty tableaus goes nowhere
                continue
            value = 50.0 if frees else 10.0 + leader.effective_rank
            out.append((value, MoveAction(card_ids=ids, source=source, target=target)))
    return out


def choose_action(game: Game, spec: AISpec = AISpec()) -> Action | None:
    phase = game.phase
    state = game.state

    if phase == "blessing_select":
        if spec.take_blessings and game.blessing_choices:
            return ChooseBlessingAction(effect_id=game.blessing_choices[0])
        return ChooseBlessingAction(effect_id=None)

    if phase == "level_complete":
        enc = game.current_encounter
        if enc is not None and not enc.completed:
            return CompleteLevelAction()
        return OpenShopAction()

    if phase == "shop":
        if spec.spend_coins:
            affordable = []
            for eid in game.shop:
                eff = game.registry.get(eid)
                if eff.is_curse:
                    continue
                cost = eff.cost or game.config.default_cost
                if cost <= state.coins:
                    affordable.append((cost, eid))
            if affordable:
                return BuyEffectAction(effect_id=min(affordable)[1])
        return LeaveShopAction()

    if phase == "wander":
        w = state.wander
        if w.phase == "selection" and w.options:
            return ChooseWanderAction(wander_id=w.options[0])
        if w.phase == "active":
            return ResolveWanderAction(choice_index=0)
        if w.phase == "result":
            return FinishWanderAction()
        return None

    if phase != "encounter":
        return None

    if state.minigame is not None and game.minigames is not None:
        return PlayMinigameAction()
    for card in state.hand.cards:
        if card.flags.blessing_id is not None:
            return PlayBlessingAction(card_id=card.id)

    best: tuple[float, MoveAction] | None = None
    for value, move in _candidate_moves(game):
        if best is None or value > best[0]:
            best = (value, move)
    if best is not None:
        return best[1]
    return DrawAction()
