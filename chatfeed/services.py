"""Shared roll pipeline collaborators for the request handlers."""

from __future__ import annotations

from chatfeed.actors import SqliteActorDirectory
from chatfeed.channel import SqliteMessageStore
from quickroll.activity import DefaultActivityActions
from quickroll.commands import QuickRollCommands
from quickroll.dice import DiceSource, RandomDiceSource, RollEvaluator
from quickroll.locks import MessageLocks
from quickroll.ports import CollectingNotifier, Confirmer
from quickroll.settings import settings as roll_settings
from quickroll.state import MessagePipeline

store = SqliteMessageStore()
actors = SqliteActorDirectory()
locks = MessageLocks()
_dice: DiceSource = RandomDiceSource()


def set_dice_source(dice: DiceSource) -> None:
    """Swap the source of fresh die outcomes, e.g. for a seeded table."""
    global _dice
    _dice = dice


def evaluator() -> RollEvaluator:
    return RollEvaluator(_dice)


def activity() -> DefaultActivityActions:
    return DefaultActivityActions(store, evaluator())


def commands(notifier: CollectingNotifier, confirmer: Confirmer | None = None) -> QuickRollCommands:
    return QuickRollCommands(
        store,
        dice=_dice,
        activity=activity(),
        actors=actors,
        notifier=notifier,
        confirmer=confirmer,
        locks=locks,
        settings=roll_settings,
    )


def pipeline() -> MessagePipeline:
    return MessagePipeline(
        store,
        dice=_dice,
        activity=activity(),
        locks=locks,
        settings=roll_settings,
    )
