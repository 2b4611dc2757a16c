"""Pure classification of roll messages: type, lifecycle phase and predicates.

Nothing here mutates a message, so every function is safe to call any
number of times during rendering.
"""

from __future__ import annotations

from enum import Enum

from quickroll.errors import RollValidationError
from quickroll.models import AdvantageMode, MessageType, RollKind, RollMessage, RollType


class MessagePhase(str, Enum):
    UNSEEN = "unseen"
    PENDING = "pending"
    MERGING = "merging"
    INJECTED = "injected"
    FINALIZED = "finalized"


# Roll kind each declared type needs before its content can be augmented.
REQUIRED_KIND: dict[RollType, RollKind | None] = {
    RollType.ATTACK: RollKind.D20,
    RollType.DAMAGE: RollKind.DAMAGE,
    RollType.FORMULA: RollKind.BASIC,
    RollType.SKILL: RollKind.D20,
    RollType.ABILITY_SAVE: RollKind.D20,
    RollType.ABILITY_TEST: RollKind.D20,
    RollType.DEATH_SAVE: RollKind.D20,
    RollType.TOOL: RollKind.D20,
    RollType.CONCENTRATION: RollKind.D20,
    RollType.ACTIVITY: None,
}

CHECK_TYPES = (
    RollType.SKILL,
    RollType.ABILITY_SAVE,
    RollType.ABILITY_TEST,
    RollType.DEATH_SAVE,
    RollType.TOOL,
    RollType.CONCENTRATION,
)


def classify(message: RollMessage) -> RollType | None:
    if message.message_type is MessageType.USAGE:
        return RollType.ACTIVITY
    if message.message_type is MessageType.ROLL:
        return message.roll_type
    return None


def is_sub_roll(message: RollMessage) -> bool:
    """Standalone attack or damage roll raised by another message's activity."""
    return (
        classify(message) in (RollType.ATTACK, RollType.DAMAGE)
        and message.originating_message_id is not None
        and message.originating_message_id != message.id
    )


def phase(message: RollMessage) -> MessagePhase:
    """Lifecycle position recorded in the message's flags.

    FINALIZED is never stored; it is what processing reports once the
    assembled card has been revealed.
    """
    if not message.flags.quick_roll:
        return MessagePhase.UNSEEN
    if not message.flags.processed:
        return MessagePhase.PENDING
    if is_sub_roll(message):
        return MessagePhase.MERGING
    return MessagePhase.INJECTED


def is_multi_roll(message: RollMessage) -> bool:
    flags = message.flags
    if flags.advantage or flags.disadvantage or flags.dual:
        return True
    first = message.rolls[0] if message.rolls else None
    return (
        first is not None
        and first.kind is RollKind.D20
        and first.options.advantage_mode is not AdvantageMode.NORMAL
    )


def is_critical(message: RollMessage) -> bool:
    return message.flags.is_critical


def validate_roll_kinds(message: RollMessage, roll_type: RollType | None) -> None:
    """Raise RollValidationError when the declared type's roll kind is missing."""
    if roll_type is None:
        return
    needed = REQUIRED_KIND.get(roll_type)
    if needed is None:
        return
    if not message.rolls_of(needed):
        raise RollValidationError(
            f"Message {message.id} declares {roll_type.value} but holds no {needed.value} roll"
        )
