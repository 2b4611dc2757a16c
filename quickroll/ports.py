"""Collaborator interfaces consumed by the roll pipeline."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from quickroll.errors import MessageNotFoundError
from quickroll.models import (
    AuditRecord,
    Damage,
    MessageFlags,
    Roll,
    RollKind,
    RollMessage,
    RollType,
)

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Persistence for roll messages and their reroll audits.

    ``update`` writes flags, rolls and flavor together and must reject the
    write with ``StaleMessageError`` when ``expected_version`` is not the
    stored version. A successful update bumps the version by one.
    """

    @abstractmethod
    async def get(self, message_id: str) -> RollMessage | None: ...

    @abstractmethod
    async def create(self, message: RollMessage) -> RollMessage: ...

    @abstractmethod
    async def update(
        self,
        message_id: str,
        *,
        expected_version: int,
        flags: MessageFlags | None = None,
        rolls: list[Roll] | None = None,
        flavor: str | None = None,
    ) -> RollMessage: ...

    @abstractmethod
    async def delete(self, message_id: str) -> None: ...

    @abstractmethod
    async def list_messages(self, limit: int = 100) -> list[RollMessage]: ...

    @abstractmethod
    async def create_audit(self, record: AuditRecord) -> AuditRecord: ...

    @abstractmethod
    async def list_audits(self, message_id: str) -> list[AuditRecord]: ...

    async def require(self, message_id: str) -> RollMessage:
        msg = await self.get(message_id)
        if msg is None:
            raise MessageNotFoundError(message_id)
        return msg

    async def save(self, message: RollMessage) -> RollMessage:
        """Write a mutated copy back, guarded by the version it was read at."""
        return await self.update(
            message.id,
            expected_version=message.version,
            flags=message.flags,
            rolls=message.rolls,
            flavor=message.flavor,
        )


class ActivityActions(ABC):
    """Runs the rolls an item usage card asks for."""

    @abstractmethod
    async def run_activity_action(
        self, message: RollMessage, action: RollType,
    ) -> RollMessage | None:
        """Roll one sub-roll for *message* and post it as a standalone message."""

    @abstractmethod
    async def critical_damage_rolls(self, message: RollMessage) -> list[Roll]:
        """Evaluate the critical variants of the message's damage rolls, in order."""

    async def run_activity_actions(self, message: RollMessage) -> list[RollMessage]:
        """Roll every section the usage card requested but does not hold yet."""
        flags = message.flags
        actions: list[RollType] = []
        if flags.render_attack is not None and not message.rolls_of(RollKind.D20):
            actions.append(RollType.ATTACK)
        if flags.render_damage is not None and not flags.manual_damage and not message.damage_rolls:
            actions.append(RollType.DAMAGE)
        if flags.render_formula is not None and not message.rolls_of(RollKind.BASIC):
            actions.append(RollType.FORMULA)

        posted: list[RollMessage] = []
        for action in actions:
            sub = await self.run_activity_action(message, action)
            if sub is not None:
                posted.append(sub)
        return posted


class Confirmer(ABC):
    @abstractmethod
    async def confirm(self, prompt: str, **params) -> bool: ...


class AlwaysConfirm(Confirmer):
    def __init__(self, answer: bool = True):
        self.answer = answer

    async def confirm(self, prompt: str, **params) -> bool:
        return self.answer


class Notifier(ABC):
    @abstractmethod
    def notify(self, level: str, key: str, **params) -> None: ...

    def info(self, key: str, **params) -> None:
        self.notify("info", key, **params)

    def warn(self, key: str, **params) -> None:
        self.notify("warn", key, **params)

    def error(self, key: str, **params) -> None:
        self.notify("error", key, **params)


class LoggingNotifier(Notifier):
    _LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}

    def notify(self, level: str, key: str, **params) -> None:
        logger.log(self._LEVELS.get(level, logging.INFO), "notification %s %s", key, params)


class CollectingNotifier(Notifier):
    """Keeps notifications so a caller can return them to the client."""

    def __init__(self):
        self.notifications: list[dict] = []

    def notify(self, level: str, key: str, **params) -> None:
        self.notifications.append({"level": level, "key": key, "params": params})


class Animator(ABC):
    """Optional dice animation shown to the user."""

    @abstractmethod
    async def show(self, rolls: list[Roll]) -> None: ...

    @abstractmethod
    def is_animating(self, message_id: str) -> bool: ...

    @abstractmethod
    async def wait_for_message(self, message_id: str) -> None: ...


class NullAnimator(Animator):
    async def show(self, rolls: list[Roll]) -> None:
        return None

    def is_animating(self, message_id: str) -> bool:
        return False

    async def wait_for_message(self, message_id: str) -> None:
        return None


class DamageTarget(ABC):
    id: str

    @abstractmethod
    async def apply_damage(self, damages: list[Damage], multiplier: float = 1) -> None: ...

    @abstractmethod
    async def apply_temp_hp(self, amount: int) -> None: ...


class ActorDirectory(ABC):
    @abstractmethod
    async def get_target(self, actor_id: str) -> DamageTarget | None: ...

    @abstractmethod
    async def break_concentration(self, actor_id: str) -> bool:
        """End the actor's concentration. Returns False when it had none."""


async def wait_bounded(awaitable, timeout: float, what: str) -> bool:
    """Await an animation, giving up after *timeout* seconds (0 waits forever).

    Returns False when the wait timed out.
    """
    if timeout <= 0:
        await awaitable
        return True
    try:
        await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        logger.warning("%s did not finish within %.1fs, continuing", what, timeout)
        return False
    return True
