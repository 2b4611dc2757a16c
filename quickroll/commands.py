"""User-triggered commands: the overlay buttons and card buttons of a roll message.

Each command notifies the user of its outcome. Failures are reported with the
error's notification key and re-raised so callers can map them.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from quickroll.audit import AuditLogEmitter
from quickroll.critical import CriticalUpgrader
from quickroll.damage import apply_damage, damages_for
from quickroll.dice import DiceSource, RandomDiceSource, RollEvaluator
from quickroll.errors import QuickRollError, RollValidationError
from quickroll.locks import MessageLocks
from quickroll.merge import RollMerger
from quickroll.models import (
    KeepPolicy,
    RerollSelection,
    RollMessage,
    RollState,
    RollType,
)
from quickroll.multiroll import MultiRollUpgrader
from quickroll.ports import (
    ActivityActions,
    ActorDirectory,
    Animator,
    Confirmer,
    LoggingNotifier,
    MessageStore,
    Notifier,
)
from quickroll.reroll import DiceGroup, DiceRerollEngine, RerollOutcome, extract_dice_groups
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)


class QuickRollCommands:
    def __init__(
        self,
        store: MessageStore,
        dice: DiceSource | None = None,
        activity: ActivityActions | None = None,
        actors: ActorDirectory | None = None,
        notifier: Notifier | None = None,
        confirmer: Confirmer | None = None,
        animator: Animator | None = None,
        locks: MessageLocks | None = None,
        settings: RollSettings | None = None,
    ):
        self.store = store
        self.dice = dice or RandomDiceSource()
        self.activity = activity
        self.actors = actors
        self.notifier = notifier or LoggingNotifier()
        self.locks = locks or MessageLocks()
        self.settings = settings or default_settings

        self.merger = RollMerger(store, self.locks, self.settings)
        self.multiroll = MultiRollUpgrader(
            store, self.dice, self.locks, confirmer, animator, self.settings,
        )
        self.critical = CriticalUpgrader(
            store, activity, RollEvaluator(self.dice), self.locks, confirmer, animator, self.settings,
        )
        self.rerolls = DiceRerollEngine(
            store, self.dice, AuditLogEmitter(store), self.locks, animator, self.settings,
        )

    @contextmanager
    def _reporting(self, operation: str, message_id: str):
        try:
            yield
        except QuickRollError as e:
            logger.error("%s failed on %s: %s", operation, message_id, e)
            self.notifier.error(e.notice, message_id=message_id)
            raise

    async def dice_groups(self, message_id: str) -> list[DiceGroup]:
        with self._reporting("dice", message_id):
            msg = await self.store.require(message_id)
        return extract_dice_groups(msg)

    async def reroll(
        self,
        message_id: str,
        selection: RerollSelection,
        policy: KeepPolicy = KeepPolicy.KEEP_NEW,
    ) -> RerollOutcome:
        with self._reporting("reroll", message_id):
            outcome = await self.rerolls.reroll(message_id, selection, policy)
        if outcome.message is None:
            self.notifier.warn("quickroll.reroll.noDiceSelected")
        else:
            self.notifier.info("quickroll.reroll.success", count=outcome.count)
        return outcome

    async def retro_multiroll(
        self, message_id: str, state: RollState, key: RollType | None = None,
    ) -> RollMessage | None:
        with self._reporting("retro-multiroll", message_id):
            return await self.multiroll.upgrade(message_id, state, key)

    async def retro_critical(self, message_id: str) -> RollMessage | None:
        with self._reporting("retro-critical", message_id):
            return await self.critical.upgrade(message_id)

    async def roll_manual_damage(self, message_id: str) -> RollMessage:
        """Roll the damage a usage card held back for the manual damage button."""
        with self._reporting("manual-damage", message_id):
            if self.settings.manual_damage_mode == 0:
                raise RollValidationError("Manual damage rolls are disabled")
            if self.activity is None:
                raise RollValidationError(f"Message {message_id} cannot roll activity damage")

            async with self.locks.hold(message_id):
                msg = await self.store.require(message_id)
                if not msg.flags.manual_damage:
                    raise RollValidationError(f"Message {message_id} has no pending damage roll")
                msg.flags.manual_damage = False
                msg.flags.render_damage = True
                msg = await self.store.save(msg)

            sub = await self.activity.run_activity_action(msg, RollType.DAMAGE)
            if sub is not None:
                merged = await self.merger.merge(sub)
                if merged is not None:
                    return merged
            return await self.store.require(message_id)

    async def break_concentration(self, message_id: str) -> bool:
        with self._reporting("break-concentration", message_id):
            msg = await self.store.require(message_id)
            actor_id = msg.activity.actor_id if msg.activity else None
            if self.actors is None or actor_id is None:
                raise RollValidationError(f"Message {message_id} has no speaking actor")
            broken = await self.actors.break_concentration(actor_id)
        if not broken:
            self.notifier.warn("quickroll.concentration.none", actor_id=actor_id)
        else:
            logger.info("Concentration of %s broken from %s", actor_id, message_id)
        return broken

    async def apply_damage(
        self,
        message_id: str,
        targets: list[str],
        multiplier: float = 1,
        temp_hp: bool = False,
        roll_index: int | None = None,
    ) -> list[str]:
        """Apply the message's damage to *targets*; returns the ids updated."""
        if not targets:
            return []
        with self._reporting("apply-damage", message_id):
            if self.actors is None:
                raise RollValidationError("No actors to apply damage to")
            msg = await self.store.require(message_id)
            damages = damages_for(msg, multiplier, roll_index)

        resolved = []
        # A target named twice is damaged once.
        for target_id in dict.fromkeys(targets):
            target = await self.actors.get_target(target_id)
            if target is None:
                logger.warning("apply-damage: unknown target %s", target_id)
                continue
            resolved.append(target)
        return await apply_damage(resolved, damages, multiplier, temp_hp)
