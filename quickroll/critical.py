"""Retroactive promotion of damage rolls to critical hits."""

from __future__ import annotations

import logging

from quickroll.dice import RollEvaluator
from quickroll.errors import AlreadyCriticalError, RollValidationError
from quickroll.locks import MessageLocks
from quickroll.models import DieTerm, Roll, RollKind, RollMessage
from quickroll.ports import (
    ActivityActions,
    AlwaysConfirm,
    Animator,
    Confirmer,
    MessageStore,
    NullAnimator,
    wait_bounded,
)
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)


def splice_results(base: Roll, crit: Roll) -> Roll:
    """Carry the already-rolled results of *base* into the head of *crit*.

    Terms are matched by position. The extra dice of the critical formula
    keep their fresh results.
    """
    for j, term in enumerate(base.terms):
        if not isinstance(term, DieTerm):
            continue
        target = crit.terms[j] if j < len(crit.terms) else None
        if not isinstance(target, DieTerm) or target.faces != term.faces:
            raise RollValidationError(
                f"Critical roll '{crit.formula}' does not line up with '{base.formula}' at term {j}"
            )
        seen = [r.model_copy() for r in term.results]
        target.results[0:len(seen)] = seen
        target.count = max(target.count, len(target.results))
    crit.options.is_critical = True
    return crit


class CriticalUpgrader:
    """Promotes a message's damage rolls to their critical variants.

    A message that is already critical is rejected rather than promoted a
    second time.
    """

    def __init__(
        self,
        store: MessageStore,
        activity: ActivityActions | None = None,
        evaluator: RollEvaluator | None = None,
        locks: MessageLocks | None = None,
        confirmer: Confirmer | None = None,
        animator: Animator | None = None,
        settings: RollSettings | None = None,
    ):
        self.store = store
        self.activity = activity
        self.evaluator = evaluator or RollEvaluator()
        self.locks = locks or MessageLocks()
        self.confirmer = confirmer or AlwaysConfirm()
        self.animator = animator or NullAnimator()
        self.settings = settings or default_settings

    async def _critical_rolls(self, msg: RollMessage, base_rolls: list[Roll]) -> list[Roll]:
        if self.activity is not None and msg.activity is not None:
            return await self.activity.critical_damage_rolls(msg)
        return [await self.evaluator.critical_variant(r) for r in base_rolls]

    async def upgrade(self, message_id: str) -> RollMessage | None:
        """Promote the damage rolls of *message_id*.

        Returns the persisted message, or None when the user declined.
        """
        if self.settings.confirm_retro_crit:
            if not await self.confirmer.confirm("quickroll.chat.prompts.retroCrit"):
                logger.info("retro-critical on %s cancelled by user", message_id)
                return None

        async with self.locks.hold(message_id):
            msg = await self.store.require(message_id)
            if msg.flags.is_critical:
                raise AlreadyCriticalError(f"Message {message_id} is already a critical hit")
            base_rolls = [r for r in msg.rolls if r.kind is RollKind.DAMAGE]
            if not base_rolls:
                raise RollValidationError(f"Message {message_id} has no damage rolls")

            crits = await self._critical_rolls(msg, base_rolls)
            if len(crits) < len(base_rolls):
                raise RollValidationError(
                    f"Expected {len(base_rolls)} critical rolls for {message_id}, got {len(crits)}"
                )

            positions = [i for i, r in enumerate(msg.rolls) if r.kind is RollKind.DAMAGE]
            for pos, base, crit in zip(positions, base_rolls, crits):
                msg.rolls[pos] = splice_results(base, crit)
            msg.flags.is_critical = True

            updated = await self.store.save(msg)

        logger.info(
            "retro-critical: %s promoted %d damage roll(s), totals %s",
            message_id, len(base_rolls), [r.total for r in updated.damage_rolls],
        )
        await wait_bounded(
            self.animator.show(crits[:len(base_rolls)]),
            self.settings.animation_timeout_seconds,
            f"dice animation for {message_id}",
        )
        return updated
