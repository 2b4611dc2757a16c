"""Retroactive advantage and disadvantage."""

from __future__ import annotations

import logging

from quickroll.classify import classify, is_multi_roll
from quickroll.dice import DiceSource, RandomDiceSource, fresh_outcomes
from quickroll.errors import RollValidationError
from quickroll.locks import MessageLocks
from quickroll.models import (
    AdvantageMode,
    DieResult,
    DieTerm,
    Roll,
    RollKind,
    RollMessage,
    RollState,
    RollType,
)
from quickroll.ports import (
    AlwaysConfirm,
    Animator,
    Confirmer,
    MessageStore,
    NullAnimator,
    wait_bounded,
)
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)

STATE_LABELS = {RollState.ADV: "Advantage", RollState.DIS: "Disadvantage"}

# Keys whose flavor already names the roll mode.
_NO_FLAVOR_KEYS = (RollType.ATTACK, RollType.TOOL)


def _d20_term(roll: Roll) -> DieTerm:
    term = next((t for t in roll.dice if t.faces == 20), None)
    if term is None:
        raise RollValidationError("Roll has no d20 term")
    return term


async def ensure_multi_roll(roll: Roll, dice: DiceSource) -> Roll:
    """Give a D20 roll a discarded companion result so it shows as a pair.

    The first result stays the effective one. A roll that already holds two
    results is left alone.
    """
    term = _d20_term(roll)
    if len(term.results) >= 2:
        return roll
    [value] = await fresh_outcomes(dice, 1, term.faces)
    term.results.append(DieResult(value=value, active=False))
    term.count = len(term.results)
    return roll


async def upgrade_roll(roll: Roll, state: RollState, dice: DiceSource) -> Roll:
    """Turn a normal D20 roll into an advantage or disadvantage roll.

    The better (advantage) or worse (disadvantage) of the first two results
    becomes the active one; the other is kept but marked inactive.
    """
    await ensure_multi_roll(roll, dice)
    term = _d20_term(roll)
    candidates = term.results[:2]
    values = [r.value for r in candidates]
    kept = values.index(max(values) if state is RollState.ADV else min(values))
    for i, result in enumerate(candidates):
        result.active = i == kept
    term.keep = "kh" if state is RollState.ADV else "kl"
    roll.options.advantage_mode = (
        AdvantageMode.ADVANTAGE if state is RollState.ADV else AdvantageMode.DISADVANTAGE
    )
    roll.refresh_formula()
    return roll


class MultiRollUpgrader:
    def __init__(
        self,
        store: MessageStore,
        dice: DiceSource | None = None,
        locks: MessageLocks | None = None,
        confirmer: Confirmer | None = None,
        animator: Animator | None = None,
        settings: RollSettings | None = None,
    ):
        self.store = store
        self.dice = dice or RandomDiceSource()
        self.locks = locks or MessageLocks()
        self.confirmer = confirmer or AlwaysConfirm()
        self.animator = animator or NullAnimator()
        self.settings = settings or default_settings

    async def upgrade(
        self,
        message_id: str,
        state: RollState,
        key: RollType | None = None,
    ) -> RollMessage | None:
        """Upgrade the message's D20 roll to *state*.

        Returns the persisted message, or None when the user declined.
        """
        label = STATE_LABELS[state]
        if self.settings.confirm_retro_adv:
            confirmed = await self.confirmer.confirm(
                "quickroll.chat.prompts.retroAdv", target=label,
            )
            if not confirmed:
                logger.info("retro-multiroll on %s cancelled by user", message_id)
                return None

        async with self.locks.hold(message_id):
            msg = await self.store.require(message_id)
            if is_multi_roll(msg):
                raise RollValidationError(f"Message {message_id} is already a multiroll")
            roll = next((r for r in msg.rolls if r.kind is RollKind.D20), None)
            if roll is None:
                raise RollValidationError(f"Message {message_id} has no d20 roll")
            if key is None and classify(msg) is RollType.ACTIVITY:
                key = RollType.ATTACK

            msg.flags.advantage = state is RollState.ADV
            msg.flags.disadvantage = state is RollState.DIS
            await upgrade_roll(roll, state, self.dice)

            if key not in _NO_FLAVOR_KEYS:
                msg.flavor = f"{msg.flavor} ({label})".lstrip()

            updated = await self.store.save(msg)

        logger.info(
            "retro-multiroll: %s upgraded to %s, total %d",
            message_id, state.value, roll.total,
        )
        await wait_bounded(
            self.animator.show([roll]),
            self.settings.animation_timeout_seconds,
            f"dice animation for {message_id}",
        )
        return updated
