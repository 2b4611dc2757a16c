"""The message pipeline: drives a roll message from arrival to a rendered card.

Phases (see ``quickroll.classify.phase``)::

    UNSEEN -> PENDING -> MERGING   (standalone sub-roll, folded into its parent)
                      -> INJECTED -> FINALIZED

Processing may be repeated for the same message any number of times: the
only persistent transitions are guarded by the message version and by the
flags they set.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from quickroll.card import ChatCard, OverlayVisibility, assemble_card, overlay_visibility
from quickroll.classify import (
    MessagePhase,
    classify,
    is_multi_roll,
    is_sub_roll,
    phase,
    validate_roll_kinds,
)
from quickroll.dice import DiceSource, RandomDiceSource
from quickroll.errors import RollValidationError
from quickroll.locks import MessageLocks
from quickroll.merge import RollMerger
from quickroll.models import RollKind, RollMessage, RollType, Viewer
from quickroll.multiroll import ensure_multi_roll
from quickroll.ports import ActivityActions, Animator, MessageStore, NullAnimator, wait_bounded
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)


class ProcessResult(BaseModel):
    message_id: str
    phase: MessagePhase
    visible: bool
    card: ChatCard | None = None
    overlays: OverlayVisibility | None = None
    merged_into: str | None = None
    posted: list[str] = Field(default_factory=list)


async def ensure_dual_roll(
    store: MessageStore,
    message_id: str,
    dice: DiceSource,
    locks: MessageLocks | None = None,
) -> RollMessage:
    """Pair every D20 roll of the message with a companion result and set ``dual``.

    The conversion runs on a copy and is exposed only after the flags and
    rolls have been stored together, so a half-upgraded message is never
    observable. Messages that already are multirolls come back unchanged.
    """
    locks = locks or MessageLocks()
    async with locks.hold(message_id):
        current = await store.require(message_id)
        if is_multi_roll(current):
            return current
        draft = current.model_copy(deep=True)
        dual = False
        for roll in draft.rolls:
            if roll.kind is RollKind.D20:
                await ensure_multi_roll(roll, dice)
                dual = True
        if not dual:
            return current
        draft.flags.dual = True
        updated = await store.save(draft)
    logger.info("Enforced dual roll on %s", message_id)
    return updated


class MessagePipeline:
    """Classifies a message and applies merge, dual-roll and card assembly."""

    def __init__(
        self,
        store: MessageStore,
        dice: DiceSource | None = None,
        activity: ActivityActions | None = None,
        merger: RollMerger | None = None,
        animator: Animator | None = None,
        locks: MessageLocks | None = None,
        settings: RollSettings | None = None,
    ):
        self.store = store
        self.dice = dice or RandomDiceSource()
        self.activity = activity
        self.locks = locks or MessageLocks()
        self.settings = settings or default_settings
        self.merger = merger or RollMerger(store, self.locks, self.settings)
        self.animator = animator or NullAnimator()

    async def process(self, message_id: str, viewer: Viewer) -> ProcessResult:
        msg = await self.store.require(message_id)

        if phase(msg) is MessagePhase.UNSEEN:
            if not (self.settings.quick_vanilla_enabled and msg.rolls):
                return ProcessResult(message_id=msg.id, phase=MessagePhase.UNSEEN, visible=True)
            # Adopt plain rolls for this render only.
            msg.flags.quick_roll = True
            msg.flags.processed = True
            msg.flags.use_config = False

        roll_type = classify(msg)

        if phase(msg) is MessagePhase.PENDING:
            if roll_type is RollType.ACTIVITY and viewer.user_id == msg.author:
                posted = await self._run_activity(msg.id)
                if posted is not None:
                    result = await self.process(message_id, viewer)
                    result.posted = posted
                    return result
            return ProcessResult(message_id=msg.id, phase=MessagePhase.PENDING, visible=False)

        if self.animator.is_animating(msg.id):
            await wait_bounded(
                self.animator.wait_for_message(msg.id),
                self.settings.animation_timeout_seconds,
                f"dice animation for {msg.id}",
            )

        if (
            viewer.user_id == msg.author
            and self.settings.always_roll_multiroll
            and not is_multi_roll(msg)
        ):
            try:
                dual = await ensure_dual_roll(self.store, msg.id, self.dice, self.locks)
            except RollValidationError as e:
                logger.warning("process: leaving %s unaugmented: %s", msg.id, e)
                return ProcessResult(message_id=msg.id, phase=MessagePhase.INJECTED, visible=True)
            msg.rolls = dual.rolls
            msg.flags.dual = dual.flags.dual
            msg.version = dual.version

        try:
            validate_roll_kinds(msg, roll_type)
        except RollValidationError as e:
            logger.warning("process: leaving %s unaugmented: %s", msg.id, e)
            return ProcessResult(message_id=msg.id, phase=MessagePhase.INJECTED, visible=True)

        parent = None
        if msg.originating_message_id and msg.originating_message_id != msg.id:
            parent = await self.store.get(msg.originating_message_id)

        if is_sub_roll(msg) and parent is not None and viewer.user_id == msg.author:
            merged = await self.merger.merge(msg)
            return ProcessResult(
                message_id=msg.id,
                phase=MessagePhase.MERGING,
                visible=False,
                merged_into=merged.id if merged else parent.id,
            )

        msg.flags.display_challenge = (parent or msg).should_display_challenge
        msg.flags.display_attack_result = (
            viewer.is_gm or self.settings.attack_roll_visibility != "none"
        )
        if roll_type is RollType.DAMAGE and msg.item_id is None:
            msg.flags.render_damage = True
            msg.flags.is_critical = msg.rolls[0].is_critical

        card = assemble_card(msg, roll_type, viewer, self.settings)
        if card is None:
            return ProcessResult(message_id=msg.id, phase=MessagePhase.INJECTED, visible=True)

        overlays = overlay_visibility(msg, viewer) if self.settings.overlay_buttons_enabled else None
        return ProcessResult(
            message_id=msg.id,
            phase=MessagePhase.FINALIZED,
            visible=True,
            card=card,
            overlays=overlays,
        )

    async def _run_activity(self, message_id: str) -> list[str] | None:
        """Mark the usage message processed, then roll and merge its sub-rolls.

        Returns None when another delivery already processed the message.
        """
        async with self.locks.hold(message_id):
            current = await self.store.require(message_id)
            if current.flags.processed:
                return None
            current.flags.processed = True
            current = await self.store.save(current)

        if self.activity is None:
            return []

        subs = await self.activity.run_activity_actions(current)
        for sub in subs:
            await self.merger.merge(sub)
        logger.info("Activity %s rolled %d sub-roll(s)", message_id, len(subs))
        return [s.id for s in subs]
