"""Folding standalone attack and damage rolls into their usage card."""

from __future__ import annotations

import logging

from quickroll.classify import is_sub_roll
from quickroll.errors import RollValidationError, StaleMessageError
from quickroll.locks import MessageLocks
from quickroll.models import RollMessage, RollType
from quickroll.ports import MessageStore
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)


def fold_into_parent(parent: RollMessage, sub: RollMessage) -> None:
    """Append *sub*'s rolls to *parent* and copy its classification flags.

    A sub-roll already recorded in ``parent.flags.merged_ids`` is not
    appended again.
    """
    if sub.id in parent.flags.merged_ids:
        return
    if sub.roll_type is RollType.ATTACK:
        parent.flags.render_attack = True
    elif sub.roll_type is RollType.DAMAGE:
        parent.flags.render_damage = True
        parent.flags.is_critical = sub.rolls[0].is_critical if sub.rolls else False
        parent.flags.is_healing = sub.activity is not None and sub.activity.type == "heal"
    elif sub.roll_type is RollType.FORMULA:
        parent.flags.render_formula = True
    parent.flags.quick_roll = True
    parent.flags.merged_ids.append(sub.id)
    parent.rolls.extend(r.model_copy(deep=True) for r in sub.rolls)


def _is_formula_sub_roll(sub: RollMessage) -> bool:
    return (
        sub.roll_type is RollType.FORMULA
        and sub.originating_message_id is not None
        and sub.originating_message_id != sub.id
    )


class RollMerger:
    """Merges a standalone sub-roll into its parent, then deletes the standalone.

    Merges into one parent are serialized by a per-parent lock and every
    attempt re-reads the parent so nothing is lost to a concurrent update.
    """

    def __init__(
        self,
        store: MessageStore,
        locks: MessageLocks | None = None,
        settings: RollSettings | None = None,
    ):
        self.store = store
        self.locks = locks or MessageLocks()
        self.settings = settings or default_settings

    async def merge(self, sub: RollMessage) -> RollMessage | None:
        """Merge *sub* into its parent.

        Returns the updated parent, or None when the standalone no longer
        exists because an earlier merge already consumed it.
        """
        if not (is_sub_roll(sub) or _is_formula_sub_roll(sub)):
            raise RollValidationError(
                f"Message {sub.id} is not a standalone sub-roll"
            )
        parent_id = sub.originating_message_id
        async with self.locks.hold(parent_id):
            current = await self.store.get(sub.id)
            if current is None:
                logger.info("Sub-roll %s already merged into %s", sub.id, parent_id)
                return None

            attempts = max(1, self.settings.merge_retry_attempts)
            for attempt in range(1, attempts + 1):
                parent = await self.store.require(parent_id)
                fold_into_parent(parent, current)
                try:
                    updated = await self.store.save(parent)
                    break
                except StaleMessageError:
                    if attempt == attempts:
                        logger.error(
                            "merge: parent %s kept changing, giving up on %s",
                            parent_id, sub.id,
                        )
                        raise
                    logger.info(
                        "merge: parent %s changed underneath, retrying (%d/%d)",
                        parent_id, attempt, attempts,
                    )

            await self.store.delete(sub.id)

        logger.info(
            "Merged %s roll %s into %s (%d rolls)",
            current.roll_type.value, sub.id, parent_id, len(updated.rolls),
        )
        return updated
