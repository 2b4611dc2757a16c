"""Default activity actions: rolls an item usage's sub-rolls from its formulas."""

from __future__ import annotations

import logging
import uuid

from quickroll.dice import RollEvaluator, parse_formula
from quickroll.models import (
    Activity,
    MessageFlags,
    MessageType,
    Roll,
    RollKind,
    RollMessage,
    RollOptions,
    RollType,
)
from quickroll.ports import ActivityActions, MessageStore
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)

_KINDS = {
    RollType.ATTACK: RollKind.D20,
    RollType.DAMAGE: RollKind.DAMAGE,
    RollType.FORMULA: RollKind.BASIC,
}


def usage_flags(activity: Activity, settings: RollSettings | None = None) -> MessageFlags:
    """Flags of a freshly posted usage card for *activity*.

    Sections are requested (False) for every formula the activity carries.
    Damage waits for the manual damage button when ``manual_damage_mode`` is
    2, or when it is 1 and the activity has an attack.
    """
    settings = settings or default_settings
    has_attack = activity.attack_formula is not None
    mode = settings.manual_damage_mode
    manual = bool(activity.damage_parts) and (mode == 2 or (mode == 1 and has_attack))
    return MessageFlags(
        quick_roll=True,
        render_attack=False if has_attack else None,
        render_damage=False if activity.damage_parts and not manual else None,
        render_formula=False if activity.formula else None,
        manual_damage=manual,
        is_healing=activity.type == "heal",
        formula_name=activity.formula_name,
    )


class DefaultActivityActions(ActivityActions):
    """Evaluates an activity's formulas and posts them as standalone sub-rolls."""

    def __init__(self, store: MessageStore, evaluator: RollEvaluator | None = None):
        self.store = store
        self.evaluator = evaluator or RollEvaluator()

    async def _damage_rolls(self, activity: Activity) -> list[Roll]:
        rolls = []
        for part in activity.damage_parts:
            rolls.append(await self.evaluator.evaluate(
                part.formula,
                RollKind.DAMAGE,
                RollOptions(damage_type=part.damage_type),
            ))
        return rolls

    async def run_activity_action(
        self, message: RollMessage, action: RollType,
    ) -> RollMessage | None:
        activity = message.activity
        if activity is None or action not in _KINDS:
            return None

        if action is RollType.ATTACK:
            if not activity.attack_formula:
                return None
            rolls = [await self.evaluator.evaluate(activity.attack_formula, RollKind.D20)]
        elif action is RollType.DAMAGE:
            rolls = await self._damage_rolls(activity)
            if not rolls:
                return None
        else:
            if not activity.formula:
                return None
            rolls = [await self.evaluator.evaluate(activity.formula, RollKind.BASIC)]

        sub = RollMessage(
            id=str(uuid.uuid4()),
            author=message.author,
            flavor=message.flavor,
            message_type=MessageType.ROLL,
            roll_type=action,
            item_id=message.item_id,
            activity=activity.model_copy(deep=True),
            originating_message_id=message.id,
            flags=MessageFlags(quick_roll=True, processed=True),
            rolls=rolls,
        )
        created = await self.store.create(sub)
        logger.info("Posted %s sub-roll %s for %s", action.value, created.id, message.id)
        return created

    async def critical_damage_rolls(self, message: RollMessage) -> list[Roll]:
        """Critical variants re-derived from the activity's damage formulas.

        Falls back to the message's own damage rolls when the activity has no
        damage parts.
        """
        activity = message.activity
        if activity is not None and activity.damage_parts:
            base = [
                Roll(
                    kind=RollKind.DAMAGE,
                    terms=parse_formula(part.formula),
                    options=RollOptions(damage_type=part.damage_type),
                )
                for part in activity.damage_parts
            ]
        else:
            base = message.damage_rolls
        return [await self.evaluator.critical_variant(r) for r in base]
