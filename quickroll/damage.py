"""Applying rolled damage, healing and temporary hit points to targets."""

from __future__ import annotations

import asyncio
import logging

from quickroll.errors import RollValidationError
from quickroll.models import Damage, RollMessage
from quickroll.ports import DamageTarget

logger = logging.getLogger(__name__)


def damages_for(
    message: RollMessage,
    multiplier: float = 1,
    roll_index: int | None = None,
) -> list[Damage]:
    """One damage entry per damage roll, or only the roll at *roll_index*.

    A negative multiplier turns every entry into healing. Properties are
    taken from the first damage roll of the message.
    """
    rolls = message.damage_rolls
    if not rolls:
        raise RollValidationError(f"Message {message.id} has no damage rolls")
    if roll_index is not None:
        if not 0 <= roll_index < len(rolls):
            raise RollValidationError(
                f"Message {message.id} has no damage roll at index {roll_index}"
            )
        rolls = [rolls[roll_index]]

    properties = list(message.damage_rolls[0].options.properties)
    return [
        Damage(
            value=roll.total,
            type="healing" if multiplier < 0 else roll.options.damage_type,
            properties=properties,
        )
        for roll in rolls
    ]


async def apply_damage(
    targets: list[DamageTarget],
    damages: list[Damage],
    multiplier: float = 1,
    temp_hp: bool = False,
) -> list[str]:
    """Apply *damages* to every target concurrently.

    Per-target failures are logged and leave the other targets applied.
    Returns the ids of the targets that were updated.
    """
    if temp_hp:
        amount = sum(d.value for d in damages)
        coros = [t.apply_temp_hp(amount) for t in targets]
    else:
        coros = [t.apply_damage(damages, multiplier=abs(multiplier)) for t in targets]

    results = await asyncio.gather(*coros, return_exceptions=True)
    applied = []
    for target, result in zip(targets, results):
        if isinstance(result, Exception):
            logger.error(
                "apply-damage: target %s failed: %s", target.id, result,
                exc_info=result,
            )
            continue
        applied.append(target.id)
    logger.info(
        "apply-damage: %s to %d/%d target(s), multiplier %s",
        "temp hp" if temp_hp else [d.value for d in damages],
        len(applied), len(targets), multiplier,
    )
    return applied
