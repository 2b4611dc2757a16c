"""Command routes: the reroll, retro and damage buttons of a roll message."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from chatfeed import services
from chatfeed.models import (
    ApplyDamageRequest,
    ApplyDamageResponse,
    CommandResponse,
    ConcentrationResponse,
    RerollRequest,
    RerollResponse,
    RetroMultirollRequest,
)
from quickroll.models import RerollSelection
from quickroll.ports import AlwaysConfirm, CollectingNotifier
from quickroll.reroll import extract_dice_groups, select_ones

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/messages/{msg_id}/reroll", response_model=RerollResponse)
async def reroll_dice(msg_id: str, req: RerollRequest):
    notifier = CollectingNotifier()
    dice = list(req.dice)
    if req.select_ones:
        msg = await services.store.require(msg_id)
        dice.extend(select_ones(extract_dice_groups(msg)).dice)

    outcome = await services.commands(notifier).reroll(
        msg_id, RerollSelection(dice=dice), req.keep,
    )
    return RerollResponse(
        message=outcome.message,
        count=outcome.count,
        dropped=outcome.dropped,
        audit=outcome.audit,
        notifications=notifier.notifications,
    )


@router.post("/messages/{msg_id}/retro-multiroll", response_model=CommandResponse)
async def retro_multiroll(
    msg_id: str,
    req: RetroMultirollRequest,
    confirm: bool = Query(True, description="Answer to the confirmation prompt, if enabled."),
):
    notifier = CollectingNotifier()
    msg = await services.commands(notifier, AlwaysConfirm(confirm)).retro_multiroll(
        msg_id, req.state, req.key,
    )
    return CommandResponse(message=msg, cancelled=msg is None, notifications=notifier.notifications)


@router.post("/messages/{msg_id}/retro-critical", response_model=CommandResponse)
async def retro_critical(
    msg_id: str,
    confirm: bool = Query(True, description="Answer to the confirmation prompt, if enabled."),
):
    notifier = CollectingNotifier()
    msg = await services.commands(notifier, AlwaysConfirm(confirm)).retro_critical(msg_id)
    return CommandResponse(message=msg, cancelled=msg is None, notifications=notifier.notifications)


@router.post("/messages/{msg_id}/damage", response_model=CommandResponse)
async def roll_manual_damage(msg_id: str):
    notifier = CollectingNotifier()
    msg = await services.commands(notifier).roll_manual_damage(msg_id)
    return CommandResponse(message=msg, notifications=notifier.notifications)


@router.post("/messages/{msg_id}/concentration/break", response_model=ConcentrationResponse)
async def break_concentration(msg_id: str):
    notifier = CollectingNotifier()
    broken = await services.commands(notifier).break_concentration(msg_id)
    return ConcentrationResponse(broken=broken, notifications=notifier.notifications)


@router.post("/messages/{msg_id}/apply-damage", response_model=ApplyDamageResponse)
async def apply_damage(msg_id: str, req: ApplyDamageRequest):
    notifier = CollectingNotifier()
    applied = await services.commands(notifier).apply_damage(
        msg_id, req.targets, req.multiplier, req.temp_hp, req.roll_index,
    )
    return ApplyDamageResponse(applied=applied, notifications=notifier.notifications)
