"""Message routes: post roll messages and render them for a viewer."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, Query

from chatfeed import services
from chatfeed.models import CreateMessageRequest, MessageListResponse
from quickroll.activity import usage_flags
from quickroll.models import (
    AuditRecord,
    MessageFlags,
    MessageType,
    RollMessage,
    RollOptions,
    Viewer,
)
from quickroll.ports import CollectingNotifier
from quickroll.reroll import DiceGroup
from quickroll.settings import settings as roll_settings
from quickroll.state import ProcessResult

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/messages", response_model=RollMessage)
async def create_message(req: CreateMessageRequest):
    evaluator = services.evaluator()
    rolls = []
    for r in req.rolls:
        options = RollOptions(
            advantage_mode=r.advantage_mode,
            critical_threshold=r.critical_threshold,
            damage_type=r.damage_type,
            properties=r.properties,
        )
        try:
            rolls.append(await evaluator.evaluate(r.formula, r.kind, options))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

    if req.message_type is MessageType.USAGE:
        if req.activity is not None:
            flags = usage_flags(req.activity, roll_settings)
        else:
            flags = MessageFlags(quick_roll=True)
    else:
        flags = MessageFlags(quick_roll=req.quick_roll, processed=req.quick_roll)
    flags.is_concentration = req.is_concentration

    msg = RollMessage(
        id=str(uuid.uuid4()),
        author=req.author,
        flavor=req.flavor,
        message_type=req.message_type,
        roll_type=req.roll_type,
        item_id=req.item_id,
        activity=req.activity,
        originating_message_id=req.originating_message_id,
        content_visible=req.content_visible,
        should_display_challenge=req.should_display_challenge,
        flags=flags,
        rolls=rolls,
    )
    created = await services.store.create(msg)
    logger.info("Posted %s message %s by %s", req.message_type.value, created.id, req.author)
    return created


@router.get("/messages", response_model=MessageListResponse)
async def list_messages(limit: int = Query(100, ge=1, le=500)):
    return MessageListResponse(messages=await services.store.list_messages(limit))


@router.get("/messages/{msg_id}", response_model=RollMessage)
async def get_message(msg_id: str):
    return await services.store.require(msg_id)


@router.get("/messages/{msg_id}/audits", response_model=list[AuditRecord])
async def get_audits(msg_id: str):
    await services.store.require(msg_id)
    return await services.store.list_audits(msg_id)


@router.post("/messages/{msg_id}/process", response_model=ProcessResult)
async def process_message(msg_id: str, viewer: Viewer):
    """Run the render pipeline for *viewer*: merge, enforce dual rolls, build the card."""
    return await services.pipeline().process(msg_id, viewer)


@router.get("/messages/{msg_id}/dice", response_model=list[DiceGroup])
async def get_dice(msg_id: str):
    """Damage dice offered by the reroll dialog."""
    return await services.commands(CollectingNotifier()).dice_groups(msg_id)
