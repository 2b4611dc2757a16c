"""Actor routes: minimal damage targets."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from chatfeed.actors import create_actor, get_actor
from chatfeed.models import ActorResponse, CreateActorRequest

router = APIRouter()


@router.post("/actors", response_model=ActorResponse)
async def post_actor(req: CreateActorRequest):
    return ActorResponse(**await create_actor(req.name, req.max_hp, req.concentrating))


@router.get("/actors/{actor_id}", response_model=ActorResponse)
async def read_actor(actor_id: str):
    actor = await get_actor(actor_id)
    if not actor:
        raise HTTPException(status_code=404, detail="Actor not found")
    return ActorResponse(**actor)
