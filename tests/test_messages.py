"""Tests for message posting, listing and processing over HTTP."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

SWORD = {
    "type": "attack",
    "attack_formula": "1d20 + 5",
    "damage_parts": [{"formula": "1d8 + 3", "damage_type": "slashing"}],
}


async def post_roll(client: AsyncClient, **overrides) -> dict:
    body = {
        "author": "alice",
        "flavor": "Athletics",
        "roll_type": "skill",
        "rolls": [{"formula": "1d20 + 4", "kind": "d20"}],
    }
    body.update(overrides)
    resp = await client.post("/messages", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["messages"] == 0


@pytest.mark.asyncio
async def test_post_roll_message(client: AsyncClient, scripted_dice):
    scripted_dice.values += [12]
    data = await post_roll(client)
    assert data["author"] == "alice"
    assert data["flags"]["quick_roll"] is True
    assert data["flags"]["processed"] is True
    assert data["rolls"][0]["total"] == 16
    assert data["version"] == 1


@pytest.mark.asyncio
async def test_post_invalid_formula(client: AsyncClient):
    resp = await client.post("/messages", json={
        "author": "alice", "roll_type": "skill", "rolls": [{"formula": "fireball", "kind": "d20"}],
    })
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_post_oversized_dice_term(client: AsyncClient):
    resp = await client.post("/messages", json={
        "author": "alice", "roll_type": "damage",
        "rolls": [{"formula": "999999999999d6", "kind": "damage"}],
    })
    assert resp.status_code == 422
    assert (await client.get("/messages")).json()["messages"] == []


@pytest.mark.asyncio
async def test_post_requires_author(client: AsyncClient):
    resp = await client.post("/messages", json={"author": "", "roll_type": "skill"})
    assert resp.status_code == 422
    assert resp.json()["detail"][0]["field"] == "author"


@pytest.mark.asyncio
async def test_get_and_list_messages(client: AsyncClient, scripted_dice):
    scripted_dice.values += [3, 4]
    first = await post_roll(client)
    second = await post_roll(client, flavor="Stealth")

    resp = await client.get(f"/messages/{first['id']}")
    assert resp.status_code == 200
    assert resp.json()["flavor"] == "Athletics"

    resp = await client.get("/messages")
    ids = [m["id"] for m in resp.json()["messages"]]
    assert ids == [first["id"], second["id"]]


@pytest.mark.asyncio
async def test_unknown_message_is_404(client: AsyncClient):
    resp = await client.get("/messages/nope")
    assert resp.status_code == 404
    assert resp.json()["notice"] == "quickroll.error.notFound"


@pytest.mark.asyncio
async def test_process_usage_message(client: AsyncClient, scripted_dice):
    resp = await client.post("/messages", json={
        "author": "alice",
        "flavor": "Longsword",
        "message_type": "usage",
        "item_id": "longsword",
        "activity": SWORD,
    })
    assert resp.status_code == 200
    usage = resp.json()
    assert usage["flags"]["processed"] is False
    assert usage["flags"]["render_attack"] is False

    # Someone else sees the card hidden until the author has rolled.
    resp = await client.post(f"/messages/{usage['id']}/process", json={"user_id": "bob"})
    assert resp.json()["phase"] == "pending"
    assert resp.json()["visible"] is False

    scripted_dice.values += [15, 7]
    resp = await client.post(f"/messages/{usage['id']}/process", json={"user_id": "alice"})
    assert resp.status_code == 200
    result = resp.json()
    assert result["phase"] == "finalized"
    assert [s["kind"] for s in result["card"]["sections"]] == ["attack", "damage"]
    assert result["overlays"]["retro_crit"] is True
    assert len(result["posted"]) == 2

    stored = (await client.get(f"/messages/{usage['id']}")).json()
    assert [r["total"] for r in stored["rolls"]] == [20, 10]
    listed = (await client.get("/messages")).json()["messages"]
    assert [m["id"] for m in listed] == [usage["id"]]


@pytest.mark.asyncio
async def test_process_plain_roll_left_raw(client: AsyncClient, scripted_dice):
    scripted_dice.values += [9]
    msg = await post_roll(client, quick_roll=False)
    resp = await client.post(f"/messages/{msg['id']}/process", json={"user_id": "alice"})
    assert resp.json()["phase"] == "unseen"
    assert resp.json()["card"] is None


@pytest.mark.asyncio
async def test_dice_groups(client: AsyncClient, scripted_dice):
    scripted_dice.values += [6, 1]
    msg = await post_roll(
        client, roll_type="damage",
        rolls=[{"formula": "2d6", "kind": "damage", "damage_type": "fire"}],
    )
    resp = await client.get(f"/messages/{msg['id']}/dice")
    assert resp.status_code == 200
    [group] = resp.json()
    assert group["faces"] == 6
    assert group["damage_type"] == "fire"
    assert [(c["value"], c["classes"]) for c in group["results"]] == [(1, ["min"]), (6, ["max"])]


@pytest.mark.asyncio
async def test_audits_empty_for_new_message(client: AsyncClient, scripted_dice):
    scripted_dice.values += [5]
    msg = await post_roll(client)
    resp = await client.get(f"/messages/{msg['id']}/audits")
    assert resp.status_code == 200
    assert resp.json() == []
