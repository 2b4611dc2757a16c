"""Minimal actors that damage, healing and concentration apply to."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from chatfeed.db import get_db
from quickroll.models import Damage
from quickroll.ports import ActorDirectory, DamageTarget

logger = logging.getLogger(__name__)


def _row_to_actor(r) -> dict:
    return {
        "id": r["id"],
        "name": r["name"],
        "hp": r["hp"],
        "max_hp": r["max_hp"],
        "temp_hp": r["temp_hp"],
        "concentrating": bool(r["concentrating"]),
        "created_at": r["created_at"],
    }


async def create_actor(name: str, max_hp: int, concentrating: bool = False) -> dict:
    db = await get_db()
    actor_id = str(uuid.uuid4())
    now = datetime.now(timezone.utc).isoformat()
    await db.execute(
        """INSERT INTO actors (id, name, hp, max_hp, temp_hp, concentrating, created_at)
           VALUES (?, ?, ?, ?, 0, ?, ?)""",
        (actor_id, name, max_hp, max_hp, int(concentrating), now),
    )
    await db.commit()
    return await get_actor(actor_id)


async def get_actor(actor_id: str) -> dict | None:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM actors WHERE id = ?", (actor_id,))
    r = await cursor.fetchone()
    return _row_to_actor(r) if r else None


class SqliteActor(DamageTarget):
    def __init__(self, actor_id: str):
        self.id = actor_id

    async def apply_damage(self, damages: list[Damage], multiplier: float = 1) -> None:
        """Healing raises hp up to max; damage drains temp hp before hp.

        The new values are computed by the UPDATE itself, so concurrent
        applications to one actor all land.
        """
        damage = heal = 0
        for d in damages:
            amount = int(d.value * multiplier)
            if d.type == "healing":
                heal += amount
            else:
                damage += amount

        db = await get_db()
        # Right-hand sides see the row as it was before the update.
        cursor = await db.execute(
            """UPDATE actors SET
                   hp = MIN(max_hp, MAX(0, hp - MAX(0, :damage - temp_hp)) + :heal),
                   temp_hp = MAX(0, temp_hp - :damage)
               WHERE id = :id""",
            {"damage": damage, "heal": heal, "id": self.id},
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise LookupError(f"Actor {self.id} not found")

    async def apply_temp_hp(self, amount: int) -> None:
        # Temporary hit points do not stack; the larger pool wins.
        db = await get_db()
        await db.execute(
            "UPDATE actors SET temp_hp = MAX(temp_hp, ?) WHERE id = ?", (amount, self.id),
        )
        await db.commit()


class SqliteActorDirectory(ActorDirectory):
    async def get_target(self, actor_id: str) -> DamageTarget | None:
        if await get_actor(actor_id) is None:
            return None
        return SqliteActor(actor_id)

    async def break_concentration(self, actor_id: str) -> bool:
        db = await get_db()
        cursor = await db.execute(
            "UPDATE actors SET concentrating = 0 WHERE id = ? AND concentrating = 1",
            (actor_id,),
        )
        await db.commit()
        return cursor.rowcount > 0
