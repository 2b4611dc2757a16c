"""SQLite-backed message store for the chat feed."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from chatfeed.db import get_db
from quickroll.errors import AuditError, MessageNotFoundError, PersistenceError, StaleMessageError
from quickroll.models import AuditRecord, AuditRow, MessageFlags, Roll, RollMessage
from quickroll.ports import MessageStore

logger = logging.getLogger(__name__)

_COLUMNS = {"flags", "rolls", "flavor", "version"}


def _row_to_message(r) -> RollMessage:
    data = json.loads(r["body"])
    data.update(
        flags=json.loads(r["flags"]),
        rolls=json.loads(r["rolls"]),
        flavor=r["flavor"],
        version=r["version"],
    )
    return RollMessage.model_validate(data)


def _row_to_audit(r) -> AuditRecord:
    return AuditRecord(
        id=r["id"],
        message_id=r["message_id"],
        author=r["author"],
        keep_policy=r["keep_policy"],
        rows=tuple(AuditRow.model_validate(row) for row in json.loads(r["rows"])),
        created_at=r["created_at"],
    )


def _dump_rolls(rolls: list[Roll]) -> str:
    return json.dumps([r.model_dump(mode="json") for r in rolls])


def _append_log(event: str, payload: dict) -> None:
    """Append a feed event to the JSONL log file (best-effort)."""
    from chatfeed.config import settings

    log_dir = Path(settings.log_dir)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{settings.feed_name}.jsonl"
        entry = {"event": event, "at": datetime.now(timezone.utc).isoformat(), **payload}
        with open(log_path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError:
        logger.warning("Failed to append %s event to feed log", event, exc_info=True)


class SqliteMessageStore(MessageStore):
    """Message store over the shared aiosqlite connection.

    Updates are conditional on the stored version, so a write based on a
    stale read is rejected instead of overwriting a newer message.
    """

    async def get(self, message_id: str) -> RollMessage | None:
        db = await get_db()
        try:
            cursor = await db.execute("SELECT * FROM messages WHERE id = ?", (message_id,))
            r = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not read message {message_id}: {e}") from e
        return _row_to_message(r) if r else None

    async def create(self, message: RollMessage) -> RollMessage:
        db = await get_db()
        body = message.model_dump(mode="json", exclude=_COLUMNS)
        try:
            await db.execute(
                """INSERT INTO messages (id, author, message_type, roll_type, originating_message_id,
                                         body, flags, rolls, flavor, version, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (message.id, message.author,
                 message.message_type.value if message.message_type else None,
                 message.roll_type.value if message.roll_type else None,
                 message.originating_message_id,
                 json.dumps(body), message.flags.model_dump_json(), _dump_rolls(message.rolls),
                 message.flavor, message.version, message.created_at),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not create message {message.id}: {e}") from e
        _append_log("create", {"id": message.id, "author": message.author})
        return message.model_copy(deep=True)

    async def update(
        self,
        message_id: str,
        *,
        expected_version: int,
        flags: MessageFlags | None = None,
        rolls: list[Roll] | None = None,
        flavor: str | None = None,
    ) -> RollMessage:
        sets = ["version = version + 1"]
        params: list = []
        if flags is not None:
            sets.append("flags = ?")
            params.append(flags.model_dump_json())
        if rolls is not None:
            sets.append("rolls = ?")
            params.append(_dump_rolls(rolls))
        if flavor is not None:
            sets.append("flavor = ?")
            params.append(flavor)

        db = await get_db()
        try:
            cursor = await db.execute(
                f"UPDATE messages SET {', '.join(sets)} WHERE id = ? AND version = ?",
                (*params, message_id, expected_version),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not update message {message_id}: {e}") from e

        if cursor.rowcount == 0:
            current = await self.get(message_id)
            if current is None:
                raise MessageNotFoundError(message_id)
            raise StaleMessageError(message_id, expected_version, current.version)

        _append_log("update", {"id": message_id, "version": expected_version + 1})
        return await self.require(message_id)

    async def delete(self, message_id: str) -> None:
        db = await get_db()
        try:
            cursor = await db.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not delete message {message_id}: {e}") from e
        if cursor.rowcount == 0:
            raise MessageNotFoundError(message_id)
        _append_log("delete", {"id": message_id})

    async def list_messages(self, limit: int = 100) -> list[RollMessage]:
        db = await get_db()
        try:
            cursor = await db.execute(
                "SELECT * FROM messages ORDER BY created_at ASC, rowid ASC LIMIT ?", (limit,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not list messages: {e}") from e
        return [_row_to_message(r) for r in rows]

    async def create_audit(self, record: AuditRecord) -> AuditRecord:
        db = await get_db()
        rows = [row.model_dump(mode="json") for row in record.rows]
        try:
            await db.execute(
                """INSERT INTO audit_records (id, message_id, author, keep_policy, rows, total_delta, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (record.id, record.message_id, record.author, record.keep_policy.value,
                 json.dumps(rows), record.total_delta, record.created_at),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise AuditError(f"Could not store audit for {record.message_id}: {e}") from e
        _append_log("audit", {"id": record.id, "message_id": record.message_id,
                              "total_delta": record.total_delta})
        return record

    async def list_audits(self, message_id: str) -> list[AuditRecord]:
        db = await get_db()
        try:
            cursor = await db.execute(
                "SELECT * FROM audit_records WHERE message_id = ? ORDER BY created_at ASC",
                (message_id,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Could not list audits of {message_id}: {e}") from e
        return [_row_to_audit(r) for r in rows]
