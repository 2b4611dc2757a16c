"""In-process message store with optional atomic JSON persistence."""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic import BaseModel, Field

from quickroll.errors import MessageNotFoundError, StaleMessageError
from quickroll.models import AuditRecord, MessageFlags, Roll, RollMessage
from quickroll.ports import MessageStore


class FeedState(BaseModel):
    messages: dict[str, RollMessage] = Field(default_factory=dict)
    audits: list[AuditRecord] = Field(default_factory=list)


class InMemoryMessageStore(MessageStore):
    """Message store held in memory, or in a JSON file when *state_path* is set.

    Every read hands out a deep copy, so callers can never mutate stored
    state without going through ``update``.
    """

    def __init__(self, state_path: Path | None = None):
        self.state_path = state_path
        self._state = FeedState()
        if state_path is not None and state_path.exists():
            self._state = FeedState.model_validate_json(state_path.read_text())

    def _save(self) -> None:
        if self.state_path is None:
            return
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        data = self._state.model_dump_json(indent=2)
        # Atomic write: write to temp file then rename
        fd, tmp_path = tempfile.mkstemp(dir=self.state_path.parent, suffix=".tmp")
        try:
            with open(fd, "w") as f:
                f.write(data)
            Path(tmp_path).replace(self.state_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    async def get(self, message_id: str) -> RollMessage | None:
        msg = self._state.messages.get(message_id)
        return msg.model_copy(deep=True) if msg else None

    async def create(self, message: RollMessage) -> RollMessage:
        self._state.messages[message.id] = message.model_copy(deep=True)
        self._save()
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
        current = self._state.messages.get(message_id)
        if current is None:
            raise MessageNotFoundError(message_id)
        if current.version != expected_version:
            raise StaleMessageError(message_id, expected_version, current.version)
        changes: dict = {"version": current.version + 1}
        if flags is not None:
            changes["flags"] = flags.model_copy(deep=True)
        if rolls is not None:
            changes["rolls"] = [r.model_copy(deep=True) for r in rolls]
        if flavor is not None:
            changes["flavor"] = flavor
        updated = current.model_copy(update=changes)
        self._state.messages[message_id] = updated
        self._save()
        return updated.model_copy(deep=True)

    async def delete(self, message_id: str) -> None:
        if self._state.messages.pop(message_id, None) is None:
            raise MessageNotFoundError(message_id)
        self._save()

    async def list_messages(self, limit: int = 100) -> list[RollMessage]:
        msgs = sorted(self._state.messages.values(), key=lambda m: m.created_at)
        return [m.model_copy(deep=True) for m in msgs[:limit]]

    async def create_audit(self, record: AuditRecord) -> AuditRecord:
        self._state.audits.append(record)
        self._save()
        return record

    async def list_audits(self, message_id: str) -> list[AuditRecord]:
        return [a for a in self._state.audits if a.message_id == message_id]
