"""Per-message asyncio locks serializing read-modify-write cycles."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager


class MessageLocks:
    """A lock per message id, kept only while someone holds or awaits it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, message_id: str):
        lock = self._locks.setdefault(message_id, asyncio.Lock())
        self._users[message_id] = self._users.get(message_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[message_id] -= 1
            if not self._users[message_id]:
                del self._users[message_id]
                del self._locks[message_id]
