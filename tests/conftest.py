"""Shared test fixtures for the roll pipeline and the chat feed server."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from quickroll.dice import DiceSource
from quickroll.models import (
    DieResult,
    DieTerm,
    MessageFlags,
    MessageType,
    NumberTerm,
    OperatorTerm,
    Roll,
    RollKind,
    RollMessage,
    RollOptions,
    RollType,
)
from quickroll.settings import RollSettings
from quickroll.store import InMemoryMessageStore


class ScriptedDiceSource(DiceSource):
    """Hands out pre-scripted outcomes in order and records every request."""

    def __init__(self, *values: int):
        self.values = list(values)
        self.calls: list[tuple[int, int]] = []

    async def roll(self, count: int, faces: int) -> list[int]:
        self.calls.append((count, faces))
        if len(self.values) < count:
            raise RuntimeError("dice script exhausted")
        out, self.values = self.values[:count], self.values[count:]
        return out


class FailingDiceSource(DiceSource):
    async def roll(self, count: int, faces: int) -> list[int]:
        raise ConnectionError("dice service unavailable")


def build_roll(
    kind: RollKind,
    faces: int,
    values: list[int],
    bonus: int = 0,
    damage_type: str | None = None,
    active: list[bool] | None = None,
) -> Roll:
    """A roll of one die term plus an optional flat bonus."""
    results = [
        DieResult(value=v, active=active[i] if active else True)
        for i, v in enumerate(values)
    ]
    terms = [DieTerm(faces=faces, count=len(values), results=results)]
    if bonus:
        terms += [OperatorTerm(operator="+"), NumberTerm(number=bonus)]
    roll = Roll(kind=kind, terms=terms, options=RollOptions(damage_type=damage_type))
    roll.refresh_formula()
    return roll


def d20_roll(value: int, bonus: int = 0) -> Roll:
    return build_roll(RollKind.D20, 20, [value], bonus)


def damage_roll(faces: int, values: list[int], bonus: int = 0, damage_type: str | None = None) -> Roll:
    return build_roll(RollKind.DAMAGE, faces, values, bonus, damage_type)


def roll_message(
    msg_id: str = "m1",
    roll_type: RollType = RollType.ATTACK,
    rolls: list[Roll] | None = None,
    author: str = "alice",
    **kwargs,
) -> RollMessage:
    """A processed quick-roll message of *roll_type*."""
    flags = kwargs.pop("flags", None) or MessageFlags(quick_roll=True, processed=True)
    return RollMessage(
        id=msg_id,
        author=author,
        message_type=kwargs.pop("message_type", MessageType.ROLL),
        roll_type=roll_type,
        flags=flags,
        rolls=rolls or [],
        **kwargs,
    )


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def roll_settings():
    return RollSettings()


@pytest_asyncio.fixture
async def client(tmp_path):
    """Create a test client with a fresh in-memory database."""
    from chatfeed.config import settings

    # Use in-memory SQLite for tests
    settings.db_path = ":memory:"
    settings.log_dir = str(tmp_path / "logs")

    from chatfeed.app import app
    from chatfeed.db import close_db, init_db

    await init_db(":memory:")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    await close_db()


@pytest.fixture
def scripted_dice():
    """Install a scripted dice source on the server; extend ``.values`` to script rolls."""
    from chatfeed import services
    from quickroll.dice import RandomDiceSource

    dice = ScriptedDiceSource()
    services.set_dice_source(dice)
    yield dice
    services.set_dice_source(RandomDiceSource())
