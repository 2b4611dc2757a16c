"""Tests for selective damage rerolls and their audit records."""

import logging

import pytest

from quickroll.audit import AuditLogEmitter, build_audit
from quickroll.errors import AuditError, GenerationError, SelectionError
from quickroll.models import DieRef, KeepPolicy, RerollSelection, RollType
from quickroll.reroll import DiceRerollEngine, extract_dice_groups, resolve, select_ones
from tests.conftest import FailingDiceSource, ScriptedDiceSource, d20_roll, damage_roll, roll_message


def ref(roll, term, die):
    return DieRef(roll_index=roll, term_index=term, die_index=die)


def selection(*refs):
    return RerollSelection(dice=list(refs))


async def seed(store, *rolls):
    return await store.create(roll_message(roll_type=RollType.DAMAGE, rolls=list(rolls)))


@pytest.mark.asyncio
async def test_keep_new_d6_audit(store):
    await seed(store, damage_roll(6, [2, 5], bonus=1))
    engine = DiceRerollEngine(store, ScriptedDiceSource(6, 1))

    outcome = await engine.reroll("m1", selection(ref(0, 0, 0), ref(0, 0, 1)), KeepPolicy.KEEP_NEW)

    results = outcome.message.rolls[0].dice[0].results
    assert [r.value for r in results] == [6, 1]
    assert [r.old_value for r in results] == [2, 5]
    assert all(r.was_rerolled and r.keep_policy is KeepPolicy.KEEP_NEW for r in results)
    assert outcome.message.rolls[0].total == 8

    rows = [(r.faces, r.old_value, r.new_value, r.final_value, r.delta) for r in outcome.audit.rows]
    assert rows == [(6, 2, 6, 6, 4), (6, 5, 1, 1, -4)]
    assert outcome.audit.total_delta == 0
    assert await store.list_audits("m1") == [outcome.audit]


@pytest.mark.asyncio
async def test_keep_better_takes_max(store):
    await seed(store, damage_roll(6, [2, 5]))
    engine = DiceRerollEngine(store, ScriptedDiceSource(6, 1))

    outcome = await engine.reroll("m1", selection(ref(0, 0, 0), ref(0, 0, 1)), KeepPolicy.KEEP_BETTER)

    results = outcome.message.rolls[0].dice[0].results
    assert [(r.old_value, r.new_value, r.value) for r in results] == [(2, 6, 6), (5, 1, 5)]
    assert outcome.audit.total_delta == 4


@pytest.mark.asyncio
async def test_outcomes_pair_in_selection_order(store):
    await seed(store, damage_roll(6, [2, 5]))
    engine = DiceRerollEngine(store, ScriptedDiceSource(3, 4))

    outcome = await engine.reroll("m1", selection(ref(0, 0, 1), ref(0, 0, 0)))

    results = outcome.message.rolls[0].dice[0].results
    assert results[1].value == 3
    assert results[0].value == 4


@pytest.mark.asyncio
async def test_one_request_per_term(store):
    await seed(store, damage_roll(6, [1, 1]), damage_roll(8, [2], damage_type="fire"))
    dice = ScriptedDiceSource(4, 5, 7)
    engine = DiceRerollEngine(store, dice)

    await engine.reroll("m1", selection(ref(0, 0, 0), ref(1, 0, 0), ref(0, 0, 1)))

    assert dice.calls == [(2, 6), (1, 8)]


@pytest.mark.asyncio
async def test_roll_index_counts_damage_rolls_only(store):
    await seed(store, d20_roll(15), damage_roll(6, [2]))
    engine = DiceRerollEngine(store, ScriptedDiceSource(5))

    outcome = await engine.reroll("m1", selection(ref(0, 0, 0)))

    assert outcome.message.rolls[0].total == 15
    assert outcome.message.rolls[1].total == 5


@pytest.mark.asyncio
async def test_invalid_refs_are_dropped(store):
    roll = damage_roll(6, [2, 5])
    roll.dice[0].results[1].active = False
    await seed(store, roll)
    engine = DiceRerollEngine(store, ScriptedDiceSource(6))

    outcome = await engine.reroll(
        "m1", selection(ref(0, 0, 0), ref(0, 0, 1), ref(3, 0, 0), ref(0, 0, 0)),
    )

    assert outcome.touched == [ref(0, 0, 0)]
    assert outcome.dropped == [ref(0, 0, 1), ref(3, 0, 0)]
    assert outcome.count == 1


def test_resolve_rejects_missing_and_inactive_dice():
    roll = damage_roll(6, [2, 5])
    roll.dice[0].results[1].active = False
    msg = roll_message(roll_type=RollType.DAMAGE, rolls=[roll])

    term, result = resolve(msg, ref(0, 0, 0))
    assert (term.faces, result.value) == (6, 2)
    for bad in (ref(1, 0, 0), ref(0, 1, 0), ref(0, 0, 2), ref(0, 0, 1)):
        with pytest.raises(SelectionError):
            resolve(msg, bad)


@pytest.mark.asyncio
async def test_nothing_valid_persists_nothing(store):
    created = await seed(store, damage_roll(6, [2]))
    dice = ScriptedDiceSource(6)
    outcome = await DiceRerollEngine(store, dice).reroll("m1", selection(ref(0, 5, 0)))
    assert outcome.message is None
    assert dice.calls == []
    assert await store.require("m1") == created


@pytest.mark.asyncio
async def test_generation_failure_aborts_everything(store):
    created = await seed(store, damage_roll(6, [1]), damage_roll(8, [1]))
    # The first group gets its outcome, the second fails.
    dice = ScriptedDiceSource(6)
    engine = DiceRerollEngine(store, dice)

    with pytest.raises(GenerationError):
        await engine.reroll("m1", selection(ref(0, 0, 0), ref(1, 0, 0)))

    assert await store.require("m1") == created
    assert await store.list_audits("m1") == []


@pytest.mark.asyncio
async def test_generation_failure_from_source(store):
    created = await seed(store, damage_roll(6, [1]))
    with pytest.raises(GenerationError):
        await DiceRerollEngine(store, FailingDiceSource()).reroll("m1", selection(ref(0, 0, 0)))
    assert await store.require("m1") == created


@pytest.mark.asyncio
async def test_audit_failure_keeps_reroll(store, caplog):
    await seed(store, damage_roll(6, [1]))

    async def broken_audit(record):
        raise AuditError("audit table unavailable")

    store.create_audit = broken_audit
    engine = DiceRerollEngine(store, ScriptedDiceSource(4))

    with caplog.at_level(logging.WARNING, logger="quickroll.audit"):
        outcome = await engine.reroll("m1", selection(ref(0, 0, 0)))

    assert outcome.audit is None
    assert (await store.require("m1")).rolls[0].total == 4
    assert "not recorded" in caplog.text


@pytest.mark.asyncio
async def test_audit_unexpected_error_is_logged(store, caplog):
    msg = await seed(store, damage_roll(6, [1]))

    async def broken_audit(record):
        raise RuntimeError("boom")

    store.create_audit = broken_audit
    with caplog.at_level(logging.ERROR, logger="quickroll.audit"):
        assert await AuditLogEmitter(store).emit(msg, [], KeepPolicy.KEEP_NEW) is None
    assert "failed to record" in caplog.text


@pytest.mark.asyncio
async def test_reroll_never_removes_results(store):
    await seed(store, damage_roll(6, [1, 2, 3], bonus=2))
    outcome = await DiceRerollEngine(store, ScriptedDiceSource(6)).reroll("m1", selection(ref(0, 0, 1)))
    roll = outcome.message.rolls[0]
    assert len(roll.terms) == 3
    assert [r.value for r in roll.dice[0].results] == [1, 6, 3]


def test_build_audit_skips_untouched_results():
    msg = roll_message(roll_type=RollType.DAMAGE, rolls=[damage_roll(6, [2])])
    record = build_audit(msg, [ref(0, 0, 0)], KeepPolicy.KEEP_NEW)
    assert record.rows == ()
    assert record.total_delta == 0


def test_extract_dice_groups_sorting_and_markers():
    msg = roll_message(roll_type=RollType.DAMAGE, rolls=[
        damage_roll(8, [8, 3], damage_type="fire"),
        damage_roll(6, [1, 4]),
        damage_roll(6, [2], damage_type="cold"),
    ])
    groups = extract_dice_groups(msg)

    assert [(g.faces, g.damage_type) for g in groups] == [(6, "cold"), (6, None), (8, "fire")]
    untyped = groups[1]
    assert [(c.index, c.value, c.classes) for c in untyped.results] == [(0, 1, ["min"]), (1, 4, [])]
    fire = groups[2]
    assert [c.value for c in fire.results] == [3, 8]
    assert fire.results[1].classes == ["max"]


def test_extract_dice_groups_hides_inactive():
    roll = damage_roll(6, [2, 5])
    roll.dice[0].results[0].active = False
    groups = extract_dice_groups(roll_message(roll_type=RollType.DAMAGE, rolls=[roll]))
    assert [c.index for c in groups[0].results] == [1]


def test_select_ones():
    msg = roll_message(roll_type=RollType.DAMAGE, rolls=[damage_roll(6, [1, 4, 1]), damage_roll(4, [1])])
    picked = select_ones(extract_dice_groups(msg))
    assert set(picked.dice) == {ref(0, 0, 0), ref(0, 0, 2), ref(1, 0, 0)}
