"""Tests for folding standalone sub-rolls into their usage card."""

import asyncio

import pytest

from quickroll.errors import RollValidationError, StaleMessageError
from quickroll.merge import RollMerger, fold_into_parent
from quickroll.models import Activity, MessageFlags, MessageType, RollType
from quickroll.settings import RollSettings
from tests.conftest import d20_roll, damage_roll, roll_message


def usage_card(msg_id="parent"):
    return roll_message(
        msg_id,
        roll_type=None,
        message_type=MessageType.USAGE,
        flags=MessageFlags(quick_roll=True, processed=True, render_attack=False),
    )


@pytest.mark.asyncio
async def test_merge_attack_into_parent(store):
    await store.create(usage_card())
    sub = await store.create(roll_message("sub", rolls=[d20_roll(14, 5)], originating_message_id="parent"))

    parent = await RollMerger(store).merge(sub)

    assert parent.flags.render_attack is True
    assert [r.total for r in parent.rolls] == [19]
    assert parent.flags.merged_ids == ["sub"]
    assert await store.get("sub") is None
    stored = await store.require("parent")
    assert stored.rolls == parent.rolls


@pytest.mark.asyncio
async def test_merge_appends_in_order(store):
    parent = usage_card()
    parent.rolls.append(d20_roll(3))
    await store.create(parent)
    sub = await store.create(roll_message(
        "dmg", RollType.DAMAGE, rolls=[damage_roll(6, [2]), damage_roll(4, [4])],
        originating_message_id="parent",
    ))

    merged = await RollMerger(store).merge(sub)

    assert [r.total for r in merged.rolls] == [3, 2, 4]
    assert merged.flags.render_damage is True


def test_fold_copies_critical_and_healing():
    parent = usage_card()
    roll = damage_roll(8, [6])
    roll.options.is_critical = True
    sub = roll_message(
        "dmg", RollType.DAMAGE, rolls=[roll], originating_message_id="parent",
        activity=Activity(type="heal"),
    )
    fold_into_parent(parent, sub)
    assert parent.flags.is_critical
    assert parent.flags.is_healing


def test_fold_skips_already_merged():
    parent = usage_card()
    sub = roll_message("sub", rolls=[d20_roll(9)], originating_message_id="parent")
    fold_into_parent(parent, sub)
    fold_into_parent(parent, sub)
    assert len(parent.rolls) == 1


@pytest.mark.asyncio
async def test_merge_twice_is_noop(store):
    await store.create(usage_card())
    sub = await store.create(roll_message("sub", rolls=[d20_roll(9)], originating_message_id="parent"))
    merger = RollMerger(store)
    await merger.merge(sub)
    assert await merger.merge(sub) is None
    assert len((await store.require("parent")).rolls) == 1


@pytest.mark.asyncio
async def test_concurrent_merges_keep_both_rolls(store):
    await store.create(usage_card())
    attack = await store.create(roll_message("atk", rolls=[d20_roll(12)], originating_message_id="parent"))
    damage = await store.create(roll_message(
        "dmg", RollType.DAMAGE, rolls=[damage_roll(6, [5])], originating_message_id="parent",
    ))
    merger = RollMerger(store)

    await asyncio.gather(merger.merge(attack), merger.merge(damage))

    parent = await store.require("parent")
    assert sorted(r.total for r in parent.rolls) == [5, 12]
    assert sorted(parent.flags.merged_ids) == ["atk", "dmg"]


@pytest.mark.asyncio
async def test_merge_retries_on_stale_parent(store):
    await store.create(usage_card())
    sub = await store.create(roll_message("sub", rolls=[d20_roll(9)], originating_message_id="parent"))

    real_update = store.update
    failures = []

    async def flaky_update(message_id, **kwargs):
        if message_id == "parent" and not failures:
            failures.append(message_id)
            raise StaleMessageError(message_id, kwargs["expected_version"], 99)
        return await real_update(message_id, **kwargs)

    store.update = flaky_update
    parent = await RollMerger(store).merge(sub)
    assert failures == ["parent"]
    assert len(parent.rolls) == 1


@pytest.mark.asyncio
async def test_merge_gives_up_after_retries(store):
    await store.create(usage_card())
    sub = await store.create(roll_message("sub", rolls=[d20_roll(9)], originating_message_id="parent"))

    async def always_stale(message_id, **kwargs):
        raise StaleMessageError(message_id, kwargs["expected_version"], 99)

    store.update = always_stale
    with pytest.raises(StaleMessageError):
        await RollMerger(store, settings=RollSettings(merge_retry_attempts=2)).merge(sub)
    assert await store.get("sub") is not None


@pytest.mark.asyncio
async def test_merge_rejects_non_sub_roll(store):
    msg = await store.create(roll_message("solo", rolls=[d20_roll(9)]))
    with pytest.raises(RollValidationError):
        await RollMerger(store).merge(msg)
