"""Selective rerolling of individual damage dice."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from quickroll.audit import AuditLogEmitter
from quickroll.dice import DiceSource, RandomDiceSource, fresh_outcomes
from quickroll.errors import SelectionError
from quickroll.locks import MessageLocks
from quickroll.models import (
    AuditRecord,
    DieRef,
    DieResult,
    DieTerm,
    KeepPolicy,
    RerollSelection,
    Roll,
    RollKind,
    RollMessage,
)
from quickroll.ports import Animator, MessageStore, NullAnimator, wait_bounded
from quickroll.settings import RollSettings, settings as default_settings

logger = logging.getLogger(__name__)


# --- Dice groups shown in the reroll dialog ---

@dataclass
class DieChoice:
    index: int
    value: int
    active: bool
    classes: list[str] = field(default_factory=list)


@dataclass
class DiceGroup:
    roll_index: int
    term_index: int
    faces: int
    roll_count: int
    damage_type: str | None
    results: list[DieChoice] = field(default_factory=list)


def extract_dice_groups(message: RollMessage) -> list[DiceGroup]:
    """Active die results of every damage roll, grouped per die term.

    Results are sorted low to high within a group; groups are sorted by die
    size, then damage type with untyped groups last.
    """
    groups: list[DiceGroup] = []
    seen: set[tuple[int, int, int, int]] = set()
    for roll_index, roll in enumerate(message.damage_rolls):
        for term_index, term in enumerate(roll.dice):
            key = (roll_index, term_index, term.faces, term.count)
            if key in seen:
                continue
            seen.add(key)

            choices = []
            for i, result in enumerate(term.results):
                if not result.active:
                    continue
                classes = []
                if result.value == term.faces:
                    classes.append("max")
                if result.value == 1:
                    classes.append("min")
                choices.append(DieChoice(index=i, value=result.value, active=True, classes=classes))
            choices.sort(key=lambda c: c.value)

            if choices:
                groups.append(DiceGroup(
                    roll_index=roll_index,
                    term_index=term_index,
                    faces=term.faces,
                    roll_count=term.count,
                    damage_type=roll.options.damage_type,
                    results=choices,
                ))

    groups.sort(key=lambda g: (g.faces, g.damage_type or "zzz"))
    return groups


def select_ones(groups: list[DiceGroup]) -> RerollSelection:
    """Quick selection of every shown result equal to 1."""
    return RerollSelection(dice=[
        DieRef(roll_index=g.roll_index, term_index=g.term_index, die_index=c.index)
        for g in groups
        for c in g.results
        if c.value == 1
    ])


# --- Reroll engine ---

@dataclass
class RerollOutcome:
    message: RollMessage | None
    touched: list[DieRef] = field(default_factory=list)
    dropped: list[DieRef] = field(default_factory=list)
    audit: AuditRecord | None = None

    @property
    def count(self) -> int:
        return len(self.touched)


def resolve(message: RollMessage, ref: DieRef) -> tuple[DieTerm, DieResult]:
    """Look up the active die result *ref* points at."""
    rolls = message.damage_rolls
    if ref.roll_index >= len(rolls):
        raise SelectionError(f"{message.id} has no damage roll {ref.roll_index}")
    dice = rolls[ref.roll_index].dice
    if ref.term_index >= len(dice):
        raise SelectionError(f"{message.id} roll {ref.roll_index} has no die term {ref.term_index}")
    term = dice[ref.term_index]
    if ref.die_index >= len(term.results):
        raise SelectionError(f"{message.id} term {ref.term_index} has no die {ref.die_index}")
    result = term.results[ref.die_index]
    if not result.active:
        raise SelectionError(f"{message.id} die {ref.die_index} is not active")
    return term, result


def apply_reroll(result: DieResult, fresh: int, policy: KeepPolicy) -> None:
    """Replace a die value according to *policy*, recording its provenance."""
    old = result.value
    final = fresh if policy is KeepPolicy.KEEP_NEW else max(old, fresh)
    result.active = True
    result.was_rerolled = True
    result.old_value = old
    result.new_value = fresh
    result.value = final
    result.keep_policy = policy


class DiceRerollEngine:
    """Rerolls selected damage dice of one message.

    Selected references are validated against the freshest stored message,
    fresh outcomes are requested once per die term, and every touched result
    is rewritten in place. Nothing is persisted unless all fresh outcomes
    arrive; the audit record is created after the reroll is stored.
    """

    def __init__(
        self,
        store: MessageStore,
        dice: DiceSource | None = None,
        audit: AuditLogEmitter | None = None,
        locks: MessageLocks | None = None,
        animator: Animator | None = None,
        settings: RollSettings | None = None,
    ):
        self.store = store
        self.dice = dice or RandomDiceSource()
        self.audit = audit or AuditLogEmitter(store)
        self.locks = locks or MessageLocks()
        self.animator = animator or NullAnimator()
        self.settings = settings or default_settings

    def _validate(self, message: RollMessage, selection: RerollSelection) -> tuple[list[DieRef], list[DieRef]]:
        valid: list[DieRef] = []
        dropped: list[DieRef] = []
        for ref in selection.unique():
            try:
                resolve(message, ref)
            except SelectionError as e:
                logger.warning("reroll: dropping selection: %s", e)
                dropped.append(ref)
                continue
            valid.append(ref)
        return valid, dropped

    async def reroll(
        self,
        message_id: str,
        selection: RerollSelection,
        policy: KeepPolicy = KeepPolicy.KEEP_NEW,
    ) -> RerollOutcome:
        async with self.locks.hold(message_id):
            msg = await self.store.require(message_id)
            valid, dropped = self._validate(msg, selection)
            if not valid:
                return RerollOutcome(message=None, dropped=dropped)

            # Group by (roll, term), keeping selection order inside each group.
            groups: dict[tuple[int, int], list[DieRef]] = {}
            for ref in valid:
                groups.setdefault((ref.roll_index, ref.term_index), []).append(ref)

            fresh_rolls: list[Roll] = []
            pending: list[tuple[DieResult, int]] = []
            for (roll_index, term_index), refs in groups.items():
                term = msg.damage_rolls[roll_index].dice[term_index]
                values = await fresh_outcomes(self.dice, len(refs), term.faces)
                fresh_rolls.append(_as_roll(term.faces, values))
                for ref, value in zip(refs, values):
                    pending.append((resolve(msg, ref)[1], value))

            for result, value in pending:
                apply_reroll(result, value, policy)

            updated = await self.store.update(
                msg.id, expected_version=msg.version, rolls=msg.rolls,
            )

        logger.info(
            "reroll: %d die result(s) on %s with keep=%s, totals %s",
            len(valid), message_id, policy.value, [r.total for r in updated.damage_rolls],
        )
        await wait_bounded(
            self.animator.show(fresh_rolls),
            self.settings.animation_timeout_seconds,
            f"reroll animation for {message_id}",
        )
        record = await self.audit.emit(updated, valid, policy)
        return RerollOutcome(message=updated, touched=valid, dropped=dropped, audit=record)


def _as_roll(faces: int, values: list[int]) -> Roll:
    """The fresh outcomes of one batch, as a roll the animator can show."""
    roll = Roll(
        kind=RollKind.BASIC,
        terms=[DieTerm(faces=faces, count=len(values), results=[DieResult(value=v) for v in values])],
    )
    roll.refresh_formula()
    return roll
