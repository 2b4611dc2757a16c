"""Dice formulas and the default roll evaluation collaborator."""

from __future__ import annotations

import random
import re
from abc import ABC, abstractmethod

from quickroll.errors import GenerationError
from quickroll.models import (
    DieResult,
    DieTerm,
    NumberTerm,
    OperatorTerm,
    Roll,
    RollKind,
    RollOptions,
    Term,
)

_TOKEN_RE = re.compile(r"\s*(?:(\d*)d(\d+)(kh|kl)?|(\d+)|([+-]))", re.IGNORECASE)

# Largest die term a formula may ask for.
MAX_DICE = 100
MAX_FACES = 1000


class DiceSource(ABC):
    """Produces fresh die outcomes."""

    @abstractmethod
    async def roll(self, count: int, faces: int) -> list[int]: ...


class RandomDiceSource(DiceSource):
    async def roll(self, count: int, faces: int) -> list[int]:
        return [random.randint(1, faces) for _ in range(count)]


def parse_formula(formula: str) -> list[Term]:
    """Parse a formula like '1d20 + 5' or '2d6kh - 1' into unevaluated terms.

    Operators are inserted between operands where the formula omits them.
    """
    terms: list[Term] = []
    pos = 0
    text = formula.strip().lower()
    if not text:
        raise ValueError("Empty dice formula")
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ValueError(f"Invalid dice formula: {formula}")
        pos = m.end()
        count, faces, keep, number, operator = m.groups()
        if operator:
            if terms and isinstance(terms[-1], OperatorTerm):
                raise ValueError(f"Invalid dice formula: {formula}")
            terms.append(OperatorTerm(operator=operator))
            continue
        if terms and not isinstance(terms[-1], OperatorTerm):
            terms.append(OperatorTerm())
        if faces:
            n, f = int(count or 1), int(faces)
            if not (1 <= n <= MAX_DICE and 1 <= f <= MAX_FACES):
                raise ValueError(
                    f"Dice term {n}d{f} out of range (1-{MAX_DICE} dice of 1-{MAX_FACES} faces)"
                )
            terms.append(DieTerm(faces=f, count=n, keep=keep))
        else:
            terms.append(NumberTerm(number=int(number)))
    if isinstance(terms[-1], OperatorTerm):
        raise ValueError(f"Invalid dice formula: {formula}")
    return terms


def _keep_index(values: list[int], keep: str | None) -> int | None:
    if keep == "kh":
        return values.index(max(values))
    if keep == "kl":
        return values.index(min(values))
    return None


class RollEvaluator:
    """Evaluates formulas into rolls using a dice source."""

    def __init__(self, dice: DiceSource | None = None):
        self.dice = dice or RandomDiceSource()

    async def evaluate(
        self,
        formula: str,
        kind: RollKind = RollKind.BASIC,
        options: RollOptions | None = None,
    ) -> Roll:
        terms = parse_formula(formula)
        for term in terms:
            if isinstance(term, DieTerm):
                await self._roll_term(term)
        roll = Roll(kind=kind, terms=terms, options=options or RollOptions())
        roll.refresh_formula()
        return roll

    async def _roll_term(self, term: DieTerm) -> None:
        values = await fresh_outcomes(self.dice, term.count, term.faces)
        kept = _keep_index(values, term.keep)
        term.results = [
            DieResult(value=v, active=kept is None or i == kept)
            for i, v in enumerate(values)
        ]

    async def critical_variant(self, roll: Roll) -> Roll:
        """Evaluate the critical form of a damage roll: every die count doubled."""
        terms: list[Term] = []
        for term in roll.terms:
            if isinstance(term, DieTerm):
                terms.append(DieTerm(faces=term.faces, count=term.count * 2, keep=term.keep))
            else:
                terms.append(term.model_copy())
        for term in terms:
            if isinstance(term, DieTerm):
                await self._roll_term(term)
        options = roll.options.model_copy(update={"is_critical": True})
        crit = Roll(kind=roll.kind, terms=terms, options=options)
        crit.refresh_formula()
        return crit


async def fresh_outcomes(dice: DiceSource, count: int, faces: int) -> list[int]:
    """Request *count* fresh d*faces* outcomes, raising GenerationError on any failure."""
    try:
        values = await dice.roll(count, faces)
    except GenerationError:
        raise
    except Exception as e:
        raise GenerationError(f"Could not roll {count}d{faces}: {e}") from e
    if len(values) != count or any(not 1 <= v <= faces for v in values):
        raise GenerationError(f"Dice source returned {values!r} for {count}d{faces}")
    return list(values)
