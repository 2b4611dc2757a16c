"""Pydantic v2 models for roll messages, rolls, terms and reroll audits."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


class RollKind(str, Enum):
    D20 = "d20"
    DAMAGE = "damage"
    BASIC = "basic"


class RollType(str, Enum):
    ATTACK = "attack"
    DAMAGE = "damage"
    FORMULA = "formula"
    SKILL = "skill"
    ABILITY_SAVE = "save"
    ABILITY_TEST = "check"
    DEATH_SAVE = "death"
    TOOL = "tool"
    CONCENTRATION = "concentration"
    ACTIVITY = "activity"


class MessageType(str, Enum):
    ROLL = "roll"
    USAGE = "usage"


class AdvantageMode(int, Enum):
    DISADVANTAGE = -1
    NORMAL = 0
    ADVANTAGE = 1


class RollState(str, Enum):
    """Target state of a retroactive multiroll upgrade."""
    ADV = "adv"
    DIS = "dis"


class KeepPolicy(str, Enum):
    KEEP_NEW = "new"
    KEEP_BETTER = "better"


# --- Terms ---

class DieResult(BaseModel):
    value: int = Field(ge=1)
    active: bool = True
    was_rerolled: bool = False
    old_value: int | None = None
    new_value: int | None = None
    keep_policy: KeepPolicy | None = None


class DieTerm(BaseModel):
    kind: Literal["die"] = "die"
    faces: int = Field(gt=0)
    count: int = Field(default=1, ge=0)
    keep: Literal["kh", "kl"] | None = None
    results: list[DieResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(r.value for r in self.results if r.active)

    @property
    def expression(self) -> str:
        return f"{self.count}d{self.faces}{self.keep or ''}"


class OperatorTerm(BaseModel):
    kind: Literal["operator"] = "operator"
    operator: Literal["+", "-"] = "+"

    @property
    def expression(self) -> str:
        return self.operator


class NumberTerm(BaseModel):
    kind: Literal["number"] = "number"
    number: int = 0

    @property
    def expression(self) -> str:
        return str(self.number)


Term = Annotated[Union[DieTerm, OperatorTerm, NumberTerm], Field(discriminator="kind")]


# --- Rolls ---

class RollOptions(BaseModel):
    advantage_mode: AdvantageMode = AdvantageMode.NORMAL
    is_critical: bool = False
    critical_threshold: int = 20
    damage_type: str | None = None
    properties: list[str] = Field(default_factory=list)


class Roll(BaseModel):
    kind: RollKind
    formula: str = ""
    terms: list[Term] = Field(default_factory=list)
    options: RollOptions = Field(default_factory=RollOptions)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        """Sum of active die values and static numbers, signed by operators.

        Recomputed on every access so it can never go stale after a mutation.
        """
        total = 0
        sign = 1
        for term in self.terms:
            if isinstance(term, OperatorTerm):
                sign = -1 if term.operator == "-" else 1
                continue
            value = term.total if isinstance(term, DieTerm) else term.number
            total += sign * value
            sign = 1
        return total

    @property
    def dice(self) -> list[DieTerm]:
        return [t for t in self.terms if isinstance(t, DieTerm)]

    @property
    def is_critical(self) -> bool:
        if self.kind is RollKind.D20:
            d20 = next((t for t in self.dice if t.faces == 20), None)
            if d20 is None:
                return False
            return any(r.active and r.value >= self.options.critical_threshold for r in d20.results)
        return self.options.is_critical

    def refresh_formula(self) -> None:
        self.formula = " ".join(t.expression for t in self.terms)


# --- Messages ---

class DamagePart(BaseModel):
    formula: str
    damage_type: str | None = None


class Activity(BaseModel):
    """What an item usage can roll once the usage card is posted."""
    type: str = "utility"
    attack_formula: str | None = None
    damage_parts: list[DamagePart] = Field(default_factory=list)
    formula: str | None = None
    formula_name: str | None = None
    actor_id: str | None = None


class MessageFlags(BaseModel):
    quick_roll: bool = False
    processed: bool = False
    dual: bool = False
    advantage: bool = False
    disadvantage: bool = False
    is_critical: bool = False
    is_healing: bool = False
    is_concentration: bool = False
    manual_damage: bool = False
    versatile: bool = False
    use_config: bool = True
    # None: no section. False: section requested, roll not merged yet.
    render_attack: bool | None = None
    render_damage: bool | None = None
    render_formula: bool | None = None
    ammunition: str | None = None
    formula_name: str | None = None
    display_challenge: bool | None = None
    display_attack_result: bool | None = None
    merged_ids: list[str] = Field(default_factory=list)


class RollMessage(BaseModel):
    id: str
    author: str
    flavor: str = ""
    message_type: MessageType | None = None
    roll_type: RollType | None = None
    item_id: str | None = None
    activity: Activity | None = None
    originating_message_id: str | None = None
    content_visible: bool = True
    should_display_challenge: bool = True
    flags: MessageFlags = Field(default_factory=MessageFlags)
    rolls: list[Roll] = Field(default_factory=list)
    version: int = 1
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def rolls_of(self, kind: RollKind) -> list[Roll]:
        return [r for r in self.rolls if r.kind is kind]

    @property
    def damage_rolls(self) -> list[Roll]:
        return self.rolls_of(RollKind.DAMAGE)


class Viewer(BaseModel):
    """The client a message is being processed for."""
    user_id: str
    is_gm: bool = False
    owns_actor: bool = False


# --- Reroll selection and audit ---

class DieRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    roll_index: int = Field(ge=0)
    term_index: int = Field(ge=0)
    die_index: int = Field(ge=0)


class RerollSelection(BaseModel):
    dice: list[DieRef] = Field(default_factory=list)

    def unique(self) -> list[DieRef]:
        """Selected references in selection order, first occurrence wins."""
        seen: set[DieRef] = set()
        ordered: list[DieRef] = []
        for ref in self.dice:
            if ref not in seen:
                seen.add(ref)
                ordered.append(ref)
        return ordered


class AuditRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    faces: int
    old_value: int
    new_value: int
    final_value: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def delta(self) -> int:
        return self.final_value - self.old_value


class AuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    message_id: str
    author: str
    keep_policy: KeepPolicy
    rows: tuple[AuditRow, ...] = ()
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_delta(self) -> int:
        return sum(row.delta for row in self.rows)


class Damage(BaseModel):
    """One typed amount of damage or healing headed for a target."""
    value: int
    type: str | None = None
    properties: list[str] = Field(default_factory=list)
