"""Pydantic request/response models for the API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from quickroll.models import (
    Activity,
    AdvantageMode,
    AuditRecord,
    DieRef,
    KeepPolicy,
    MessageType,
    RollKind,
    RollMessage,
    RollState,
    RollType,
)


def _strip_null_bytes(v: str) -> str:
    """Remove null bytes from user-supplied strings."""
    return v.replace("\x00", "")


# --- Messages ---

class RollRequest(BaseModel):
    formula: str = Field(min_length=1, max_length=200)
    kind: RollKind = RollKind.BASIC
    damage_type: str | None = Field(default=None, max_length=32)
    properties: list[str] = Field(default_factory=list)
    advantage_mode: AdvantageMode = AdvantageMode.NORMAL
    critical_threshold: int = Field(default=20, ge=2, le=20)


class CreateMessageRequest(BaseModel):
    author: str = Field(min_length=1, max_length=64)
    flavor: str = Field(default="", max_length=500)

    @field_validator("author", "flavor")
    @classmethod
    def _sanitize_strings(cls, v: str) -> str:
        return _strip_null_bytes(v)
    message_type: MessageType = MessageType.ROLL
    roll_type: RollType | None = None
    item_id: str | None = None
    activity: Activity | None = None
    originating_message_id: str | None = None
    content_visible: bool = True
    should_display_challenge: bool = True
    is_concentration: bool = False
    rolls: list[RollRequest] = Field(default_factory=list, max_length=20)
    quick_roll: bool = True
    """False posts a plain roll the pipeline leaves alone unless quick
    vanilla adoption is enabled."""


class MessageListResponse(BaseModel):
    messages: list[RollMessage]


# --- Commands ---

class RerollRequest(BaseModel):
    dice: list[DieRef] = Field(default_factory=list, max_length=100)
    keep: KeepPolicy = KeepPolicy.KEEP_NEW
    select_ones: bool = False
    """Add every shown die result equal to 1 to the selection."""


class Notification(BaseModel):
    level: str
    key: str
    params: dict = Field(default_factory=dict)


class RerollResponse(BaseModel):
    message: RollMessage | None
    count: int
    dropped: list[DieRef] = Field(default_factory=list)
    audit: AuditRecord | None = None
    notifications: list[Notification] = Field(default_factory=list)


class RetroMultirollRequest(BaseModel):
    state: RollState
    key: RollType | None = None


class CommandResponse(BaseModel):
    """Result of a command that may be cancelled at the confirmation prompt."""
    message: RollMessage | None
    cancelled: bool = False
    notifications: list[Notification] = Field(default_factory=list)


class ApplyDamageRequest(BaseModel):
    targets: list[str] = Field(default_factory=list, max_length=50)
    multiplier: float = 1
    temp_hp: bool = False
    roll_index: int | None = Field(default=None, ge=0)


class ApplyDamageResponse(BaseModel):
    applied: list[str]
    notifications: list[Notification] = Field(default_factory=list)


class ConcentrationResponse(BaseModel):
    broken: bool
    notifications: list[Notification] = Field(default_factory=list)


# --- Actors ---

class CreateActorRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    max_hp: int = Field(ge=1, le=10000)
    concentrating: bool = False

    @field_validator("name")
    @classmethod
    def _sanitize_name(cls, v: str) -> str:
        return _strip_null_bytes(v)


class ActorResponse(BaseModel):
    id: str
    name: str
    hp: int
    max_hp: int
    temp_hp: int
    concentrating: bool
    created_at: str
