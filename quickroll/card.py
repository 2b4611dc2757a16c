"""Chat card assembly: which sections, buttons and overlays a message shows.

Everything here is derived from the message, the viewer and settings; the
message itself is never changed.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from quickroll.classify import CHECK_TYPES, is_critical, is_multi_roll
from quickroll.models import RollKind, RollMessage, RollType, Viewer
from quickroll.settings import RollSettings


class CardSection(BaseModel):
    kind: Literal["attack", "damage", "formula", "multiroll"]
    title: str
    subtitle: str | None = None
    roll_indices: list[int] = Field(default_factory=list)
    critical: bool = False
    healing: bool = False
    display_challenge: bool | None = None
    hide_final_attack: bool = False


class ChatCard(BaseModel):
    message_id: str
    roll_type: RollType | None = None
    sections: list[CardSection] = Field(default_factory=list)
    buttons: list[str] = Field(default_factory=list)


class OverlayVisibility(BaseModel):
    multiroll: bool = False
    crit: bool = False
    retro_crit: bool = False
    reroll: bool = False


def _indices(message: RollMessage, kind: RollKind) -> list[int]:
    return [i for i, r in enumerate(message.rolls) if r.kind is kind]


def _attack_section(message: RollMessage, viewer: Viewer, settings: RollSettings) -> CardSection | None:
    indices = _indices(message, RollKind.D20)
    if not indices:
        return None
    ammo = message.flags.ammunition
    return CardSection(
        kind="attack",
        title="Attack",
        subtitle=f"Ammunition - {ammo}" if ammo else None,
        roll_indices=indices[:1],
        display_challenge=message.flags.display_attack_result,
        hide_final_attack=settings.hide_final_result_enabled and not viewer.owns_actor,
    )


def _damage_section(message: RollMessage, critical: bool) -> CardSection | None:
    indices = _indices(message, RollKind.DAMAGE)
    if not indices:
        return None
    if message.flags.is_healing:
        return CardSection(kind="damage", title="Healing", roll_indices=indices, healing=True)
    title = "Damage (Versatile)" if message.flags.versatile else "Damage"
    return CardSection(
        kind="damage",
        title=title,
        subtitle="Critical Hit!" if critical else None,
        roll_indices=indices,
        critical=critical,
    )


def _formula_section(message: RollMessage) -> CardSection | None:
    indices = _indices(message, RollKind.BASIC)
    if not indices:
        return None
    return CardSection(
        kind="formula",
        title=message.flags.formula_name or "Other Formula",
        roll_indices=indices[:1],
    )


def assemble_card(
    message: RollMessage,
    roll_type: RollType | None,
    viewer: Viewer,
    settings: RollSettings,
) -> ChatCard | None:
    """Build the card for a processed message.

    Returns None when the raw content should be shown untouched.
    """
    card = ChatCard(message_id=message.id, roll_type=roll_type)
    flags = message.flags
    has_damage = bool(_indices(message, RollKind.DAMAGE))

    if roll_type is RollType.DAMAGE:
        section = _damage_section(message, message.rolls[0].is_critical if message.rolls else False)
        if section:
            card.sections.append(section)
        if settings.damage_buttons_enabled and has_damage:
            card.buttons.append("apply-damage")

    elif roll_type is RollType.ATTACK:
        section = _attack_section(message, viewer, settings)
        if section:
            card.sections.append(section)

    elif roll_type is RollType.FORMULA:
        section = _formula_section(message)
        if section:
            card.sections.append(section)

    elif roll_type in CHECK_TYPES:
        if not message.content_visible:
            return None
        card.sections.append(CardSection(
            kind="multiroll",
            title=roll_type.value,
            roll_indices=[0],
            display_challenge=flags.display_challenge,
        ))
        if flags.is_concentration:
            card.buttons.append("concentration")

    elif roll_type is RollType.ACTIVITY:
        if not message.content_visible:
            return None
        if flags.render_attack is not None:
            section = _attack_section(message, viewer, settings)
            if section:
                card.sections.append(section)
        if flags.manual_damage:
            card.buttons.append("damage")
        if flags.render_damage:
            section = _damage_section(message, is_critical(message))
            if section:
                card.sections.append(section)
        if flags.render_formula:
            section = _formula_section(message)
            if section:
                card.sections.append(section)
        if settings.damage_buttons_enabled and has_damage:
            card.buttons.append("apply-damage")

    return card


def overlay_visibility(message: RollMessage, viewer: Viewer) -> OverlayVisibility:
    """Which retro-multiroll, retro-crit and reroll overlays the viewer gets."""
    has_permission = viewer.is_gm or message.author == viewer.user_id
    has_damage = any(r.kind is RollKind.DAMAGE for r in message.rolls)
    crit = has_permission and has_damage
    return OverlayVisibility(
        multiroll=has_permission and not is_multi_roll(message),
        crit=crit,
        retro_crit=crit and message.item_id is not None and not is_critical(message),
        reroll=crit,
    )
