"""Click CLI for inspecting and augmenting roll messages stored in a JSON file."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from quickroll.classify import classify, is_critical, is_multi_roll, phase
from quickroll.commands import QuickRollCommands
from quickroll.errors import QuickRollError
from quickroll.models import DieRef, KeepPolicy, RerollSelection, RollKind, RollState, RollType
from quickroll.store import InMemoryMessageStore


def get_commands(ctx: click.Context) -> QuickRollCommands:
    return ctx.obj["commands"]


def get_store(ctx: click.Context) -> InMemoryMessageStore:
    return ctx.obj["store"]


def _parse_die(value: str) -> DieRef:
    try:
        roll_index, term_index, die_index = (int(p) for p in value.split(":"))
        return DieRef(roll_index=roll_index, term_index=term_index, die_index=die_index)
    except ValueError:
        raise click.BadParameter(f"expected ROLL:TERM:DIE, got '{value}'")


@click.group()
@click.option(
    "--state-file",
    type=click.Path(path_type=Path),
    default=Path("state/messages.json"),
    help="JSON file holding the roll messages.",
)
@click.option("--verbose", is_flag=True, help="Log pipeline activity to stderr.")
@click.pass_context
def cli(ctx: click.Context, state_file: Path, verbose: bool) -> None:
    """Augment dice-roll chat messages."""
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)
    ctx.ensure_object(dict)
    store = InMemoryMessageStore(state_file)
    ctx.obj["store"] = store
    ctx.obj["commands"] = QuickRollCommands(store)


@cli.command("list")
@click.pass_context
def list_messages(ctx: click.Context) -> None:
    """List stored messages."""
    for msg in asyncio.run(get_store(ctx).list_messages()):
        roll_type = classify(msg)
        click.echo(
            f"{msg.id}  {roll_type.value if roll_type else '-':<13} "
            f"{phase(msg).value:<9} {msg.flavor}"
        )


@cli.command("classify")
@click.argument("message_id")
@click.pass_context
def classify_cmd(ctx: click.Context, message_id: str) -> None:
    """Show the type, phase and predicates of a message."""
    try:
        msg = asyncio.run(get_store(ctx).require(message_id))
    except QuickRollError as e:
        raise click.ClickException(str(e))
    roll_type = classify(msg)
    click.echo(f"type: {roll_type.value if roll_type else 'none'}")
    click.echo(f"phase: {phase(msg).value}")
    click.echo(f"multiroll: {is_multi_roll(msg)}")
    click.echo(f"critical: {is_critical(msg)}")
    for i, roll in enumerate(msg.rolls):
        click.echo(f"  [{i}] {roll.kind.value:<6} {roll.formula} = {roll.total}")


@cli.command()
@click.argument("message_id")
@click.pass_context
def dice(ctx: click.Context, message_id: str) -> None:
    """Show the damage dice that can be rerolled."""
    try:
        groups = asyncio.run(get_commands(ctx).dice_groups(message_id))
    except QuickRollError as e:
        raise click.ClickException(str(e))
    if not groups:
        click.echo("No damage dice.")
        return
    for g in groups:
        click.echo(f"d{g.faces} ({g.damage_type or 'untyped'})")
        for c in g.results:
            marks = f" [{','.join(c.classes)}]" if c.classes else ""
            click.echo(f"  {g.roll_index}:{g.term_index}:{c.index}  {c.value}{marks}")


@cli.command()
@click.argument("message_id")
@click.option("--die", "dice_refs", multiple=True, required=True, help="ROLL:TERM:DIE to reroll.")
@click.option(
    "--keep",
    type=click.Choice([p.value for p in KeepPolicy]),
    default=KeepPolicy.KEEP_NEW.value,
    help="Keep the new value, or the better of old and new.",
)
@click.pass_context
def reroll(ctx: click.Context, message_id: str, dice_refs: tuple[str, ...], keep: str) -> None:
    """Reroll selected damage dice."""
    selection = RerollSelection(dice=[_parse_die(d) for d in dice_refs])
    try:
        outcome = asyncio.run(get_commands(ctx).reroll(message_id, selection, KeepPolicy(keep)))
    except QuickRollError as e:
        raise click.ClickException(str(e))
    if outcome.message is None:
        click.echo("No valid dice selected.")
        return
    click.echo(f"Rerolled {outcome.count} dice.")
    if outcome.audit:
        for row in outcome.audit.rows:
            click.echo(
                f"  d{row.faces}: {row.old_value} -> {row.new_value}, "
                f"kept {row.final_value} ({row.delta:+d})"
            )
        click.echo(f"Total change: {outcome.audit.total_delta:+d}")


@cli.command("retro-multiroll")
@click.argument("message_id")
@click.argument("state", type=click.Choice([s.value for s in RollState]))
@click.option(
    "--key",
    type=click.Choice([t.value for t in RollType]),
    default=None,
    help="Roll type key of the card section that was clicked.",
)
@click.pass_context
def retro_multiroll(ctx: click.Context, message_id: str, state: str, key: str | None) -> None:
    """Turn a normal d20 roll into advantage or disadvantage."""
    try:
        msg = asyncio.run(get_commands(ctx).retro_multiroll(
            message_id, RollState(state), RollType(key) if key else None,
        ))
    except QuickRollError as e:
        raise click.ClickException(str(e))
    if msg is None:
        click.echo("Cancelled.")
        return
    d20 = next(r for r in msg.rolls if r.kind is RollKind.D20)
    click.echo(f"{msg.flavor}: {d20.formula} = {d20.total}")


@cli.command("retro-critical")
@click.argument("message_id")
@click.pass_context
def retro_critical(ctx: click.Context, message_id: str) -> None:
    """Promote a message's damage rolls to a critical hit."""
    try:
        msg = asyncio.run(get_commands(ctx).retro_critical(message_id))
    except QuickRollError as e:
        raise click.ClickException(str(e))
    if msg is None:
        click.echo("Cancelled.")
        return
    for roll in msg.damage_rolls:
        click.echo(f"{roll.formula} = {roll.total}")
