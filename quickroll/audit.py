"""Audit records summarizing completed rerolls."""

from __future__ import annotations

import logging
import uuid

from quickroll.errors import AuditError
from quickroll.models import AuditRecord, AuditRow, DieRef, DieTerm, KeepPolicy, RollMessage
from quickroll.ports import MessageStore

logger = logging.getLogger(__name__)


def build_audit(message: RollMessage, touched: list[DieRef], policy: KeepPolicy) -> AuditRecord:
    """Summarize the rerolled die results named by *touched*, in order.

    References that do not point at a rerolled result are skipped.
    """
    rows: list[AuditRow] = []
    rolls = message.damage_rolls
    for ref in touched:
        if ref.roll_index >= len(rolls):
            continue
        dice: list[DieTerm] = rolls[ref.roll_index].dice
        if ref.term_index >= len(dice):
            continue
        term = dice[ref.term_index]
        if ref.die_index >= len(term.results):
            continue
        result = term.results[ref.die_index]
        if not result.was_rerolled:
            continue
        rows.append(AuditRow(
            faces=term.faces,
            old_value=result.old_value,
            new_value=result.new_value,
            final_value=result.value,
        ))
    return AuditRecord(
        id=str(uuid.uuid4()),
        message_id=message.id,
        author=message.author,
        keep_policy=policy,
        rows=tuple(rows),
    )


class AuditLogEmitter:
    """Creates one audit record per completed reroll, best-effort."""

    def __init__(self, store: MessageStore):
        self.store = store

    async def emit(
        self, message: RollMessage, touched: list[DieRef], policy: KeepPolicy,
    ) -> AuditRecord | None:
        """Build and persist the audit record.

        Failures are logged and swallowed: the reroll it describes is already
        stored and stays valid.
        """
        try:
            record = build_audit(message, touched, policy)
            return await self.store.create_audit(record)
        except AuditError as e:
            logger.warning("audit: reroll of message %s not recorded: %s", message.id, e)
        except Exception:
            logger.exception("audit: failed to record reroll of message %s", message.id)
        return None
