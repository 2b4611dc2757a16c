"""Errors raised by the roll pipeline."""

from __future__ import annotations


class QuickRollError(Exception):
    """Base class for roll pipeline errors."""

    #: Notification key shown to the user when the error surfaces.
    notice = "quickroll.error"


class RollValidationError(QuickRollError):
    """The message's rolls do not fit the requested operation."""
    notice = "quickroll.error.invalidRoll"


class AlreadyCriticalError(RollValidationError):
    notice = "quickroll.error.alreadyCritical"


class SelectionError(QuickRollError):
    """A reroll reference does not resolve to an active die result."""


class GenerationError(QuickRollError):
    """Fresh die outcomes could not be produced."""
    notice = "quickroll.reroll.error"


class PersistenceError(QuickRollError):
    """The store rejected an update."""
    notice = "quickroll.error.persistence"


class StaleMessageError(PersistenceError):
    """The message changed since it was fetched."""

    def __init__(self, message_id: str, expected: int, actual: int):
        super().__init__(
            f"Message {message_id} is at version {actual}, expected {expected}"
        )
        self.message_id = message_id
        self.expected = expected
        self.actual = actual


class MessageNotFoundError(PersistenceError):
    notice = "quickroll.error.notFound"

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


class AuditError(QuickRollError):
    """The reroll audit record could not be created."""
