"""questlog errors and the invariant guard."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class QuestlogError(Exception):
    """Base exception for questlog."""


class SnapshotDecodeError(QuestlogError):
    """Persisted or imported snapshot data is malformed."""

    def __init__(self, reason: str):
        """Initialize error with a human-readable reason."""
        super().__init__(reason)
        self.reason = reason


class InvariantViolation(QuestlogError):
    """An internal invariant was broken; indicates a programming defect."""


class InvariantGuard:
    """
    Report invariant violations according to the configured strictness.

    Strict mode (development) raises ``InvariantViolation``. Otherwise the
    violation is logged and the caller carries on without the mutation.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def check(self, condition: bool, message: str, **context: Any) -> bool:
        """Return ``condition``; report a violation when it is False."""
        if condition:
            return True
        if self.strict:
            raise InvariantViolation(message)
        logger.error(
            "Invariant violation: %s", message, extra={"invariant": context}
        )
        return False
