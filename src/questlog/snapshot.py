"""Versioned snapshot codec for persistence and export/import."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ValidationError

from .errors import SnapshotDecodeError
from .ledger import xp_threshold
from .state import UserState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class Snapshot(BaseModel):
    """Complete, self-describing state of one user's progression."""

    version: int = SNAPSHOT_VERSION
    user_id: str
    saved_at: datetime
    state: UserState


class ImportResult(BaseModel):
    """Outcome of importing an exported snapshot."""

    success: bool
    reason: Optional[str] = None


def encode_snapshot(user_id: str, state: UserState, saved_at: datetime) -> str:
    """Serialize a user's state to snapshot JSON."""
    snapshot = Snapshot(user_id=user_id, saved_at=saved_at, state=state)
    return snapshot.model_dump_json()


def read_version(payload: str | bytes) -> tuple[dict, int]:
    """
    Parse snapshot JSON far enough to read its version tag.

    Raises:
        SnapshotDecodeError: If the payload is not a JSON object with an
            integer ``version`` field
    """
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise SnapshotDecodeError(f"invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise SnapshotDecodeError("snapshot must be a JSON object")

    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise SnapshotDecodeError("missing or invalid version tag")
    return raw, version


def decode_snapshot(payload: str | bytes) -> Optional[Snapshot]:
    """
    Decode snapshot JSON.

    Args:
        payload: Snapshot JSON

    Returns:
        The snapshot, or None when it was written by an incompatible schema
        version (treated as no prior data)

    Raises:
        SnapshotDecodeError: If the payload is malformed or inconsistent
    """
    raw, version = read_version(payload)
    if version != SNAPSHOT_VERSION:
        logger.warning(
            "Ignoring snapshot with incompatible version",
            extra={"version": version, "expected": SNAPSHOT_VERSION},
        )
        return None
    return _validate(raw)


def _validate(raw: dict) -> Snapshot:
    try:
        snapshot = Snapshot.model_validate(raw)
    except ValidationError as e:
        raise SnapshotDecodeError(
            f"invalid snapshot ({e.error_count()} errors): {e.errors()[0]['msg']}"
        ) from e

    state = snapshot.state
    if state.ledger.total() != state.profile.total_points:
        raise SnapshotDecodeError("ledger categories do not sum to total points")
    if state.profile.experience >= xp_threshold(state.profile.level):
        raise SnapshotDecodeError("experience exceeds the current level threshold")
    for achievement_id, achievement in state.achievements.items():
        if achievement.id != achievement_id or achievement.unlocked_at is None:
            raise SnapshotDecodeError(f"inconsistent achievement record: {achievement_id}")
    return snapshot
