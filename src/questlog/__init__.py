"""questlog - progression and rewards engine."""

from .catalog import Catalog
from .challenges import ChallengeOverrides
from .clock import FixedClock, SystemClock
from .config import QuestlogSettings, load_settings
from .engine import EventResult, ProgressionEngine
from .errors import InvariantViolation, QuestlogError, SnapshotDecodeError
from .observers import CallbackObserver, ProgressionObserver
from .routes import DiscoveryInput
from .snapshot import ImportResult
from .store import MemorySnapshotStore, RedisSnapshotStore
from .types import ActivityEvent, ActivityKind, CollectionType, PointCategory, Quality, Rarity
from .__version__ import __version__

__all__ = [
    "ProgressionEngine",
    "EventResult",
    "Catalog",
    "ChallengeOverrides",
    "DiscoveryInput",
    "QuestlogSettings",
    "load_settings",
    "FixedClock",
    "SystemClock",
    "MemorySnapshotStore",
    "RedisSnapshotStore",
    "ImportResult",
    "ActivityEvent",
    "ActivityKind",
    "CollectionType",
    "PointCategory",
    "Quality",
    "Rarity",
    "CallbackObserver",
    "ProgressionObserver",
    "QuestlogError",
    "SnapshotDecodeError",
    "InvariantViolation",
    "__version__",
]
