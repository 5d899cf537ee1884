"""Collectible card inventory."""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel

from .catalog import Catalog
from .clock import Clock
from .state import CollectionEntry, UserState
from .types import CollectionType, Quality

logger = logging.getLogger(__name__)


class CollectionProgress(BaseModel):
    collection_type: CollectionType
    distinct: int
    catalog_size: int
    percent: float


class Collection:
    """Manages ``UserState.collection``; one entry per (type, item id)."""

    def __init__(self, state: UserState, *, catalog: Catalog, clock: Clock) -> None:
        self.state = state
        self.catalog = catalog
        self.clock = clock

    def add(
        self,
        collection_type: CollectionType,
        item_id: str,
        *,
        quality: Quality = Quality.GOOD,
        rare: bool = False,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Add a card; duplicates only increase the quantity.

        Returns:
            True when the entry is new
        """
        bucket = self.state.collection.setdefault(collection_type, {})
        existing = bucket.get(item_id)
        if existing is not None:
            existing.quantity += 1
            # Keep the best quality seen and never drop the rare flag.
            if quality.rank > existing.quality.rank:
                existing.quality = quality
            existing.rare = existing.rare or rare
            return False

        bucket[item_id] = CollectionEntry(
            collection_type=collection_type,
            item_id=item_id,
            first_obtained_at=self.clock.now(),
            quality=quality,
            rare=rare,
            position=self.total_distinct() + 1,
            details=details or {},
        )
        logger.info(
            "Card collected",
            extra={"collection_type": collection_type.value, "item_id": item_id},
        )
        return True

    def get(self, collection_type: CollectionType, item_id: str) -> Optional[CollectionEntry]:
        return self.state.collection.get(collection_type, {}).get(item_id)

    def total_distinct(self) -> int:
        return sum(len(bucket) for bucket in self.state.collection.values())

    def progress(self, collection_type: CollectionType) -> CollectionProgress:
        distinct = len(self.state.collection.get(collection_type, {}))
        size = self.catalog.collection_sizes.get(collection_type, 0)
        percent = min(distinct / size * 100, 100.0) if size > 0 else 0.0
        return CollectionProgress(
            collection_type=collection_type,
            distinct=distinct,
            catalog_size=size,
            percent=round(percent, 2),
        )
