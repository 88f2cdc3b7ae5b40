"""Feedback storage contract and simple stores."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Sequence

from ..core.models import FeedbackItem, Source, TimeWindow

logger = logging.getLogger(__name__)


class FeedbackStore(ABC):
    """Read-only source of feedback items for an analysis run."""

    @abstractmethod
    def fetch_items(self, window: TimeWindow, sources: Sequence[Source]) -> List[FeedbackItem]:
        """Return items of the given sources inside the window, oldest first."""


class InMemoryFeedbackStore(FeedbackStore):
    """Store backed by a list of items held in memory."""

    def __init__(self, items: Iterable[FeedbackItem] = ()):
        self._items = list(items)

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: FeedbackItem) -> None:
        self._items.append(item)

    def fetch_all(self) -> List[FeedbackItem]:
        return sorted(self._items, key=lambda i: (i.timestamp, i.id))

    def fetch_items(self, window: TimeWindow, sources: Sequence[Source]) -> List[FeedbackItem]:
        wanted = set(sources)
        selected = [i for i in self._items if i.source in wanted and window.contains(i.timestamp)]
        return sorted(selected, key=lambda i: (i.timestamp, i.id))


class JsonFileFeedbackStore(InMemoryFeedbackStore):
    """Store loaded from a JSON file holding a list of items (or ``{"items": [...]}``)."""

    def __init__(self, path: str):
        self.path = path
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        records = data.get("items", []) if isinstance(data, dict) else data
        items = [FeedbackItem.from_dict(r) for r in records]
        logger.info(f"Loaded {len(items)} feedback items from {path}")
        super().__init__(items)
