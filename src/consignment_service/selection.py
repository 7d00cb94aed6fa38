"""Selected item ids of a list view, kept across page navigation.

The state is persisted through a small key/value storage interface so a
browser session store, a file or a plain dict can hold it. An empty
selection removes its key instead of storing an empty list.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

PRODUCT_SELECTION_KEY = "inventory_product_selection"
CONSIGNMENT_SELECTION_KEY = "inventory_consignment_selection"
ITEM_SELECTION_KEY = "inventory_item_selection"

DEFAULT_FETCH_LIMIT = 10000

IdsFetcher = Callable[[int], Awaitable[List[str]]]


class SelectionStorage(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStorage:
    """Dict backed :class:`SelectionStorage`."""

    def __init__(self) -> None:
        self.values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class SelectionState:
    def __init__(
        self,
        storage: SelectionStorage,
        key: str,
        *,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
    ) -> None:
        self.storage = storage
        self.key = key
        self.fetch_limit = fetch_limit
        self._ids: Dict[str, None] = dict.fromkeys(self._load())

    def _load(self) -> List[str]:
        raw = self.storage.get(self.key)
        if not raw:
            return []
        try:
            saved = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable selection stored under %s", self.key)
            self.storage.remove(self.key)
            return []
        if not isinstance(saved, list):
            return []
        return [value for value in saved if isinstance(value, str)]

    def _persist(self) -> None:
        if not self._ids:
            self.storage.remove(self.key)
            return
        self.storage.set(self.key, json.dumps(list(self._ids)))

    @property
    def ids(self) -> List[str]:
        return list(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def toggle(self, item_id: str) -> bool:
        """Flip one id; returns whether it is selected afterwards."""

        if item_id in self._ids:
            del self._ids[item_id]
            selected = False
        else:
            self._ids[item_id] = None
            selected = True
        self._persist()
        return selected

    def all_selected(self, page_ids: Iterable[str]) -> bool:
        page_ids = list(page_ids)
        return bool(page_ids) and all(item_id in self._ids for item_id in page_ids)

    def toggle_page(self, page_ids: Iterable[str]) -> None:
        """Select every id on the page, or deselect them when all already are."""

        page_ids = list(page_ids)
        if self.all_selected(page_ids):
            for item_id in page_ids:
                self._ids.pop(item_id, None)
        else:
            for item_id in page_ids:
                self._ids[item_id] = None
        self._persist()

    async def select_all_matching(self, fetch_ids: IdsFetcher) -> List[str]:
        """Replace the selection with every id the current filter matches."""

        ids = await fetch_ids(self.fetch_limit)
        self._ids = dict.fromkeys(item_id for item_id in ids[: self.fetch_limit] if isinstance(item_id, str))
        self._persist()
        return self.ids

    def clear(self) -> None:
        self._ids = {}
        self._persist()


__all__ = [
    "PRODUCT_SELECTION_KEY",
    "CONSIGNMENT_SELECTION_KEY",
    "ITEM_SELECTION_KEY",
    "DEFAULT_FETCH_LIMIT",
    "IdsFetcher",
    "SelectionStorage",
    "MemoryStorage",
    "SelectionState",
]
