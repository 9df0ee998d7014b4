from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Any

from . import (
    CHANGE_ADDED,
    CHANGE_MODIFIED,
    CHANGE_REMOVED,
    ChangeCallback,
    DocumentChange,
    Subscription,
)


class MemoryRemoteStore:
    """In-process document store.

    Watchers are notified synchronously on the writing thread. Every write is
    appended to `calls` as (method, collection, key, payload).
    """

    name = "memory"

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[str, str, str, dict[str, Any] | None]] = []
        self._watchers: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._lock = threading.RLock()
        self.closed = False

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self.documents[collection].get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def keys(self, collection: str) -> list[str]:
        with self._lock:
            return sorted(self.documents[collection])

    def calls_for(self, method: str) -> list[tuple[str, str, str, dict[str, Any] | None]]:
        return [call for call in self.calls if call[0] == method]

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append(("set", collection, key, copy.deepcopy(data)))
            existed = key in self.documents[collection]
            self.documents[collection][key] = copy.deepcopy(data)
            change = DocumentChange(
                collection,
                CHANGE_MODIFIED if existed else CHANGE_ADDED,
                key,
                copy.deepcopy(data),
            )
        self._notify(collection, [change])

    def update(self, collection: str, key: str, patch: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append(("update", collection, key, copy.deepcopy(patch)))
            existing = self.documents[collection].get(key)
            merged = dict(existing or {})
            merged.update(copy.deepcopy(patch))
            self.documents[collection][key] = merged
            change = DocumentChange(
                collection,
                CHANGE_MODIFIED if existing is not None else CHANGE_ADDED,
                key,
                copy.deepcopy(merged),
            )
        self._notify(collection, [change])

    def delete(self, collection: str, key: str) -> None:
        with self._lock:
            self.calls.append(("delete", collection, key, None))
            existed = self.documents[collection].pop(key, None) is not None
        if existed:
            self._notify(collection, [DocumentChange(collection, CHANGE_REMOVED, key)])

    def emit(self, collection: str, changes: list[DocumentChange]) -> None:
        """Deliver `changes` to watchers without touching the stored documents."""

        self._notify(collection, changes)

    def watch(self, collection: str, callback: ChangeCallback) -> Subscription:
        with self._lock:
            self._watchers[collection].append(callback)
            snapshot = [
                DocumentChange(collection, CHANGE_ADDED, key, copy.deepcopy(doc))
                for key, doc in sorted(self.documents[collection].items())
            ]
        if snapshot:
            callback(snapshot)

        def cancel() -> None:
            with self._lock:
                if callback in self._watchers[collection]:
                    self._watchers[collection].remove(callback)

        return Subscription(cancel)

    def watcher_count(self, collection: str) -> int:
        with self._lock:
            return len(self._watchers[collection])

    def close(self) -> None:
        with self._lock:
            self._watchers.clear()
            self.closed = True

    def _notify(self, collection: str, changes: list[DocumentChange]) -> None:
        with self._lock:
            watchers = list(self._watchers[collection])
        for callback in watchers:
            callback(changes)
