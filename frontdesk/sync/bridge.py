from __future__ import annotations

import dataclasses
import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from ..blobs import BlobStore
from ..remote import CHANGE_REMOVED, DocumentChange, RemoteStore, Subscription
from ..store import Collection, LocalStore, MutationEvent, Recording
from .documents import changes_to_patch, record_from_document, record_to_document
from .keys import from_document_key, to_document_key

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], None]


class SyncBridge:
    """Keeps a LocalStore and a remote document store converging.

    Local mutations are forwarded as they commit; remote changes are applied to
    the local store and announced to the refresh callbacks registered for the
    collection. With no remote store the bridge runs local-only.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore | None,
        *,
        blob_store: BlobStore | None = None,
        collections: Iterable[Collection] = tuple(Collection),
    ) -> None:
        self.store = store
        self.remote = remote
        self.blob_store = blob_store
        self.collections = tuple(collections)
        self._callbacks: dict[Collection, list[RefreshCallback]] = defaultdict(list)
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._stats = {"pushed": 0, "applied": 0, "skipped_pending": 0, "failed": 0}
        self.started = False

    @property
    def local_only(self) -> bool:
        return self.remote is None

    def on_change(self, collection: Collection, callback: RefreshCallback) -> None:
        with self._lock:
            self._callbacks[Collection(collection)].append(callback)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            stats: dict[str, Any] = dict(self._stats)
        stats["backend"] = getattr(self.remote, "name", None) if self.remote else "local-only"
        stats["subscriptions"] = len(self._subscriptions)
        return stats

    def _count(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[name] += amount

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self.started:
            return
        self.started = True
        self.store.add_observer(self._on_local_mutation)
        if self.remote is None:
            logger.info("no remote store configured; running local-only")
            return
        for collection in self.collections:
            try:
                subscription = self.remote.watch(
                    collection.value,
                    lambda changes, c=collection: self._on_remote_changes(c, changes),
                )
            except Exception as exc:
                logger.warning("cannot watch remote %s: %s", collection.value, exc)
                continue
            self._subscriptions.append(subscription)

    def stop(self) -> None:
        if not self.started:
            return
        self.store.remove_observer(self._on_local_mutation)
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                subscription.unsubscribe()
            except Exception:
                logger.exception("failed to cancel remote subscription")
        self.started = False

    # -- outbound ----------------------------------------------------------

    def _on_local_mutation(self, event: MutationEvent) -> None:
        if event.origin == "remote" or self.remote is None:
            return
        if event.collection not in self.collections:
            return
        try:
            pushed = self._push(event)
        except Exception as exc:
            self._count("failed")
            logger.warning(
                "remote %s of %s/%s failed: %s", event.op, event.collection.value, event.key, exc
            )
            return
        if pushed:
            self._count("pushed")

    def _push(self, event: MutationEvent) -> bool:
        assert self.remote is not None
        collection = event.collection
        key = to_document_key(event.key)
        if event.op == "create":
            if event.record is None:
                return False
            doc = record_to_document(event.record)
            blob = getattr(event.record, "recording_blob", None)
            if self.blob_store is not None and blob and not doc.get("recordingRef"):
                doc["recordingRef"] = self.blob_store.put(collection.value, key, blob)
            self.remote.set(collection.value, key, doc)
            return True
        if event.op == "update":
            patch = changes_to_patch(collection, event.changes or {})
            if not patch:
                return False
            self.remote.update(collection.value, key, patch)
            return True
        if event.op == "delete":
            self.remote.delete(collection.value, key)
            return True
        logger.debug("ignoring %s event for %s/%s", event.op, collection.value, key)
        return False

    # -- inbound -----------------------------------------------------------

    def _on_remote_changes(self, collection: Collection, changes: list[DocumentChange]) -> None:
        touched = False
        for change in changes:
            if change.pending:
                self._count("skipped_pending")
                continue
            try:
                if self._apply(collection, change):
                    touched = True
                    self._count("applied")
            except Exception as exc:
                self._count("failed")
                logger.warning(
                    "could not apply remote %s of %s/%s: %s",
                    change.kind,
                    collection.value,
                    change.key,
                    exc,
                )
        if touched:
            self._notify(collection)

    def _apply(self, collection: Collection, change: DocumentChange) -> bool:
        key = from_document_key(change.key)
        if change.kind == CHANGE_REMOVED:
            return self.store.apply_remote_delete(collection, key)
        record = record_from_document(collection, change.key, change.data)
        if self.blob_store is not None and isinstance(record, Recording) and record.recording_ref:
            current = self.store.get(collection, key)
            if current is None or getattr(current, "recording_blob", None) is None:
                blob = self.blob_store.get(record.recording_ref)
                if blob is not None:
                    record = dataclasses.replace(record, recording_blob=blob)
        return self.store.apply_remote_upsert(record) != "unchanged"

    def _notify(self, collection: Collection) -> None:
        with self._lock:
            callbacks = list(self._callbacks.get(collection, ()))
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("refresh callback failed for %s", collection.value)
