from __future__ import annotations

import logging
from typing import Any

from . import (
    CHANGE_ADDED,
    CHANGE_MODIFIED,
    CHANGE_REMOVED,
    ChangeCallback,
    DocumentChange,
    Subscription,
)

logger = logging.getLogger(__name__)

_CHANGE_TYPES = {
    "ADDED": CHANGE_ADDED,
    "MODIFIED": CHANGE_MODIFIED,
    "REMOVED": CHANGE_REMOVED,
}


def _open_client(project: str | None, database: str | None, credentials: str | None) -> Any:
    try:
        from google.cloud import firestore
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("google-cloud-firestore is required for the firestore backend") from exc
    kwargs: dict[str, Any] = {}
    if project:
        kwargs["project"] = project
    if database:
        kwargs["database"] = database
    try:
        if credentials:
            return firestore.Client.from_service_account_json(credentials, **kwargs)
        return firestore.Client(**kwargs)
    except Exception as exc:
        raise RuntimeError(f"cannot open firestore client: {exc}") from exc


class FirestoreRemoteStore:
    """Cloud Firestore collections as the remote document store."""

    name = "firestore"

    def __init__(
        self,
        *,
        project: str | None = None,
        database: str | None = None,
        credentials: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.client = client if client is not None else _open_client(project, database, credentials)
        self._watches: list[Any] = []

    def _doc(self, collection: str, key: str) -> Any:
        return self.client.collection(collection).document(key)

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._doc(collection, key).set(data)

    def update(self, collection: str, key: str, patch: dict[str, Any]) -> None:
        # merge=True creates the document when it does not exist yet.
        self._doc(collection, key).set(patch, merge=True)

    def delete(self, collection: str, key: str) -> None:
        self._doc(collection, key).delete()

    def watch(self, collection: str, callback: ChangeCallback) -> Subscription:
        def on_snapshot(_snapshot: Any, changes: Any, _read_time: Any) -> None:
            batch: list[DocumentChange] = []
            for change in changes or ():
                kind = _CHANGE_TYPES.get(getattr(change.type, "name", str(change.type)))
                if kind is None:
                    logger.warning("unknown firestore change type %r", change.type)
                    continue
                document = change.document
                data = None if kind == CHANGE_REMOVED else document.to_dict()
                batch.append(DocumentChange(collection, kind, str(document.id), data))
            if batch:
                try:
                    callback(batch)
                except Exception:
                    logger.exception("change callback failed for %s", collection)

        watch = self.client.collection(collection).on_snapshot(on_snapshot)
        self._watches.append(watch)

        def cancel() -> None:
            if watch in self._watches:
                self._watches.remove(watch)
            watch.unsubscribe()

        return Subscription(cancel)

    def close(self) -> None:
        watches, self._watches = self._watches, []
        for watch in watches:
            try:
                watch.unsubscribe()
            except Exception:
                logger.exception("failed to stop firestore listener")
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
