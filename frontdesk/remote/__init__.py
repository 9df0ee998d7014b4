from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CHANGE_ADDED = "added"
CHANGE_MODIFIED = "modified"
CHANGE_REMOVED = "removed"
CHANGE_KINDS = (CHANGE_ADDED, CHANGE_MODIFIED, CHANGE_REMOVED)


@dataclass(frozen=True)
class DocumentChange:
    """One entry of a remote change feed.

    `pending` is true while the change is this device's own write that the
    remote has not acknowledged yet.
    """

    collection: str
    kind: str
    key: str
    data: dict[str, Any] | None = None
    pending: bool = False


ChangeCallback = Callable[[list[DocumentChange]], None]

# Client errors that may clear up on a later attempt.
_RETRYABLE_CODES = frozenset({401, 403, 408, 409, 425, 429})


def is_permanent_error(exc: BaseException) -> bool:
    """Whether a failed write would fail the same way if sent again.

    Backends either mark their errors with a `permanent` attribute or carry an
    HTTP-style status in `code` (google.api_core exceptions do).
    """

    permanent = getattr(exc, "permanent", None)
    if isinstance(permanent, bool):
        return permanent
    code = getattr(exc, "code", None)
    if isinstance(code, int) and not isinstance(code, bool):
        return 400 <= code < 500 and code not in _RETRYABLE_CODES
    return False


class Subscription:
    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._lock = threading.Lock()
        self.active = True

    def unsubscribe(self) -> None:
        with self._lock:
            if not self.active:
                return
            self.active = False
        self._cancel()


class RemoteStore(Protocol):
    name: str

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None: ...

    def update(self, collection: str, key: str, patch: dict[str, Any]) -> None:
        """Merge `patch` into the document, creating it when missing."""
        ...

    def delete(self, collection: str, key: str) -> None: ...

    def watch(self, collection: str, callback: ChangeCallback) -> Subscription: ...

    def close(self) -> None: ...


def open_remote_store(cfg: Any, *, state_db_path: Path | str = ":memory:") -> RemoteStore | None:
    """Build the configured remote backend, or None to run local-only.

    Backends that cannot be opened (missing library, credentials or URL) are
    logged and treated as local-only. `state_db_path` is where backends that
    follow a change feed keep their position between runs.
    """

    backend = str(getattr(cfg, "remote_backend", "none") or "none")
    if backend == "none":
        logger.info("remote sync disabled")
        return None
    try:
        if backend == "memory":
            from .memory import MemoryRemoteStore

            return MemoryRemoteStore()
        if backend == "http":
            from .http_store import HttpRemoteStore

            return HttpRemoteStore(
                cfg.remote_url or "",
                token=cfg.remote_token,
                timeout_s=cfg.remote_timeout_s,
                poll_interval_s=cfg.remote_poll_interval_ms / 1000.0,
                cursor_db_path=state_db_path,
            )
        if backend == "firestore":
            from .firestore import FirestoreRemoteStore

            return FirestoreRemoteStore(
                project=cfg.firestore_project,
                database=cfg.firestore_database,
                credentials=cfg.firestore_credentials,
            )
    except RuntimeError as exc:
        logger.warning("remote backend %s unavailable, running local-only: %s", backend, exc)
        return None
    logger.warning("unknown remote backend %r, running local-only", backend)
    return None
