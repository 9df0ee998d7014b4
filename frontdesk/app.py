from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from .blobs import BlobStore, FileBlobStore
from .config import FrontdeskConfig, load_config
from .remote import RemoteStore, open_remote_store
from .store import LocalStore
from .store.retention import RetentionReport
from .sync.bridge import SyncBridge
from .sync.outbox import QueuedRemoteStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(cfg: FrontdeskConfig) -> None:
    root = logging.getLogger("frontdesk")
    level = logging.getLevelName(str(cfg.log_level).upper())
    if not isinstance(level, int):
        level = logging.WARNING
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_frontdesk", False):
            root.removeHandler(handler)
            handler.close()
    console = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=False)
    console._frontdesk = True  # type: ignore[attr-defined]
    root.addHandler(console)
    if cfg.log_file:
        path = Path(cfg.log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler._frontdesk = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)


@dataclass
class Frontdesk:
    """A started application: local store, remote link and sync bridge."""

    config: FrontdeskConfig
    store: LocalStore
    bridge: SyncBridge
    outbox: QueuedRemoteStore | None = None
    blob_store: BlobStore | None = None
    retention: RetentionReport | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def local_only(self) -> bool:
        return self.bridge.local_only

    def status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "db_path": str(self.store.db_path),
            "backend": self.config.remote_backend if not self.local_only else "none",
            "bridge": self.bridge.stats(),
        }
        if self.outbox is not None:
            status["outbox"] = self.outbox.status()
        return status

    def close(self, *, flush: bool = True) -> None:
        self.bridge.stop()
        if self.outbox is not None:
            if flush:
                try:
                    self.outbox.flush()
                except Exception:
                    logger.exception("final outbox flush failed")
            self.outbox.close()
        self.store.close()

    def __enter__(self) -> Frontdesk:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _outbox_path(cfg: FrontdeskConfig, store: LocalStore) -> Path | str:
    if not cfg.offline_persistence or str(store.db_path) == ":memory:":
        return ":memory:"
    return store.db_path


def bootstrap(
    cfg: FrontdeskConfig | None = None,
    *,
    remote: RemoteStore | None = None,
    db_path: Path | str | None = None,
    start_outbox: bool = True,
    run_retention: bool = True,
    now: int | None = None,
) -> Frontdesk:
    """Open the store and start syncing before anything else writes to it.

    `remote` overrides the configured backend. Order: store, remote link,
    bridge start, admin seeding, retention cleanup.
    """

    cfg = cfg or load_config()
    store = LocalStore(db_path or cfg.db_path)
    inner = remote if remote is not None else open_remote_store(cfg, state_db_path=store.db_path)
    outbox: QueuedRemoteStore | None = None
    if inner is not None:
        outbox = QueuedRemoteStore(
            inner,
            _outbox_path(cfg, store),
            flush_interval_s=cfg.sync_flush_interval_ms / 1000.0,
        )
    blob_store = FileBlobStore(cfg.blob_dir) if cfg.blob_dir else None
    bridge = SyncBridge(store, outbox, blob_store=blob_store)
    bridge.start()
    if outbox is not None and start_outbox:
        outbox.start()
    app = Frontdesk(config=cfg, store=store, bridge=bridge, outbox=outbox, blob_store=blob_store)

    if cfg.seed_admin_pin:
        try:
            if store.seed_admin(cfg.seed_admin_name, cfg.seed_admin_pin) is not None:
                logger.info("seeded admin user %s", cfg.seed_admin_name)
        except ValueError as exc:
            logger.warning("could not seed admin user: %s", exc)
            app.errors.append(str(exc))

    if run_retention:
        try:
            app.retention = store.cleanup_old_data(
                now=now,
                retention_days=cfg.retention_days,
                warning_days=cfg.retention_warning_days,
            )
        except Exception as exc:
            logger.exception("retention cleanup failed")
            app.errors.append(str(exc))
    return app
