from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_frontdesk_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("FRONTDESK_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FRONTDESK_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("FRONTDESK_DB", str(tmp_path / "frontdesk.sqlite"))


@pytest.fixture(autouse=True)
def _reset_frontdesk_logging():
    yield
    root = logging.getLogger("frontdesk")
    for handler in list(root.handlers):
        if getattr(handler, "_frontdesk", False):
            root.removeHandler(handler)
            handler.close()
