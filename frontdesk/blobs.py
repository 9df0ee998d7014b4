from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol

_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


class BlobStore(Protocol):
    def put(self, collection: str, key: str, data: bytes) -> str: ...

    def get(self, ref: str) -> bytes | None: ...

    def delete(self, ref: str) -> bool: ...


def blob_ref(collection: str, key: str) -> str:
    return f"{_SAFE_RE.sub('_', collection)}/{_SAFE_RE.sub('_', key)}"


class FileBlobStore:
    """Keeps call audio as files under `root`, addressed by "<collection>/<key>"."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser()

    def _path(self, ref: str) -> Path:
        parts = ref.split("/")
        if len(parts) != 2 or any(not p or p in {".", ".."} for p in parts):
            raise ValueError(f"invalid blob ref: {ref!r}")
        return self.root / parts[0] / f"{parts[1]}.blob"

    def put(self, collection: str, key: str, data: bytes) -> str:
        ref = blob_ref(collection, key)
        path = self._path(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)
        return ref

    def get(self, ref: str) -> bytes | None:
        path = self._path(ref)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, ref: str) -> bool:
        path = self._path(ref)
        if not path.exists():
            return False
        path.unlink()
        return True
