from __future__ import annotations

import json
from collections.abc import Collection
from http.client import HTTPConnection, HTTPSConnection
from typing import Any
from urllib.parse import quote, urlparse

# 4xx answers that may succeed on a later attempt.
RETRYABLE_CLIENT_STATUSES = frozenset({401, 403, 408, 409, 425, 429})


class RemoteRequestError(RuntimeError):
    def __init__(self, method: str, url: str, status: int, payload: dict[str, Any] | None):
        detail = (payload or {}).get("error") or "request failed"
        super().__init__(f"{method} {url} -> {status}: {detail}")
        self.status = status
        self.detail = detail

    @property
    def permanent(self) -> bool:
        """True when resending the same request cannot succeed."""

        return 400 <= self.status < 500 and self.status not in RETRYABLE_CLIENT_STATUSES


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def collection_url(base_url: str, collection: str, suffix: str) -> str:
    return f"{base_url}/v1/collections/{quote(collection, safe='')}/{suffix}"


def doc_url(base_url: str, collection: str, key: str) -> str:
    return collection_url(base_url, collection, f"docs/{quote(key, safe='')}")


def request_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    body: dict[str, Any] | None = None,
    timeout_s: float = 3.0,
    accept_statuses: Collection[int] = (),
) -> tuple[int, dict[str, Any] | None]:
    """Send one request and decode the JSON answer.

    Statuses of 400 and above raise `RemoteRequestError` unless listed in
    `accept_statuses`.
    """

    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    if parsed.scheme == "https":
        conn = HTTPSConnection(parsed.hostname, parsed.port or 443, timeout=timeout_s)
    else:
        conn = HTTPConnection(parsed.hostname, parsed.port or 80, timeout=timeout_s)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    body_bytes = None
    request_headers = {"Accept": "application/json"}
    if body is not None:
        body_bytes = json.dumps(body, ensure_ascii=False).encode("utf-8")
        request_headers["Content-Type"] = "application/json"
        request_headers["Content-Length"] = str(len(body_bytes))
    if headers:
        request_headers.update(headers)
    try:
        conn.request(method, path, body=body_bytes, headers=request_headers)
        resp = conn.getresponse()
        status = int(resp.status)
        raw = resp.read()
    finally:
        conn.close()
    payload = _decode(raw)
    if status >= 400 and status not in accept_statuses:
        raise RemoteRequestError(method, url, status, payload)
    return status, payload


def _decode(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        snippet = raw[:240].decode("utf-8", errors="replace").strip()
        return {"error": f"non_json_response: {snippet}" if snippet else "non_json_response"}
    if isinstance(payload, dict):
        return payload
    return {"error": f"unexpected_json_type: {type(payload).__name__}"}
