from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

import fsspec

from cadence_core.errors import RepositoryUnavailableError


@contextmanager
def _storage_errors(action: str, uri: str) -> Iterator[None]:
    try:
        yield
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RepositoryUnavailableError(f"Failed to {action} {uri}: {exc}") from exc


def read_document(uri: str) -> dict[str, Any] | None:
    with _storage_errors("read", uri):
        fs, path = fsspec.core.url_to_fs(uri)
        if not fs.exists(path):
            return None
        with fs.open(path, "rb") as handle:
            payload = json.loads(handle.read().decode("utf-8"))
    return payload if isinstance(payload, dict) else None


def read_items(uri: str, key: str) -> list[dict[str, Any]]:
    payload = read_document(uri)
    if payload is None:
        return []
    items = payload.get(key, [])
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def write_document(uri: str, payload: dict[str, Any]) -> str:
    body = dict(payload)
    body["updated_at"] = datetime.now(timezone.utc).isoformat()
    with _storage_errors("write", uri):
        fs, path = fsspec.core.url_to_fs(uri)
        fs.makedirs("/".join(path.split("/")[:-1]), exist_ok=True)
        with fs.open(path, "wb") as handle:
            handle.write(json.dumps(body, ensure_ascii=True).encode("utf-8"))
    return uri


def write_items(uri: str, key: str, items: list[dict[str, Any]]) -> str:
    return write_document(uri, {key: items})


def list_documents(uri: str, suffix: str = ".json") -> list[str]:
    with _storage_errors("list", uri):
        fs, path = fsspec.core.url_to_fs(uri)
        if not fs.exists(path):
            return []
        names = sorted(fs.ls(path, detail=False))
    protocol = fs.protocol[0] if isinstance(fs.protocol, tuple) else fs.protocol
    matches = [name for name in names if name.endswith(suffix)]
    if protocol in {"file", "local"}:
        return matches
    return [f"{protocol}://{match}" for match in matches]
