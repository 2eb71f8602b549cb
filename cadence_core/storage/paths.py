from __future__ import annotations

from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse


def _strip_slashes(value: str) -> str:
    return value.strip("/")


def _join_parts(parts: Iterable[str]) -> str:
    return "/".join(_strip_slashes(part) for part in parts if part)


def has_uri_scheme(value: str) -> bool:
    return bool(urlparse(value).scheme)


def backend_scheme(storage_backend: str) -> str | None:
    backend = storage_backend.strip().lower()
    if backend in {"gcs", "gs"}:
        return "gs"
    if backend == "s3":
        return "s3"
    return None


def state_root(bucket: str, prefix: str, *, scheme: str | None = None) -> str:
    if has_uri_scheme(bucket):
        base = bucket.rstrip("/")
    else:
        base = f"{scheme or 'gs'}://{_strip_slashes(bucket)}"
    if not prefix:
        return base
    return f"{base}/{_strip_slashes(prefix)}"


def join_uri(base_uri: str, *parts: str) -> str:
    parsed = urlparse(base_uri)
    if parsed.scheme == "file":
        safe_parts = [_strip_slashes(part) for part in parts if part]
        return str(Path(parsed.path).joinpath(*safe_parts))
    if parsed.scheme and parsed.netloc:
        base = base_uri.rstrip("/")
        return f"{base}/{_join_parts(parts)}"
    safe_parts = [_strip_slashes(part) for part in parts if part]
    return str(Path(base_uri).joinpath(*safe_parts))


def control_uri(base_uri: str, *parts: str) -> str:
    return join_uri(base_uri, "control", *parts)
