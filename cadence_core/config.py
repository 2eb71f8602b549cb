from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from cadence_core.storage.paths import (
    backend_scheme,
    has_uri_scheme,
    join_uri,
    state_root,
)

LEASE_BACKENDS = ("sqlite", "memory", "firestore")
NOTIFIER_BACKENDS = ("log", "pubsub")


@dataclass(frozen=True)
class EngineSettings:
    tick_workers: int = 8
    action_batch_size: int = 500
    max_batches_per_tick: int = 4
    stop_timeout_seconds: int = 300
    approval_required: bool = False
    max_rollout_groups: int = 500
    admin_lock_attempts: int = 5
    admin_lock_backoff_ms: int = 200


@dataclass(frozen=True)
class Config:
    storage_backend: str
    state_bucket: str
    state_prefix: str
    local_state_root: str | None
    env: str
    log_level: str
    control_plane_store: str
    tick_interval_seconds: float
    tick_workers: int
    action_batch_size: int
    max_batches_per_tick: int
    lease_backend: str
    lease_db_path: str | None
    lease_ttl_seconds: int
    lease_collection: str
    stop_timeout_seconds: int
    approval_required: bool
    max_rollout_groups: int
    admin_lock_attempts: int
    admin_lock_backoff_ms: int
    notifier_backend: str
    pubsub_topic: str | None = None

    def state_root_uri(self) -> str:
        if self.storage_backend == "local":
            if not self.local_state_root:
                raise ValueError("LOCAL_STATE_ROOT is required for local storage")
            return self.local_state_root
        return state_root(
            self.state_bucket,
            self.state_prefix,
            scheme=backend_scheme(self.storage_backend),
        )

    def lease_path(self) -> str:
        if self.lease_db_path:
            return self.lease_db_path
        if self.storage_backend != "local":
            raise ValueError(
                "LEASE_DB_PATH is required for sqlite leases on remote storage"
            )
        return join_uri(self.state_root_uri(), "control", "leases.db")

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(
            tick_workers=self.tick_workers,
            action_batch_size=self.action_batch_size,
            max_batches_per_tick=self.max_batches_per_tick,
            stop_timeout_seconds=self.stop_timeout_seconds,
            approval_required=self.approval_required,
            max_rollout_groups=self.max_rollout_groups,
            admin_lock_attempts=self.admin_lock_attempts,
            admin_lock_backoff_ms=self.admin_lock_backoff_ms,
        )

    @classmethod
    def from_env(cls) -> "Config":
        missing: list[str] = []

        def require(name: str) -> str:
            value = os.getenv(name)
            if value is None or value == "":
                missing.append(name)
                return ""
            return value

        storage_backend = os.getenv("STORAGE_BACKEND", "local").strip().lower()
        allowed_backends = {"local", "gcs", "gs", "s3"}
        if storage_backend not in allowed_backends:
            allowed = ", ".join(sorted(allowed_backends))
            raise ValueError(f"STORAGE_BACKEND must be one of: {allowed}")

        remote_required = storage_backend != "local"
        state_bucket = require("STATE_BUCKET") if remote_required else os.getenv(
            "STATE_BUCKET", ""
        )
        state_prefix = os.getenv("STATE_PREFIX", "cadence").strip("/")
        local_state_root = os.getenv("LOCAL_STATE_ROOT")
        if storage_backend == "local" and not local_state_root:
            missing.append("LOCAL_STATE_ROOT")
        env = require("ENV")
        log_level = require("LOG_LEVEL")

        control_plane_store = os.getenv("CONTROL_PLANE_STORE", "json").strip().lower()
        tick_interval_seconds = _parse_float(os.getenv("TICK_INTERVAL_SECONDS", "5"))
        tick_workers = _parse_positive_int("TICK_WORKERS", "8")
        action_batch_size = _parse_positive_int("ACTION_BATCH_SIZE", "500")
        max_batches_per_tick = _parse_positive_int("MAX_BATCHES_PER_TICK", "4")

        lease_backend = os.getenv("LEASE_BACKEND", "sqlite").strip().lower()
        if lease_backend not in LEASE_BACKENDS:
            raise ValueError(
                "LEASE_BACKEND must be one of: " + ", ".join(LEASE_BACKENDS)
            )
        lease_db_path = os.getenv("LEASE_DB_PATH")
        lease_ttl_seconds = _parse_positive_int("LEASE_TTL_SECONDS", "60")
        lease_collection = os.getenv("LEASE_COLLECTION", "rollout_leases")

        stop_timeout_seconds = int(os.getenv("STOP_TIMEOUT_SECONDS", "300"))
        approval_required = _parse_bool(os.getenv("ROLLOUT_APPROVAL_REQUIRED"), False)
        max_rollout_groups = _parse_positive_int("MAX_ROLLOUT_GROUPS", "500")
        admin_lock_attempts = _parse_positive_int("ADMIN_LOCK_ATTEMPTS", "5")
        admin_lock_backoff_ms = int(os.getenv("ADMIN_LOCK_BACKOFF_MS", "200"))

        notifier_backend = os.getenv("NOTIFIER_BACKEND", "log").strip().lower()
        if notifier_backend not in NOTIFIER_BACKENDS:
            raise ValueError(
                "NOTIFIER_BACKEND must be one of: " + ", ".join(NOTIFIER_BACKENDS)
            )
        pubsub_topic = os.getenv("PUBSUB_TOPIC")
        if notifier_backend == "pubsub" and not pubsub_topic:
            missing.append("PUBSUB_TOPIC")

        if remote_required and backend_scheme(storage_backend) is None:
            if state_bucket and not has_uri_scheme(state_bucket):
                raise ValueError(
                    "STATE_BUCKET must include a URI scheme when STORAGE_BACKEND="
                    f"{storage_backend} (example: s3://bucket)"
                )

        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required env vars: {missing_str}")

        return cls(
            storage_backend=storage_backend,
            state_bucket=state_bucket,
            state_prefix=state_prefix,
            local_state_root=local_state_root,
            env=env,
            log_level=log_level,
            control_plane_store=control_plane_store,
            tick_interval_seconds=tick_interval_seconds,
            tick_workers=tick_workers,
            action_batch_size=action_batch_size,
            max_batches_per_tick=max_batches_per_tick,
            lease_backend=lease_backend,
            lease_db_path=lease_db_path,
            lease_ttl_seconds=lease_ttl_seconds,
            lease_collection=lease_collection,
            stop_timeout_seconds=stop_timeout_seconds,
            approval_required=approval_required,
            max_rollout_groups=max_rollout_groups,
            admin_lock_attempts=admin_lock_attempts,
            admin_lock_backoff_ms=admin_lock_backoff_ms,
            notifier_backend=notifier_backend,
            pubsub_topic=pubsub_topic,
        )


def _parse_float(value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid float value: {value}") from exc


def _parse_positive_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
