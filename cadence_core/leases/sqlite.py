from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cadence_core.errors import LeaseUnavailableError


@dataclass(frozen=True)
class SqliteLeaseProvider:
    path: str
    ttl: timedelta

    def __post_init__(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=30)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rollout_leases (
                    rollout_id TEXT PRIMARY KEY,
                    owner TEXT,
                    acquired_at INTEGER,
                    expires_at INTEGER
                )
                """
            )

    def try_acquire(self, rollout_id: str, owner: str) -> bool:
        now_ms = _now_ms()
        expires_ms = now_ms + int(self.ttl.total_seconds() * 1000)
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT owner, expires_at FROM rollout_leases WHERE rollout_id = ?",
                    (rollout_id,),
                ).fetchone()
                if row:
                    holder, expires_at = row
                    if holder != owner and int(expires_at or 0) > now_ms:
                        return False
                    conn.execute(
                        """
                        UPDATE rollout_leases
                        SET owner = ?, acquired_at = ?, expires_at = ?
                        WHERE rollout_id = ?
                        """,
                        (owner, now_ms, expires_ms, rollout_id),
                    )
                    return True
                conn.execute(
                    """
                    INSERT INTO rollout_leases
                        (rollout_id, owner, acquired_at, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (rollout_id, owner, now_ms, expires_ms),
                )
                return True
        except sqlite3.Error as exc:  # pragma: no cover - infrastructure errors
            raise LeaseUnavailableError(
                f"SQLite lease acquire failed: {exc}"
            ) from exc

    def release(self, rollout_id: str, owner: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM rollout_leases WHERE rollout_id = ? AND owner = ?",
                    (rollout_id, owner),
                )
        except sqlite3.Error as exc:  # pragma: no cover - infrastructure errors
            raise LeaseUnavailableError(
                f"SQLite lease release failed: {exc}"
            ) from exc

    def holder(self, rollout_id: str) -> str | None:
        now_ms = _now_ms()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT owner, expires_at FROM rollout_leases WHERE rollout_id = ?",
                (rollout_id,),
            ).fetchone()
        if not row or int(row[1] or 0) <= now_ms:
            return None
        return str(row[0])


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
