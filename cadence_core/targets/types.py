from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TargetRecord:
    id: str
    tenant: str
    name: str
    tags: tuple[str, ...] | None
    attributes: dict[str, str] | None
    sequence: int
    created_at: str


@dataclass(frozen=True)
class TargetMatch:
    target_id: str
    sequence: int
