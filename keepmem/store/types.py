from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, TypedDict


@dataclass
class Observation:
    id: int
    project: str
    type: str
    created_at_epoch: int
    title: str | None = None
    subtitle: str | None = None
    narrative: str | None = None
    facts: str | None = None
    concepts: str | None = None
    session_id: int | None = None
    discovery_tokens: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict[str, Any]) -> Observation:
        data = dict(row)
        return cls(
            id=int(data["id"]),
            project=str(data.get("project") or ""),
            type=str(data.get("type") or ""),
            created_at_epoch=int(data.get("created_at_epoch") or 0),
            title=data.get("title"),
            subtitle=data.get("subtitle"),
            narrative=data.get("narrative"),
            facts=data.get("facts"),
            concepts=data.get("concepts"),
            session_id=data.get("session_id"),
            discovery_tokens=int(data.get("discovery_tokens") or 0),
        )


class IndexRow(TypedDict):
    id: int
    kind: str
    created_at_epoch: int
    created_at: str
    type: str
    glyph: str
    title: str
    project: str
    read_tokens: int
    work_tokens: int


@dataclass
class ShrinkCandidate:
    id: int
    title: str | None
    type: str
    project: str
    created_at_epoch: int
    score: float
    reasons: list[str]
    token_count: int


@dataclass
class ShrinkAnalysis:
    candidates: list[ShrinkCandidate]
    total_tokens_saved: int
    observations_to_remove: int
    total_observations: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ShrinkResult:
    deleted: int = 0
    failed: int = 0
    summarized: int | None = None
    summary_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"deleted": self.deleted, "failed": self.failed}
        if self.summarized is not None:
            payload["summarized"] = self.summarized
            payload["summary_ids"] = list(self.summary_ids)
        return payload
