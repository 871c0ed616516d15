from __future__ import annotations

from ._store import MemoryStore
from .types import IndexRow, Observation, ShrinkAnalysis, ShrinkCandidate, ShrinkResult

__all__ = [
    "IndexRow",
    "MemoryStore",
    "Observation",
    "ShrinkAnalysis",
    "ShrinkCandidate",
    "ShrinkResult",
]
