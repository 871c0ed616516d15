"""Importance scoring for stored observations.

Scores fall in [0, 1]; higher means more worth keeping. Every term is
bounded so no single signal can saturate the result, and age acts as a
multiplicative dampener so very old records keep at most half of their
pre-age score.
"""

from __future__ import annotations

import math
from typing import Final

from .db import parse_json_list
from .store.types import Observation

DAY_MS: Final[int] = 24 * 60 * 60 * 1000

DEFAULT_WEIGHT: Final[float] = 0.5

TYPE_WEIGHTS: Final[dict[str, float]] = {
    "decision": 1.0,
    "bugfix": 0.9,
    "feature": 0.8,
    "refactor": 0.7,
    "discovery": 0.5,
    "change": 0.4,
}

CONCEPT_WEIGHTS: Final[dict[str, float]] = {
    "problem-solution": 1.0,
    "trade-off": 0.9,
    "why-it-exists": 0.8,
    "gotcha": 0.8,
    "how-it-works": 0.7,
    "pattern": 0.6,
    "what-changed": 0.4,
}

BASE_SCORE: Final[float] = 0.5
TYPE_FACTOR: Final[float] = 0.3
CONCEPT_FACTOR: Final[float] = 0.2
CONTENT_FACTOR: Final[float] = 0.1
NARRATIVE_FULL_CHARS: Final[int] = 500
FACTS_FULL_COUNT: Final[int] = 5


def type_weight(obs_type: str | None) -> float:
    return TYPE_WEIGHTS.get(obs_type or "", DEFAULT_WEIGHT)


def concept_weight(concept: object) -> float:
    if not isinstance(concept, str):
        return DEFAULT_WEIGHT
    return CONCEPT_WEIGHTS.get(concept, DEFAULT_WEIGHT)


def age_decay(created_at_epoch: int, now_ms: int, max_age_ms: int) -> float:
    age_ms = now_ms - created_at_epoch
    return min(1.0, max(0.0, 1.0 - age_ms / max_age_ms))


def max_concept_weight(concepts: str | None) -> float | None:
    """Highest weight among the tags, or ``None`` when there is nothing usable."""
    parsed = parse_json_list(concepts)
    if not parsed:
        return None
    return max(concept_weight(concept) for concept in parsed)


def facts_count(facts: str | None) -> int:
    parsed = parse_json_list(facts)
    return len(parsed) if parsed else 0


def content_score(observation: Observation) -> float:
    narrative_length = len(observation.narrative or "")
    density = narrative_length / NARRATIVE_FULL_CHARS + facts_count(observation.facts) / FACTS_FULL_COUNT
    return min(1.0, density / 2)


def score_observation(observation: Observation, now_ms: int, max_age_ms: int) -> float:
    if max_age_ms <= 0:
        raise ValueError("max_age_ms must be positive")
    score = BASE_SCORE
    score += (type_weight(observation.type) - DEFAULT_WEIGHT) * TYPE_FACTOR
    score *= 0.5 + age_decay(observation.created_at_epoch, now_ms, max_age_ms) * 0.5

    best_concept = max_concept_weight(observation.concepts)
    if best_concept is not None:
        score += (best_concept - DEFAULT_WEIGHT) * CONCEPT_FACTOR

    score += content_score(observation) * CONTENT_FACTOR
    return max(0.0, min(1.0, score))


def estimate_observation_tokens(observation: Observation) -> int:
    text = ""
    for value in (
        observation.title,
        observation.subtitle,
        observation.narrative,
        observation.facts,
        observation.concepts,
    ):
        if value:
            text += f"{value} "
    return math.ceil(len(text) / 4)


def shrink_reasons(observation: Observation, score: float, now_ms: int) -> list[str]:
    reasons: list[str] = []
    age_days = (now_ms - observation.created_at_epoch) // DAY_MS
    if age_days > 30:
        reasons.append(f"{age_days} days old")
    if type_weight(observation.type) < 0.6:
        reasons.append(f"Low-priority type: {observation.type}")
    if len(observation.narrative or "") < 50:
        reasons.append("Minimal content")
    if score < 0.2:
        reasons.append("Very low importance score")
    return reasons
