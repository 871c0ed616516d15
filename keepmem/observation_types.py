from __future__ import annotations

from typing import Final

# Types written by the observer. The set stays open: stored rows may carry
# anything, and readers fall back to defaults for unknown values.
KNOWN_OBSERVATION_TYPES: Final[tuple[str, ...]] = (
    "decision",
    "bugfix",
    "feature",
    "refactor",
    "discovery",
    "change",
    "summary",
)

RECORD_KINDS: Final[tuple[str, ...]] = ("observations", "sessions", "prompts")

TYPE_GLYPHS: Final[dict[str, str]] = {
    "decision": "⚖️",
    "bugfix": "\U0001f534",
    "feature": "\U0001f7e3",
    "refactor": "\U0001f504",
    "discovery": "\U0001f535",
    "change": "✅",
    "summary": "\U0001f4e6",
    "session": "\U0001f3af",
    "prompt": "\U0001f4ac",
}
DEFAULT_GLYPH: Final[str] = "•"


def normalize_observation_type(value: str | None) -> str:
    return (value or "").strip().lower()


def validate_observation_type(value: str) -> str:
    normalized = normalize_observation_type(value)
    if not normalized:
        raise ValueError(
            f"Observation type is required. Known types: {', '.join(KNOWN_OBSERVATION_TYPES)}"
        )
    return normalized


def glyph_for(value: str | None) -> str:
    return TYPE_GLYPHS.get(normalize_observation_type(value), DEFAULT_GLYPH)


def validate_record_kind(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if normalized not in RECORD_KINDS:
        raise ValueError(
            f"Invalid record type '{normalized}'. Allowed: {', '.join(RECORD_KINDS)}"
        )
    return normalized


def parse_type_filter(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else list(value)
    types: list[str] = []
    for item in items:
        normalized = normalize_observation_type(item)
        if normalized and normalized not in types:
            types.append(normalized)
    return types
