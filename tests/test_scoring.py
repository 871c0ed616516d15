from __future__ import annotations

import json

import pytest

from keepmem.scoring import (
    DAY_MS,
    age_decay,
    estimate_observation_tokens,
    score_observation,
    shrink_reasons,
    type_weight,
)
from keepmem.store.types import Observation

NOW = 1_800_000_000_000
MAX_AGE_MS = 180 * DAY_MS


def _obs(**kwargs) -> Observation:
    data = {"id": 1, "project": "alpha", "type": "change", "created_at_epoch": NOW}
    data.update(kwargs)
    return Observation(**data)


def test_old_change_observation_scores_low_with_reasons() -> None:
    observation = _obs(created_at_epoch=NOW - 400 * DAY_MS, title="Tweak", narrative="x" * 20)

    score = score_observation(observation, NOW, MAX_AGE_MS)

    assert score == pytest.approx(0.237)
    assert shrink_reasons(observation, score, NOW) == [
        "400 days old",
        "Low-priority type: change",
        "Minimal content",
    ]


def test_fresh_rich_decision_scores_high() -> None:
    observation = _obs(
        type="decision",
        narrative="n" * 500,
        facts=json.dumps(["a", "b", "c", "d", "e"]),
        concepts=json.dumps(["what-changed", "problem-solution"]),
    )

    score = score_observation(observation, NOW, MAX_AGE_MS)

    assert score == pytest.approx(0.85)
    assert shrink_reasons(observation, score, NOW) == []


def test_future_dated_observation_does_not_gain_weight() -> None:
    now_score = score_observation(_obs(type="bugfix"), NOW, MAX_AGE_MS)
    future_score = score_observation(
        _obs(type="bugfix", created_at_epoch=NOW + 30 * DAY_MS), NOW, MAX_AGE_MS
    )

    assert age_decay(NOW + DAY_MS, NOW, MAX_AGE_MS) == 1.0
    assert future_score == pytest.approx(now_score)


def test_age_decay_bottoms_out_at_max_age() -> None:
    assert age_decay(NOW - 90 * DAY_MS, NOW, MAX_AGE_MS) == pytest.approx(0.5)
    assert age_decay(NOW - 900 * DAY_MS, NOW, MAX_AGE_MS) == 0.0


def test_malformed_concepts_and_facts_are_ignored() -> None:
    plain = score_observation(_obs(type="feature"), NOW, MAX_AGE_MS)
    broken = score_observation(
        _obs(type="feature", concepts="not json", facts="{oops"), NOW, MAX_AGE_MS
    )
    not_a_list = score_observation(
        _obs(type="feature", concepts=json.dumps({"gotcha": True})), NOW, MAX_AGE_MS
    )

    assert broken == pytest.approx(plain)
    assert not_a_list == pytest.approx(plain)


def test_unknown_type_and_concepts_use_default_weight() -> None:
    assert type_weight("mystery") == 0.5
    assert type_weight(None) == 0.5

    unknown = score_observation(
        _obs(type="mystery", concepts=json.dumps(["vibes", 42])), NOW, MAX_AGE_MS
    )
    assert unknown == pytest.approx(0.5)


def test_score_stays_in_unit_interval() -> None:
    observation = _obs(
        type="decision",
        narrative="n" * 5000,
        facts=json.dumps(["f"] * 50),
        concepts=json.dumps(["problem-solution"]),
    )
    assert 0.0 <= score_observation(observation, NOW, MAX_AGE_MS) <= 1.0
    assert 0.0 <= score_observation(_obs(created_at_epoch=0), NOW, MAX_AGE_MS) <= 1.0


def test_rejects_non_positive_max_age() -> None:
    with pytest.raises(ValueError, match="max_age_ms"):
        score_observation(_obs(), NOW, 0)


def test_very_low_score_reason() -> None:
    observation = _obs(created_at_epoch=NOW - 10 * DAY_MS, narrative="x" * 80)

    assert shrink_reasons(observation, 0.1, NOW) == [
        "Low-priority type: change",
        "Very low importance score",
    ]


def test_estimate_observation_tokens_counts_present_fields() -> None:
    assert estimate_observation_tokens(_obs(title="abcd")) == 2
    assert estimate_observation_tokens(_obs()) == 0
    observation = _obs(title="abc", narrative="defgh", facts='["x"]')
    # "abc " + "defgh " + '["x"] ' is 16 chars
    assert estimate_observation_tokens(observation) == 4
