from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Iterable, Sequence
from typing import Any, Final

from .db import parse_json_list
from .scoring import (
    DAY_MS,
    concept_weight,
    estimate_observation_tokens,
    score_observation,
    shrink_reasons,
    type_weight,
)
from .store import MemoryStore
from .store.types import Observation, ShrinkAnalysis, ShrinkCandidate, ShrinkResult
from .store.utils import coerce_ids, now_epoch_ms

logger = logging.getLogger(__name__)

SHRINK_MODES: Final[tuple[str, ...]] = ("delete", "summarize")
SUMMARY_TYPE: Final[str] = "summary"
SUMMARY_MAX_FACTS: Final[int] = 10


def _validate_fraction(value: Any, *, name: str, allow_zero: bool) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    value = float(value)
    low_ok = value >= 0 if allow_zero else value > 0
    if not low_ok or value > 1:
        bound = "[0, 1]" if allow_zero else "(0, 1]"
        raise ValueError(f"{name} must be within {bound}, got {value}")
    return value


def _validate_days(value: Any, *, name: str, allow_zero: bool) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number of days")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'non-negative' if allow_zero else 'positive'}")
    return float(value)


def validate_mode(mode: str | None) -> str:
    if mode is not None and not isinstance(mode, str):
        raise ValueError(f"Invalid shrink mode {mode!r}. Allowed: {', '.join(SHRINK_MODES)}")
    value = (mode or "").strip().lower()
    if value not in SHRINK_MODES:
        raise ValueError(f"Invalid shrink mode '{mode}'. Allowed: {', '.join(SHRINK_MODES)}")
    return value


class ShrinkAnalyzer:
    """Proposes low-value observations for removal and applies the chosen action.

    ``analyze`` is a read-only snapshot. Nothing locks the store between
    ``analyze`` and ``execute``, so ids may disappear in the meantime;
    ``execute`` counts those as failures.
    """

    def __init__(self, store: MemoryStore):
        self.store = store

    def analyze(
        self,
        project: str | None = None,
        *,
        target_reduction: float = 0.3,
        min_age_days: float = 7,
        max_age_days: float = 180,
        min_score: float = 0.6,
        now_ms: int | None = None,
    ) -> ShrinkAnalysis:
        target_reduction = _validate_fraction(
            target_reduction, name="target_reduction", allow_zero=False
        )
        min_score = _validate_fraction(min_score, name="min_score", allow_zero=True)
        min_age_days = _validate_days(min_age_days, name="min_age_days", allow_zero=True)
        max_age_days = _validate_days(max_age_days, name="max_age_days", allow_zero=False)
        if project is not None and not isinstance(project, str):
            raise ValueError("project must be a string")
        project = (project or "").strip() or None

        now = now_epoch_ms() if now_ms is None else int(now_ms)
        min_age_ms = int(min_age_days * DAY_MS)
        max_age_ms = int(max_age_days * DAY_MS)

        eligible = self.store.scan_observations_before(now - min_age_ms, project=project)
        total_observations = self.store.count_observations(project=project)

        candidates: list[ShrinkCandidate] = []
        for observation in eligible:
            score = score_observation(observation, now, max_age_ms)
            if score >= min_score:
                continue
            candidates.append(
                ShrinkCandidate(
                    id=observation.id,
                    title=observation.title,
                    type=observation.type,
                    project=observation.project,
                    created_at_epoch=observation.created_at_epoch,
                    score=score,
                    reasons=shrink_reasons(observation, score, now),
                    token_count=estimate_observation_tokens(observation),
                )
            )

        candidates.sort(key=lambda candidate: candidate.score)
        target_count = max(1, math.floor(total_observations * target_reduction))
        selected = candidates[:target_count]
        analysis = ShrinkAnalysis(
            candidates=selected,
            total_tokens_saved=sum(candidate.token_count for candidate in selected),
            observations_to_remove=len(selected),
            total_observations=total_observations,
        )
        logger.info(
            "shrink analyze: project=%s eligible=%d below_threshold=%d selected=%d total=%d",
            project or "*",
            len(eligible),
            len(candidates),
            len(selected),
            total_observations,
        )
        return analysis

    def execute(self, observation_ids: Iterable[int], mode: str = "delete") -> ShrinkResult:
        """Apply ``mode`` to each id; failures are counted, never raised.

        ``deleted + failed`` always equals the number of ids given. Ids that
        are missing, repeated, or out of SQLite's integer range fail.
        """
        ids = coerce_ids(observation_ids, name="observation_ids")
        if not ids:
            raise ValueError("observation_ids must not be empty")
        mode = validate_mode(mode)

        known = {
            observation.id: observation for observation in self.store.fetch_observations(ids)
        }
        if mode == "summarize":
            result, removed = self._summarize(ids, known)
        else:
            result, removed = self._delete_each(ids, known)

        self._record_savings(mode, removed)
        logger.info(
            "shrink execute: mode=%s requested=%d deleted=%d failed=%d",
            mode,
            len(ids),
            result.deleted,
            result.failed,
        )
        return result

    def _delete_one(self, observation_id: int) -> bool:
        try:
            deleted = self.store.delete_observation(observation_id)
        except sqlite3.Error as exc:
            logger.warning("shrink delete failed for observation %s: %s", observation_id, exc)
            return False
        if not deleted:
            logger.warning("shrink delete skipped missing observation %s", observation_id)
        return deleted

    def _delete_each(
        self, ids: Sequence[int], known: dict[int, Observation]
    ) -> tuple[ShrinkResult, list[Observation]]:
        result = ShrinkResult()
        removed: list[Observation] = []
        for observation_id in ids:
            if self._delete_one(observation_id):
                result.deleted += 1
                if observation_id in known:
                    removed.append(known[observation_id])
            else:
                result.failed += 1
        return result, removed

    def _summarize(
        self, ids: Sequence[int], known: dict[int, Observation]
    ) -> tuple[ShrinkResult, list[Observation]]:
        by_project: dict[str, list[Observation]] = {}
        for observation in known.values():
            by_project.setdefault(observation.project, []).append(observation)

        result = ShrinkResult(summarized=0)
        removed: list[Observation] = []
        for project, group in by_project.items():
            try:
                summary_id = self._write_summary(project, group)
            except sqlite3.Error as exc:
                # originals stay untouched when their summary cannot be written
                logger.warning("shrink summarize failed for project %s: %s", project, exc)
                result.failed += len(group)
                continue
            group_result, folded = self._delete_each(
                [observation.id for observation in group], known
            )
            result.deleted += group_result.deleted
            result.failed += group_result.failed
            removed.extend(folded)
            if self._finish_summary(summary_id, folded):
                result.summary_ids.append(summary_id)

        # ids that were never found, plus repeats of ids already handled
        result.failed += len(ids) - len(known)
        result.summarized = result.deleted
        return result, removed

    def _write_summary(self, project: str, group: list[Observation]) -> int:
        ranked = sorted(group, key=lambda observation: type_weight(observation.type), reverse=True)
        lines = [
            f"- [{observation.type or 'unknown'}] {_display_title(observation)}"
            for observation in ranked
        ]
        facts: list[str] = []
        for observation in ranked:
            for value in (observation.title, observation.subtitle):
                if value and value not in facts:
                    facts.append(value)
        concepts: list[str] = []
        for observation in group:
            for concept in parse_json_list(observation.concepts) or []:
                if isinstance(concept, str) and concept not in concepts:
                    concepts.append(concept)
        concepts.sort(key=concept_weight, reverse=True)
        types = sorted({observation.type or "unknown" for observation in group})

        return self.store.remember_observation(
            project,
            SUMMARY_TYPE,
            f"Summary of {len(group)} observations",
            narrative="\n".join(lines),
            subtitle=f"Compressed {', '.join(types)} records",
            facts=facts[:SUMMARY_MAX_FACTS],
            concepts=concepts,
            discovery_tokens=sum(observation.discovery_tokens for observation in group),
            created_at_epoch=max(observation.created_at_epoch for observation in group),
            metadata={"source": "shrink", "summarized_ids": []},
        )

    def _finish_summary(self, summary_id: int, folded: list[Observation]) -> bool:
        """Record which originals the summary replaced; drop it if none were removed."""
        try:
            if not folded:
                self.store.delete_observation(summary_id)
                logger.warning(
                    "shrink summarize dropped summary %d: no originals removed", summary_id
                )
                return False
            self.store.set_observation_metadata(
                summary_id,
                {"source": "shrink", "summarized_ids": [observation.id for observation in folded]},
            )
        except sqlite3.Error as exc:
            logger.warning("shrink summarize could not finish summary %d: %s", summary_id, exc)
            return bool(folded)
        logger.info(
            "shrink summarize: project=%s folded=%d into observation %d",
            folded[0].project,
            len(folded),
            summary_id,
        )
        return True

    def _record_savings(self, mode: str, removed: list[Observation]) -> None:
        saved: dict[str, list[int]] = {}
        for observation in removed:
            totals = saved.setdefault(observation.project, [0, 0])
            totals[0] += 1
            totals[1] += estimate_observation_tokens(observation)
        try:
            if not saved:
                self.store.record_usage("shrink_execute", metadata={"mode": mode, "deleted": 0})
                return
            for project, (deleted, tokens_saved) in saved.items():
                self.store.record_usage(
                    "shrink_execute",
                    tokens_saved=tokens_saved,
                    metadata={"mode": mode, "project": project, "deleted": deleted},
                )
        except sqlite3.Error as exc:
            logger.warning("shrink execute could not record usage: %s", exc)


def _display_title(observation: Observation) -> str:
    return observation.title or observation.subtitle or "(untitled)"
