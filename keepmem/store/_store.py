from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .. import db
from ..config import load_config
from ..observation_types import validate_observation_type
from ..utils import is_project_excluded, project_basename
from . import search as store_search
from . import usage as store_usage
from . import utils as store_utils
from .types import IndexRow, Observation

LIST_COLUMNS = ("facts", "concepts", "files_read", "files_modified")


class MemoryStore:
    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)
        cfg = load_config()
        self.excluded_projects = [p.strip() for p in cfg.excluded_projects if p and p.strip()]

    def close(self) -> None:
        self.conn.close()

    def _project_clause(self, column_expr: str, project: str) -> tuple[str, list[Any]]:
        return store_utils.project_column_clause(column_expr, project)

    def is_project_excluded(self, project: str | None) -> bool:
        return is_project_excluded(project, self.excluded_projects)

    @staticmethod
    def _timestamps(created_at_epoch: int | None) -> tuple[str, int]:
        epoch = store_utils.now_epoch_ms() if created_at_epoch is None else int(created_at_epoch)
        return store_utils.epoch_ms_to_iso(epoch), epoch

    @staticmethod
    def _require_project(project: str | None) -> str:
        value = (project or "").strip()
        if not value:
            raise ValueError("project is required")
        return project_basename(value) or value

    # Ingestion

    def remember_observation(
        self,
        project: str,
        obs_type: str,
        title: str | None,
        narrative: str | None = None,
        subtitle: str | None = None,
        facts: list[str] | None = None,
        concepts: list[str] | None = None,
        files_read: list[str] | None = None,
        files_modified: list[str] | None = None,
        discovery_tokens: int = 0,
        session_id: int | None = None,
        created_at_epoch: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        project = self._require_project(project)
        obs_type = validate_observation_type(obs_type)
        created_at, epoch = self._timestamps(created_at_epoch)
        cur = self.conn.execute(
            """
            INSERT INTO observations(
                session_id, project, type, title, subtitle, narrative, facts, concepts,
                files_read, files_modified, discovery_tokens, created_at, created_at_epoch,
                metadata_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                project,
                obs_type,
                title,
                subtitle,
                narrative,
                db.to_json(facts) if facts is not None else None,
                db.to_json(concepts) if concepts is not None else None,
                db.to_json(files_read) if files_read is not None else None,
                db.to_json(files_modified) if files_modified is not None else None,
                int(discovery_tokens or 0),
                created_at,
                epoch,
                db.to_json(metadata),
            ),
        )
        self.conn.commit()
        lastrowid = cur.lastrowid
        if lastrowid is None:
            raise RuntimeError("Failed to store observation")
        return int(lastrowid)

    def add_user_prompt(
        self,
        project: str,
        prompt_text: str,
        session_id: int | None = None,
        prompt_number: int | None = None,
        created_at_epoch: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        project = self._require_project(project)
        created_at, epoch = self._timestamps(created_at_epoch)
        cur = self.conn.execute(
            """
            INSERT INTO user_prompts(
                session_id, project, prompt_text, prompt_number, created_at, created_at_epoch,
                metadata_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                project,
                prompt_text,
                prompt_number,
                created_at,
                epoch,
                db.to_json(metadata),
            ),
        )
        self.conn.commit()
        lastrowid = cur.lastrowid
        if lastrowid is None:
            raise RuntimeError("Failed to store user prompt")
        return int(lastrowid)

    def add_session_summary(
        self,
        project: str,
        request: str,
        investigated: str = "",
        learned: str = "",
        completed: str = "",
        next_steps: str = "",
        notes: str = "",
        session_id: int | None = None,
        created_at_epoch: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        project = self._require_project(project)
        created_at, epoch = self._timestamps(created_at_epoch)
        cur = self.conn.execute(
            """
            INSERT INTO session_summaries(
                session_id, project, request, investigated, learned, completed, next_steps,
                notes, created_at, created_at_epoch, metadata_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                project,
                request,
                investigated,
                learned,
                completed,
                next_steps,
                notes,
                created_at,
                epoch,
                db.to_json(metadata),
            ),
        )
        self.conn.commit()
        lastrowid = cur.lastrowid
        if lastrowid is None:
            raise RuntimeError("Failed to store session summary")
        return int(lastrowid)

    # Store primitives used by the shrink engine

    def count_observations(self, project: str | None = None) -> int:
        where = ""
        params: list[Any] = []
        if project:
            clause, params = self._project_clause("observations.project", project)
            if clause:
                where = f"WHERE {clause}"
        row = self.conn.execute(
            f"SELECT COUNT(*) AS count FROM observations {where}", params
        ).fetchone()
        return int(row["count"]) if row else 0

    def scan_observations_before(
        self, cutoff_epoch: int, project: str | None = None
    ) -> list[Observation]:
        """Observations created strictly before ``cutoff_epoch``, oldest first."""
        where = ["observations.created_at_epoch < ?"]
        params: list[Any] = [int(cutoff_epoch)]
        if project:
            clause, clause_params = self._project_clause("observations.project", project)
            if clause:
                where.append(clause)
                params.extend(clause_params)
        rows = self.conn.execute(
            f"""
            SELECT * FROM observations
            WHERE {" AND ".join(where)}
            ORDER BY observations.created_at_epoch ASC, observations.id ASC
            """,
            params,
        ).fetchall()
        return [Observation.from_row(row) for row in rows]

    def fetch_observations(self, ids: Iterable[int]) -> list[Observation]:
        id_list = store_utils.storable_ids(dict.fromkeys(int(value) for value in ids))
        if not id_list:
            return []
        placeholders = ",".join("?" for _ in id_list)
        rows = self.conn.execute(
            f"""
            SELECT * FROM observations
            WHERE id IN ({placeholders})
            ORDER BY created_at_epoch ASC, id ASC
            """,
            id_list,
        ).fetchall()
        return [Observation.from_row(row) for row in rows]

    def delete_observation(self, observation_id: int) -> bool:
        if not store_utils.storable_ids([int(observation_id)]):
            return False
        cur = self.conn.execute("DELETE FROM observations WHERE id = ?", (int(observation_id),))
        self.conn.commit()
        return cur.rowcount > 0

    def set_observation_metadata(self, observation_id: int, metadata: dict[str, Any]) -> None:
        self.conn.execute(
            "UPDATE observations SET metadata_json = ? WHERE id = ?",
            (db.to_json(metadata), int(observation_id)),
        )
        self.conn.commit()

    def get_observation(self, observation_id: int) -> dict[str, Any] | None:
        if not store_utils.storable_ids([int(observation_id)]):
            return None
        row = self.conn.execute(
            "SELECT * FROM observations WHERE id = ?", (int(observation_id),)
        ).fetchone()
        if row is None:
            return None
        return self.observation_to_dict(row)

    @staticmethod
    def observation_to_dict(row: Any) -> dict[str, Any]:
        data = dict(row)
        for column in LIST_COLUMNS:
            data[column] = db.parse_json_list(data.get(column)) or []
        data["metadata_json"] = db.from_json(data.get("metadata_json"))
        return data

    def list_projects(self) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT project,
                   COUNT(*) AS observations,
                   MAX(created_at_epoch) AS last_activity_epoch
            FROM observations
            GROUP BY project
            ORDER BY project
            """
        ).fetchall()
        projects = db.rows_to_dicts(rows)
        for item in projects:
            item["excluded"] = self.is_project_excluded(item.get("project"))
        return projects

    # Retrieval

    def search_index(
        self,
        query: str | None,
        *,
        project: str | None,
        limit: int = 20,
        record_type: str | None = None,
        date_start: Any = None,
        date_end: Any = None,
        obs_type: str | list[str] | None = None,
        order_by: str = "date_desc",
        all_projects: bool = False,
    ) -> list[IndexRow]:
        return store_search.search_index(
            self,
            query,
            project=project,
            limit=limit,
            record_type=record_type,
            date_start=date_start,
            date_end=date_end,
            obs_type=obs_type,
            order_by=order_by,
            all_projects=all_projects,
        )

    def timeline(
        self,
        *,
        project: str | None,
        anchor: int | str | None = None,
        query: str | None = None,
        depth_before: int = 5,
        depth_after: int = 5,
    ) -> list[dict[str, Any]]:
        return store_search.timeline(
            self,
            project=project,
            anchor=anchor,
            query=query,
            depth_before=depth_before,
            depth_after=depth_after,
        )

    def get_observations(
        self,
        ids: Iterable[int],
        *,
        order_by: str = "date_desc",
        limit: int | None = None,
        project: str | None = None,
    ) -> list[dict[str, Any]]:
        return store_search.get_observations(
            self, ids, order_by=order_by, limit=limit, project=project
        )

    # Usage accounting

    def record_usage(
        self,
        event: str,
        tokens_read: int = 0,
        tokens_written: int = 0,
        tokens_saved: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        return store_usage.record_usage(
            self,
            event,
            tokens_read=tokens_read,
            tokens_written=tokens_written,
            tokens_saved=tokens_saved,
            metadata=metadata,
        )

    def usage_summary(self, project: str | None = None) -> list[dict[str, Any]]:
        return store_usage.usage_summary(self, project=project)
