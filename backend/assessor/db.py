from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
import hashlib
import json
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from assessor.collaborators import TaskRequest
from assessor.config import settings
from assessor.errors import PersistenceError
from assessor.models import AssessmentSnapshot


def _database_path() -> Path:
    prefix = "sqlite:///"
    if not settings.database_url.startswith(prefix):
        raise PersistenceError("Only sqlite:/// DATABASE_URL is supported.")
    return Path(settings.database_url[len(prefix) :])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db() -> None:
    db_path = _database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS assessments (
                id TEXT PRIMARY KEY,
                framework_id TEXT NOT NULL,
                framework_version TEXT NOT NULL,
                status TEXT NOT NULL,
                is_complete INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                last_modified TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS assessment_snapshots (
                id TEXT PRIMARY KEY,
                assessment_id TEXT NOT NULL,
                sequence_no INTEGER NOT NULL,
                change_type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                payload_sha256 TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(assessment_id) REFERENCES assessments(id),
                UNIQUE(assessment_id, sequence_no)
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_assessment_sequence
                ON assessment_snapshots(assessment_id, sequence_no DESC);

            CREATE TABLE IF NOT EXISTS assessment_tasks (
                id TEXT PRIMARY KEY,
                assessment_id TEXT NOT NULL,
                question_id TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(assessment_id) REFERENCES assessments(id)
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_assessment_question
                ON assessment_tasks(assessment_id, question_id, created_at ASC);
            """
        )


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_database_path())
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    finally:
        conn.close()


def save_snapshot(snapshot: AssessmentSnapshot) -> dict[str, object]:
    payload_json = snapshot.model_dump_json()
    change_type = snapshot.change_log[-1].change_type if snapshot.change_log else "created"
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO assessments (id, framework_id, framework_version, status, is_complete, created_at, last_modified)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                is_complete = excluded.is_complete,
                last_modified = excluded.last_modified
            """,
            (
                snapshot.id,
                snapshot.framework_id,
                snapshot.framework_version,
                snapshot.status,
                int(snapshot.is_complete),
                snapshot.created_at.isoformat(),
                snapshot.last_modified.isoformat(),
            ),
        )
        row = conn.execute(
            "SELECT COALESCE(MAX(sequence_no), 0) AS last_sequence FROM assessment_snapshots WHERE assessment_id = ?",
            (snapshot.id,),
        ).fetchone()
        record = {
            "id": str(uuid4()),
            "assessment_id": snapshot.id,
            "sequence_no": int(row["last_sequence"]) + 1,
            "change_type": change_type,
            "payload_json": payload_json,
            "payload_sha256": hashlib.sha256(payload_json.encode("utf-8")).hexdigest(),
            "created_at": _utc_now_iso(),
        }
        conn.execute(
            """
            INSERT INTO assessment_snapshots (
                id, assessment_id, sequence_no, change_type, payload_json, payload_sha256, created_at
            )
            VALUES (
                :id, :assessment_id, :sequence_no, :change_type, :payload_json, :payload_sha256, :created_at
            )
            """,
            record,
        )
    return {key: value for key, value in record.items() if key != "payload_json"}


def get_latest_snapshot(assessment_id: str) -> AssessmentSnapshot | None:
    with get_conn() as conn:
        row = conn.execute(
            """
            SELECT payload_json
            FROM assessment_snapshots
            WHERE assessment_id = ?
            ORDER BY sequence_no DESC
            LIMIT 1
            """,
            (assessment_id,),
        ).fetchone()
    if row is None:
        return None
    return AssessmentSnapshot.model_validate_json(row["payload_json"])


def list_snapshot_history(assessment_id: str) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, assessment_id, sequence_no, change_type, payload_sha256, created_at
            FROM assessment_snapshots
            WHERE assessment_id = ?
            ORDER BY sequence_no ASC
            """,
            (assessment_id,),
        ).fetchall()
    return [dict(row) for row in rows]


def list_assessments() -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, framework_id, framework_version, status, is_complete, created_at, last_modified
            FROM assessments
            ORDER BY last_modified DESC
            """
        ).fetchall()
    return [{**dict(row), "is_complete": bool(row["is_complete"])} for row in rows]


def create_task(task: TaskRequest) -> dict[str, object]:
    record = {
        "id": str(uuid4()),
        "assessment_id": task.assessment_id,
        "question_id": task.question_id,
        "payload_json": task.model_dump_json(),
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO assessment_tasks (id, assessment_id, question_id, payload_json, created_at)
            VALUES (:id, :assessment_id, :question_id, :payload_json, :created_at)
            """,
            record,
        )
    return _task_from_record(record)


def list_tasks(assessment_id: str, question_id: str | None = None) -> list[dict[str, object]]:
    query = """
            SELECT id, assessment_id, question_id, payload_json, created_at
            FROM assessment_tasks
            WHERE assessment_id = ?
    """
    params: list[object] = [assessment_id]
    if question_id is not None:
        query += " AND question_id = ?"
        params.append(question_id)
    query += " ORDER BY created_at ASC"
    with get_conn() as conn:
        rows = conn.execute(query, tuple(params)).fetchall()
    return [_task_from_record(dict(row)) for row in rows]


def _task_from_record(record: dict[str, object]) -> dict[str, object]:
    payload = json.loads(str(record["payload_json"]))
    return {
        **payload,
        "id": record["id"],
        "status": "not-started",
        "created_at": record["created_at"],
    }


class SqliteSnapshotStore:
    """Persistence collaborator writing every committed snapshot to sqlite."""

    def save(self, snapshot: AssessmentSnapshot) -> None:
        try:
            save_snapshot(snapshot)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to persist assessment '{snapshot.id}': {exc}") from exc

    def load(self, assessment_id: str) -> AssessmentSnapshot | None:
        try:
            return get_latest_snapshot(assessment_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to load assessment '{assessment_id}': {exc}") from exc


class SqliteTaskCreator:
    def create_task(self, task: TaskRequest) -> dict[str, object]:
        try:
            return create_task(task)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to create task for question '{task.question_id}': {exc}") from exc
