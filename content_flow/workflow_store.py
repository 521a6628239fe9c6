from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from content_flow.graph.document import WorkflowDocument, parse_workflow_document


@dataclass(slots=True)
class SavedWorkflowRecord:
    name: str
    node_count: int
    edge_count: int
    created_at: str
    updated_at: str


class SavedWorkflowStore:
    """SQLite library of named workflows; saving an existing name replaces it."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS saved_workflows (
                    name TEXT PRIMARY KEY,
                    document_json TEXT NOT NULL,
                    node_count INTEGER NOT NULL DEFAULT 0,
                    edge_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def save(self, document: WorkflowDocument) -> SavedWorkflowRecord:
        name = document.name.strip()
        if not name:
            raise ValueError("Workflow name cannot be empty.")
        document.name = name

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO saved_workflows (name, document_json, node_count, edge_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(name) DO UPDATE SET
                    document_json = excluded.document_json,
                    node_count = excluded.node_count,
                    edge_count = excluded.edge_count,
                    created_at = excluded.created_at,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    name,
                    json.dumps(document.to_payload(), ensure_ascii=False),
                    len(document.nodes),
                    len(document.edges),
                    document.created_at,
                ),
            )
            row = conn.execute(
                "SELECT name, node_count, edge_count, created_at, updated_at FROM saved_workflows WHERE name = ?",
                (name,),
            ).fetchone()
        return _record_from_row(row)

    def load(self, name: str) -> WorkflowDocument | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT document_json FROM saved_workflows WHERE name = ?",
                (name,),
            ).fetchone()
        if row is None:
            return None
        return parse_workflow_document(json.loads(row["document_json"]))

    def list(self) -> list[SavedWorkflowRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT name, node_count, edge_count, created_at, updated_at
                FROM saved_workflows
                ORDER BY created_at DESC, name ASC
                """
            ).fetchall()
        return [_record_from_row(row) for row in rows]

    def delete(self, name: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM saved_workflows WHERE name = ?", (name,))
        return cursor.rowcount > 0


def _record_from_row(row: sqlite3.Row) -> SavedWorkflowRecord:
    return SavedWorkflowRecord(
        name=str(row["name"]),
        node_count=int(row["node_count"]),
        edge_count=int(row["edge_count"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )
