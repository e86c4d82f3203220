"""Persistent audit store for flow runs and their execution logs."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone

from shared.models import ExecutionLogEntry, RunSnapshot


class RunLogStore:
    """SQLite-backed store for run snapshots and per-node log entries."""

    def __init__(self, db_path: str = "flow_runs.db"):
        self.db_path = db_path
        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            isolation_level="DEFERRED",
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._init_db()

    def _init_db(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_runs (
                run_id TEXT PRIMARY KEY,
                flow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                run_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS flow_run_log (
                run_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                node_id TEXT NOT NULL,
                success INTEGER NOT NULL,
                entry_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (run_id, seq)
            )
            """
        )
        self._conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_flow_runs_flow_id
            ON flow_runs(flow_id)
            """
        )
        self._conn.commit()

    def save_run(self, snapshot: RunSnapshot, flow_id: str = "") -> None:
        payload = snapshot.model_dump(mode="json")
        self._conn.execute(
            """
            INSERT INTO flow_runs (run_id, flow_id, status, run_json, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                status=excluded.status,
                run_json=excluded.run_json,
                updated_at=excluded.updated_at
            """,
            (
                snapshot.run_id,
                flow_id,
                snapshot.status,
                json.dumps(payload, ensure_ascii=False),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self._conn.commit()

    def get_run(self, run_id: str) -> RunSnapshot | None:
        row = self._conn.execute(
            "SELECT run_json FROM flow_runs WHERE run_id = ?",
            (run_id,),
        ).fetchone()
        if row is None:
            return None
        return RunSnapshot(**json.loads(row["run_json"]))

    def list_runs(self, flow_id: str) -> list[RunSnapshot]:
        rows = self._conn.execute(
            """
            SELECT run_json
            FROM flow_runs
            WHERE flow_id = ?
            ORDER BY updated_at DESC
            """,
            (flow_id,),
        ).fetchall()
        return [RunSnapshot(**json.loads(row["run_json"])) for row in rows]

    def append_log_entries(self, run_id: str, entries: list[ExecutionLogEntry], start_seq: int = 0) -> None:
        if not entries:
            return
        now = datetime.now(timezone.utc).isoformat()
        self._conn.executemany(
            """
            INSERT OR REPLACE INTO flow_run_log (run_id, seq, node_id, success, entry_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    run_id,
                    start_seq + offset,
                    entry.node_id,
                    1 if entry.success else 0,
                    json.dumps(entry.model_dump(mode="json"), ensure_ascii=False),
                    now,
                )
                for offset, entry in enumerate(entries)
            ],
        )
        self._conn.commit()

    def list_log_entries(self, run_id: str, failed_only: bool = False) -> list[ExecutionLogEntry]:
        query = "SELECT entry_json FROM flow_run_log WHERE run_id = ?"
        if failed_only:
            query += " AND success = 0"
        query += " ORDER BY seq ASC"
        rows = self._conn.execute(query, (run_id,)).fetchall()
        return [ExecutionLogEntry(**json.loads(row["entry_json"])) for row in rows]

    def close(self) -> None:
        self._conn.close()
