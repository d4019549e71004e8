from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a SQLite run store so run history survives panel restarts.
"""

from typing import Optional, cast

import aiosqlite

from ...errors import RunNotFoundError, RunStoreError
from ..models import Run, RunMetrics, now_ms
from .base import RunStore


class SQLiteRunStore(RunStore):
    """Persistent local run history backed by SQLite."""

    def __init__(self, path: str = "agentpanel_runs.sqlite3") -> None:
        super().__init__()
        self.path = path
        self._connection: aiosqlite.Connection | None = None

    async def setup(self) -> None:
        self._connection = await aiosqlite.connect(self.path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA synchronous=NORMAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_tables()
        await self._connection.commit()
        await super().setup()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        await super().close()

    def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "SQLiteRunStore is not initialized. Call setup() first."
            )
        return self._connection

    async def _create_tables(self) -> None:
        db = self._db()
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              agent_ref TEXT NOT NULL,
              project_path TEXT NOT NULL,
              task TEXT NOT NULL,
              model TEXT NOT NULL,
              status TEXT NOT NULL,
              created_at INTEGER NOT NULL,
              finished_at INTEGER,
              pid INTEGER,
              session_id TEXT,
              cost_usd REAL,
              duration_ms INTEGER,
              tokens_in INTEGER NOT NULL DEFAULT 0,
              tokens_out INTEGER NOT NULL DEFAULT 0
            );
            """,
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_runs_created ON agent_runs(created_at DESC, id DESC);"
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS run_output (
              seq INTEGER PRIMARY KEY AUTOINCREMENT,
              run_id INTEGER NOT NULL REFERENCES agent_runs(id) ON DELETE CASCADE,
              line TEXT NOT NULL
            );
            """,
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_output_run_seq ON run_output(run_id, seq);"
        )

    @staticmethod
    def _row_to_run(row: aiosqlite.Row) -> Run:
        return Run(
            id=cast(int, row["id"]),
            agent_ref=cast(str, row["agent_ref"]),
            project_path=cast(str, row["project_path"]),
            task=cast(str, row["task"]),
            model=cast(str, row["model"]),
            status=row["status"],
            created_at=cast(int, row["created_at"]),
            finished_at=row["finished_at"],
            pid=row["pid"],
            session_id=row["session_id"],
            metrics=RunMetrics(
                cost_usd=row["cost_usd"],
                duration_ms=row["duration_ms"],
                tokens_in=cast(int, row["tokens_in"]),
                tokens_out=cast(int, row["tokens_out"]),
            ),
        )

    async def create_run(self, agent_ref: str, project_path: str, task: str, model: str) -> Run:
        self._ensure_setup()
        db = self._db()
        created_at = now_ms()
        cursor = await db.execute(
            """
            INSERT INTO agent_runs (agent_ref, project_path, task, model, status, created_at)
            VALUES (?, ?, ?, ?, 'pending', ?)
            """,
            (agent_ref, project_path, task, model, created_at),
        )
        await db.commit()
        run_id = cursor.lastrowid
        if run_id is None:
            raise RunStoreError("SQLite did not return a run id")
        return Run(
            id=run_id,
            agent_ref=agent_ref,
            project_path=project_path,
            task=task,
            model=model,
            created_at=created_at,
        )

    async def update_run(self, run: Run) -> None:
        self._ensure_setup()
        db = self._db()
        cursor = await db.execute(
            """
            UPDATE agent_runs SET
              agent_ref=?, project_path=?, task=?, model=?, status=?, created_at=?,
              finished_at=?, pid=?, session_id=?, cost_usd=?, duration_ms=?,
              tokens_in=?, tokens_out=?
            WHERE id=?
            """,
            (
                run.agent_ref,
                run.project_path,
                run.task,
                run.model,
                run.status,
                run.created_at,
                run.finished_at,
                run.pid,
                run.session_id,
                run.metrics.cost_usd,
                run.metrics.duration_ms,
                run.metrics.tokens_in,
                run.metrics.tokens_out,
                run.id,
            ),
        )
        await db.commit()
        if cursor.rowcount == 0:
            raise RunNotFoundError(run.id)

    async def get_run(self, run_id: int) -> Optional[Run]:
        self._ensure_setup()
        db = self._db()
        cursor = await db.execute("SELECT * FROM agent_runs WHERE id=?", (run_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_run(row)

    async def list_runs(self, limit: int = 1000) -> list[Run]:
        self._ensure_setup()
        db = self._db()
        cursor = await db.execute(
            "SELECT * FROM agent_runs ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_run(row) for row in rows]

    async def append_output(self, run_id: int, line: str) -> None:
        self._ensure_setup()
        db = self._db()
        await db.execute(
            "INSERT INTO run_output (run_id, line) VALUES (?, ?)",
            (run_id, line),
        )
        await db.commit()

    async def get_output(self, run_id: int, limit: int | None = None) -> list[str]:
        self._ensure_setup()
        db = self._db()
        if limit is None:
            cursor = await db.execute(
                "SELECT line FROM run_output WHERE run_id=? ORDER BY seq ASC",
                (run_id,),
            )
            rows = await cursor.fetchall()
            return [cast(str, row["line"]) for row in rows]

        cursor = await db.execute(
            "SELECT line FROM run_output WHERE run_id=? ORDER BY seq DESC LIMIT ?",
            (run_id, max(limit, 0)),
        )
        rows = await cursor.fetchall()
        return [cast(str, row["line"]) for row in rows][::-1]
