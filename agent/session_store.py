"""SQLite persistence for conversations, messages and tool execution records."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

EXECUTION_STATUSES = ("pending", "success", "error")


class SessionStore:
    """SQLite-backed store. Writes are serialized through one lock."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._write_lock = threading.Lock()
        self._ensure_directory()
        self._init_db()

    # ── Writes used by the orchestration loop ────────────────────────

    def create_conversation(self, title: str) -> str:
        """Create a conversation and return its id."""
        conversation_id = uuid.uuid4().hex[:12]
        now = self._now()
        clean = self._derive_title(title) or "Untitled"
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations (id, title, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (conversation_id, clean, now, now),
            )
        return conversation_id

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tool_payload: dict[str, Any] | None = None,
    ) -> str:
        """Persist a message and return its id."""
        message_id = uuid.uuid4().hex
        now = self._now()
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages (id, conversation_id, role, content, tool_payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    conversation_id,
                    role,
                    content,
                    json.dumps(tool_payload) if tool_payload is not None else None,
                    now,
                ),
            )
            conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now, conversation_id),
            )
        return message_id

    def create_execution_record(
        self,
        message_id: str | None,
        tool_name: str,
        tool_input: str,
    ) -> str:
        """Insert a pending execution record and return its id."""
        record_id = uuid.uuid4().hex
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions (id, message_id, tool_name, input, status, created_at)
                VALUES (?, ?, ?, ?, 'pending', ?)
                """,
                (record_id, message_id, tool_name, tool_input, self._now()),
            )
        return record_id

    def update_execution_record(
        self,
        record_id: str,
        status: str,
        duration_ms: float,
        output: Any = None,
        error: str | None = None,
    ) -> bool:
        """
        Move a pending record to its terminal status.
        Returns False when the record is unknown or already terminal.
        """
        if status not in ("success", "error"):
            raise ValueError(f"Terminal status must be 'success' or 'error', got '{status}'")
        with self._write_lock, self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE tool_executions
                SET status = ?, output = ?, error = ?, duration_ms = ?
                WHERE id = ? AND status = 'pending'
                """,
                (
                    status,
                    json.dumps(output, default=str) if output is not None else None,
                    error,
                    duration_ms,
                    record_id,
                ),
            )
            return cur.rowcount > 0

    # ── Reads used by the web and CLI glue ───────────────────────────

    def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        """Retrieve a conversation with its messages and their executions."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?",
                (conversation_id,),
            ).fetchone()
            if row is None:
                return None

            messages = conn.execute(
                """
                SELECT id, role, content, tool_payload, created_at
                FROM messages WHERE conversation_id = ? ORDER BY seq ASC
                """,
                (conversation_id,),
            ).fetchall()

            executions = conn.execute(
                """
                SELECT e.* FROM tool_executions e
                JOIN messages m ON m.id = e.message_id
                WHERE m.conversation_id = ?
                ORDER BY e.seq ASC
                """,
                (conversation_id,),
            ).fetchall()

        by_message: dict[str, list[dict[str, Any]]] = {}
        for e in executions:
            by_message.setdefault(e["message_id"], []).append(self._execution_dict(e))

        return {
            "id": row["id"],
            "title": row["title"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "messages": [
                {
                    "id": m["id"],
                    "role": m["role"],
                    "content": m["content"],
                    "tool_payload": json.loads(m["tool_payload"]) if m["tool_payload"] else None,
                    "created_at": m["created_at"],
                    "tool_executions": by_message.get(m["id"], []),
                }
                for m in messages
            ],
        }

    def list_conversations(self, limit: int | None = None) -> list[dict[str, Any]]:
        """List conversations, most recently updated first."""
        query = """
            SELECT
                c.id, c.title, c.created_at, c.updated_at,
                (SELECT COUNT(1) FROM messages m WHERE m.conversation_id = c.id) AS message_count
            FROM conversations c
            ORDER BY c.updated_at DESC, c.seq DESC
        """
        if limit is not None:
            query += " LIMIT ?"

        with self._connect() as conn:
            rows = conn.execute(query, (limit,) if limit is not None else ()).fetchall()

        return [
            {
                "id": r["id"],
                "title": r["title"],
                "created_at": r["created_at"],
                "updated_at": r["updated_at"],
                "message_count": r["message_count"],
            }
            for r in rows
        ]

    def dashboard_stats(self) -> dict[str, Any]:
        """Counts and success rate over all recorded tool executions."""
        with self._connect() as conn:
            conversations = conn.execute("SELECT COUNT(1) AS cnt FROM conversations").fetchone()["cnt"]
            messages = conn.execute("SELECT COUNT(1) AS cnt FROM messages").fetchone()["cnt"]
            executions = conn.execute("SELECT COUNT(1) AS cnt FROM tool_executions").fetchone()["cnt"]
            successes = conn.execute(
                "SELECT COUNT(1) AS cnt FROM tool_executions WHERE status = 'success'"
            ).fetchone()["cnt"]

        return {
            "total_conversations": conversations,
            "total_messages": messages,
            "total_tool_executions": executions,
            "success_rate": round(successes * 100 / executions, 1) if executions else 0.0,
        }

    def recent_executions(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent tool executions, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tool_executions ORDER BY seq DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._execution_dict(r) for r in rows]

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    conversation_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    tool_payload TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS tool_executions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    message_id TEXT,
                    tool_name TEXT NOT NULL,
                    input TEXT NOT NULL,
                    output TEXT,
                    error TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    duration_ms REAL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(message_id) REFERENCES messages(id) ON DELETE CASCADE
                );
                """
            )

    def _ensure_directory(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(directory, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @staticmethod
    def _execution_dict(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "message_id": row["message_id"],
            "tool_name": row["tool_name"],
            "input": row["input"],
            "output": json.loads(row["output"]) if row["output"] else None,
            "error": row["error"],
            "status": row["status"],
            "duration_ms": row["duration_ms"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _derive_title(content: str, max_len: int = 50) -> str:
        cleaned = " ".join(content.strip().split())
        if not cleaned:
            return ""
        if len(cleaned) <= max_len:
            return cleaned
        return cleaned[:max_len].rstrip() + "..."

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
