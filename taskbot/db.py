"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from taskbot.models import ConversationContext, UserRef

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                telegram_id INTEGER PRIMARY KEY,
                chat_id INTEGER NOT NULL,
                username TEXT,
                first_name TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                conversation_id TEXT,
                conversation_updated_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                telegram_id INTEGER NOT NULL,
                tool_name TEXT NOT NULL,
                call_id TEXT,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(telegram_id) REFERENCES users(telegram_id)
            );
            """
        )

    def upsert_user(
        self,
        telegram_id: int,
        chat_id: int,
        username: str | None = None,
        first_name: str | None = None,
    ) -> UserRef:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users(telegram_id, chat_id, username, first_name, created_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(telegram_id) DO UPDATE SET
                    chat_id=excluded.chat_id,
                    username=COALESCE(excluded.username, users.username),
                    first_name=COALESCE(excluded.first_name, users.first_name)
                """,
                (telegram_id, chat_id, username, first_name, _utc_now_iso()),
            )
            row = conn.execute(
                "SELECT telegram_id, chat_id, username, first_name, is_active FROM users WHERE telegram_id = ?",
                (telegram_id,),
            ).fetchone()
        return UserRef(
            user_id=int(row["telegram_id"]),
            chat_id=int(row["chat_id"]),
            display_name=row["first_name"] or row["username"] or "",
            is_active=bool(row["is_active"]),
        )

    def set_user_active(self, telegram_id: int, is_active: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET is_active = ? WHERE telegram_id = ?",
                (int(is_active), telegram_id),
            )

    def get_conversation(self, telegram_id: int) -> ConversationContext:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT conversation_id, conversation_updated_at FROM users WHERE telegram_id = ?",
                (telegram_id,),
            ).fetchone()
        if row is None:
            return ConversationContext()
        updated_at = row["conversation_updated_at"]
        return ConversationContext(
            context_id=row["conversation_id"],
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )

    def save_conversation(self, telegram_id: int, context_id: str | None, updated_at: datetime | None) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET conversation_id = ?, conversation_updated_at = ? WHERE telegram_id = ?",
                (
                    context_id,
                    updated_at.astimezone(timezone.utc).isoformat() if updated_at else None,
                    telegram_id,
                ),
            )

    def log_tool_execution(
        self,
        telegram_id: int,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
        call_id: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(telegram_id, tool_name, call_id, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    telegram_id,
                    tool_name,
                    call_id,
                    json.dumps(tool_input, ensure_ascii=False),
                    json.dumps(tool_output, ensure_ascii=False),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def list_tool_executions(self, telegram_id: int, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT tool_name, call_id, input_json, output_json, succeeded, created_at
                FROM tool_executions
                WHERE telegram_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (telegram_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
