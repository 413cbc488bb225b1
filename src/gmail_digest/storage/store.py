"""SQLite persistence for Gmail connections, digests, and their summaries."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from gmail_digest.core.models import Connection, Digest, NewSummary, Summary

logger = logging.getLogger(__name__)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _to_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class DigestStore:
    """Stores Gmail digest state in SQLite.

    Tables:
    - connections: one OAuth credential set per user
    - digests: one row per orchestrator run
    - summaries: per-email classification rows owned by a digest
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> DigestStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS connections (
                user_id TEXT PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT NOT NULL,
                expiry_date TEXT,
                connected INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_connections_connected ON connections(connected);

            CREATE TABLE IF NOT EXISTS digests (
                digest_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                total_emails INTEGER NOT NULL DEFAULT 0,
                summary_text TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_digests_user_created ON digests(user_id, created_at);

            CREATE TABLE IF NOT EXISTS summaries (
                summary_id INTEGER PRIMARY KEY AUTOINCREMENT,
                digest_id INTEGER NOT NULL,
                email_id TEXT NOT NULL,
                sender_email TEXT DEFAULT '',
                sender_name TEXT DEFAULT '',
                subject TEXT DEFAULT '',
                summary TEXT DEFAULT '',
                category TEXT NOT NULL,
                priority TEXT NOT NULL,
                action_required INTEGER NOT NULL DEFAULT 0,
                sentiment TEXT NOT NULL,
                FOREIGN KEY (digest_id) REFERENCES digests(digest_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_summaries_digest ON summaries(digest_id);
        """)

    # ---------- connections ----------

    def upsert_connection(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expiry_date: datetime | None,
    ) -> Connection:
        """Store fresh tokens for a user and mark the connection active."""
        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            """INSERT INTO connections
               (user_id, access_token, refresh_token, expiry_date, connected, created_at, updated_at)
               VALUES (?, ?, ?, ?, 1, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   access_token = excluded.access_token,
                   refresh_token = excluded.refresh_token,
                   expiry_date = excluded.expiry_date,
                   connected = 1,
                   updated_at = excluded.updated_at""",
            (user_id, access_token, refresh_token, _to_text(expiry_date), now, now),
        )
        self.conn.commit()
        connection = self.get_connection(user_id)
        if connection is None:
            raise RuntimeError(f"Connection for {user_id} vanished after upsert")
        return connection

    def get_connection(self, user_id: str) -> Connection | None:
        """Get a user's connection record, active or not."""
        row = self.conn.execute(
            "SELECT * FROM connections WHERE user_id = ?", (user_id,)
        ).fetchone()
        return self._row_to_connection(row) if row else None

    def update_tokens(
        self,
        user_id: str,
        access_token: str,
        expiry_date: datetime | None,
        refresh_token: str | None = None,
    ) -> None:
        """Persist a refreshed access token (and a rotated refresh token, if any)."""
        now = datetime.now(UTC).isoformat()
        sets = ["access_token = ?", "expiry_date = ?", "updated_at = ?"]
        params: list[str | None] = [access_token, _to_text(expiry_date), now]
        if refresh_token:
            sets.append("refresh_token = ?")
            params.append(refresh_token)
        params.append(user_id)
        self.conn.execute(
            f"UPDATE connections SET {', '.join(sets)} WHERE user_id = ?",
            params,
        )
        self.conn.commit()

    def set_connected(self, user_id: str, connected: bool) -> None:
        """Flip the soft-disable flag on a connection."""
        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            "UPDATE connections SET connected = ?, updated_at = ? WHERE user_id = ?",
            (int(connected), now, user_id),
        )
        self.conn.commit()

    def list_active_connections(self) -> list[Connection]:
        """All connections with connected = 1, oldest first."""
        rows = self.conn.execute(
            "SELECT * FROM connections WHERE connected = 1 ORDER BY created_at, rowid"
        ).fetchall()
        return [self._row_to_connection(row) for row in rows]

    # ---------- digests ----------

    def latest_digest_time(self, user_id: str) -> datetime | None:
        """created_at of the user's most recent digest, if any."""
        row = self.conn.execute(
            "SELECT created_at FROM digests WHERE user_id = ? "
            "ORDER BY created_at DESC, digest_id DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        return _to_datetime(row["created_at"]) if row else None

    def create_digest(
        self,
        user_id: str,
        summary_text: str,
        summaries: Sequence[NewSummary] = (),
    ) -> Digest:
        """Insert a digest and all of its summaries in one transaction.

        total_emails is always the number of summaries written.
        """
        now = datetime.now(UTC).isoformat()
        with self.conn:
            cursor = self.conn.execute(
                "INSERT INTO digests (user_id, total_emails, summary_text, created_at) "
                "VALUES (?, ?, ?, ?)",
                (user_id, len(summaries), summary_text, now),
            )
            digest_id = cursor.lastrowid
            rows = [
                (
                    digest_id,
                    s.email_id,
                    s.sender_email,
                    s.sender_name,
                    s.subject,
                    s.classification.summary,
                    s.classification.category,
                    s.classification.priority,
                    int(s.classification.action_required),
                    s.classification.sentiment,
                )
                for s in summaries
            ]
            self.conn.executemany(
                """INSERT INTO summaries
                   (digest_id, email_id, sender_email, sender_name, subject, summary,
                    category, priority, action_required, sentiment)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                rows,
            )

        logger.debug("Stored digest %s with %d summaries", digest_id, len(summaries))
        digest = self.get_digest(user_id, digest_id)
        if digest is None:
            raise RuntimeError(f"Digest {digest_id} vanished after insert")
        return digest

    def get_digest(self, user_id: str, digest_id: int) -> Digest | None:
        """Get a digest with its summaries, only if owned by user_id."""
        row = self.conn.execute(
            "SELECT * FROM digests WHERE digest_id = ? AND user_id = ?",
            (digest_id, user_id),
        ).fetchone()
        return self._row_to_digest(row) if row else None

    def list_digests(self, user_id: str, limit: int = 10, offset: int = 0) -> list[Digest]:
        """A user's digests with summaries, newest first."""
        rows = self.conn.execute(
            "SELECT * FROM digests WHERE user_id = ? "
            "ORDER BY created_at DESC, digest_id DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        ).fetchall()
        return [self._row_to_digest(row) for row in rows]

    def count_digests(self, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS cnt FROM digests WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["cnt"]

    def delete_digest(self, user_id: str, digest_id: int) -> bool:
        """Delete a digest and its summaries. Returns False if not owned or missing."""
        cursor = self.conn.execute(
            "DELETE FROM digests WHERE digest_id = ? AND user_id = ?",
            (digest_id, user_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # ---------- row mapping ----------

    @staticmethod
    def _row_to_connection(row: sqlite3.Row) -> Connection:
        return Connection(
            user_id=row["user_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expiry_date=_to_datetime(row["expiry_date"]),
            connected=bool(row["connected"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_digest(self, row: sqlite3.Row) -> Digest:
        summary_rows = self.conn.execute(
            "SELECT * FROM summaries WHERE digest_id = ? ORDER BY summary_id",
            (row["digest_id"],),
        ).fetchall()
        summaries = tuple(
            Summary(
                id=s["summary_id"],
                digest_id=s["digest_id"],
                email_id=s["email_id"],
                sender_email=s["sender_email"],
                sender_name=s["sender_name"],
                subject=s["subject"],
                summary=s["summary"],
                category=s["category"],
                priority=s["priority"],
                action_required=bool(s["action_required"]),
                sentiment=s["sentiment"],
            )
            for s in summary_rows
        )
        return Digest(
            id=row["digest_id"],
            user_id=row["user_id"],
            total_emails=row["total_emails"],
            summary_text=row["summary_text"],
            created_at=datetime.fromisoformat(row["created_at"]),
            summaries=summaries,
        )
