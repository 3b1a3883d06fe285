"""
SQLite metadata store for artifacts and their revision history.

Two tables back the service:
- ``images``: one row per drawing, mutated on every accepted revision
- ``histories``: one append-only row per accepted revision

Every sqlite3 failure surfaces as errors.StoreError so callers only deal with
the workflow error taxonomy.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import StoreError
from .models import ArtifactSummary, HistoryEntry

DEFAULT_DB_PATH = Path("data/oekaki.db")


@dataclass
class ArtifactRecord:
    """
    Internal representation of one drawing.

    ``delete_hash`` is the preview host's deletion token for ``preview_id``
    and must never leave the service; to_summary() drops it.
    """

    id: str
    author: str
    submitter_address: Optional[str]
    description: Optional[str]
    preview_id: str
    delete_hash: str
    count: int
    created_at: int

    def to_summary(self) -> ArtifactSummary:
        return ArtifactSummary(
            id=self.id,
            author=self.author,
            submitter_address=self.submitter_address,
            description=self.description,
            preview_id=self.preview_id,
            count=self.count,
            created_at=self.created_at,
        )


@dataclass
class HistoryRecord:
    id: str
    author: str
    submitter_address: Optional[str]
    image_id: str
    created_at: int

    def to_entry(self) -> HistoryEntry:
        return HistoryEntry(
            id=self.id,
            author=self.author,
            submitter_address=self.submitter_address,
            image_id=self.image_id,
            created_at=self.created_at,
        )


class ArtifactDatabase:
    """
    SQLite database for artifact and history persistence.

    Thread-safe: each call opens its own connection and SQLite handles
    concurrent access with WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection, committing on success."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database {self.db_path}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Database operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS images (
                    id TEXT PRIMARY KEY,
                    author TEXT NOT NULL,
                    ip TEXT,
                    description TEXT,
                    preview_id TEXT NOT NULL,
                    delete_hash TEXT NOT NULL,
                    count INTEGER NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS histories (
                    id TEXT PRIMARY KEY,
                    author TEXT NOT NULL,
                    ip TEXT,
                    image_id TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_images_created_at
                ON images(created_at DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_histories_image_id
                ON histories(image_id, created_at)
            """)

    def get_artifact(self, artifact_id: str) -> Optional[ArtifactRecord]:
        """
        Retrieve an artifact by ID.

        Returns:
            The record, or None if no row exists
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM images WHERE id = ?", (artifact_id,)
            ).fetchone()

            if not row:
                return None

            return self._row_to_artifact(row)

    def create_artifact(self, record: ArtifactRecord) -> None:
        """Insert a new artifact row."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO images (
                    id, author, ip, description, preview_id,
                    delete_hash, count, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.author,
                record.submitter_address,
                record.description,
                record.preview_id,
                record.delete_hash,
                record.count,
                record.created_at,
            ))

    def apply_revision(
        self,
        artifact_id: str,
        preview_id: str,
        delete_hash: str,
        created_at: int,
        max_revisions: int,
    ) -> bool:
        """
        Point the artifact at a new preview and bump its revision count.

        The cap check and the increment are one conditional UPDATE, so two
        concurrent revisions can never push ``count`` past ``max_revisions``.

        Returns:
            True if the row was updated, False if it is missing or already at the cap
        """
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE images
                SET preview_id = ?, delete_hash = ?, created_at = ?, count = count + 1
                WHERE id = ? AND count < ?
            """, (preview_id, delete_hash, created_at, artifact_id, max_revisions))
            return cursor.rowcount > 0

    def add_history(self, record: HistoryRecord) -> None:
        """Append a history row."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO histories (id, author, ip, image_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.author, record.submitter_address, record.image_id, record.created_at),
            )

    def delete_artifact(self, artifact_id: str) -> bool:
        """
        Delete an artifact row.

        Returns:
            True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM images WHERE id = ?", (artifact_id,))
            return cursor.rowcount > 0

    def delete_histories(self, artifact_id: str) -> int:
        """Delete every history row of an artifact and return how many went."""
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM histories WHERE image_id = ?", (artifact_id,))
            return cursor.rowcount

    def list_artifacts(self, limit: int, offset: int = 0) -> List[ArtifactRecord]:
        """
        List artifacts ordered by last revision time (newest first).
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM images ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()

            return [self._row_to_artifact(row) for row in rows]

    def list_histories(self, artifact_id: str) -> List[HistoryRecord]:
        """
        List the history of an artifact, oldest revision first.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM histories WHERE image_id = ? ORDER BY created_at ASC, rowid ASC",
                (artifact_id,),
            ).fetchall()

            return [
                HistoryRecord(
                    id=row["id"],
                    author=row["author"],
                    submitter_address=row["ip"],
                    image_id=row["image_id"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]

    def _row_to_artifact(self, row: sqlite3.Row) -> ArtifactRecord:
        return ArtifactRecord(
            id=row["id"],
            author=row["author"],
            submitter_address=row["ip"],
            description=row["description"],
            preview_id=row["preview_id"],
            delete_hash=row["delete_hash"],
            count=row["count"],
            created_at=row["created_at"],
        )
