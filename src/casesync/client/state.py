"""Local replica store for the sync client.

This module provides:
- LocalReplicaStore: SQLite-based durable storage of the local replica

Architecture:
    Every store is independent and keyed by owner or document id:
    - replica_graphs: the office data graph of each owner, as JSON
    - deleted_ids: pending deletions of each owner, as JSON
    - document_files: document binary payloads
    - document_metadata: last known metadata of each document, as JSON
    - excluded_documents: documents removed from this device only
    - settings: key-value device settings

    Document payloads and metadata are written independently so that a
    binary transfer never blocks a metadata write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalReplicaStore:
    """SQLite-based durable storage of the local replica.

    All writes are single statements in autocommit mode, so each put is
    atomic on its own.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize local replica database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS replica_graphs (
                owner_id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                saved_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS deleted_ids (
                owner_id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS document_files (
                doc_id TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                saved_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS document_metadata (
                doc_id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS excluded_documents (
                owner_id TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                PRIMARY KEY (owner_id, doc_id)
            );

            -- Key-value device settings
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _load_json(self, query: str, key: str) -> Any:
        with self._lock:
            row = self._conn.execute(query, (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["data"])
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt JSON stored for {key!r}")
            return None

    # === Graph ===

    def get_graph(self, owner_id: str) -> dict[str, Any] | None:
        """Get the stored graph of an owner.

        Args:
            owner_id: Effective owner id.

        Returns:
            The raw graph, or None if nothing is stored.
        """
        return self._load_json("SELECT data FROM replica_graphs WHERE owner_id = ?", owner_id)

    def put_graph(self, owner_id: str, graph: dict[str, Any]) -> None:
        """Replace the stored graph of an owner."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO replica_graphs (owner_id, data, saved_at) VALUES (?, ?, ?)",
                (owner_id, json.dumps(graph), time.time()),
            )

    # === Deletions ===

    def get_deleted_ids(self, owner_id: str) -> dict[str, Any] | None:
        """Get the pending deletions of an owner."""
        return self._load_json("SELECT data FROM deleted_ids WHERE owner_id = ?", owner_id)

    def put_deleted_ids(self, owner_id: str, deleted: dict[str, Any]) -> None:
        """Replace the pending deletions of an owner."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO deleted_ids (owner_id, data) VALUES (?, ?)",
                (owner_id, json.dumps(deleted)),
            )

    # === Document payloads ===

    def get_document_file(self, doc_id: str) -> bytes | None:
        """Get the binary payload of a document."""
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM document_files WHERE doc_id = ?",
                (doc_id,),
            ).fetchone()
        return bytes(row["data"]) if row else None

    def has_document_file(self, doc_id: str) -> bool:
        """Check if the binary payload of a document is stored locally."""
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM document_files WHERE doc_id = ?",
                (doc_id,),
            ).fetchone()
        return row is not None

    def put_document_file(self, doc_id: str, data: bytes) -> None:
        """Store the binary payload of a document."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO document_files (doc_id, data, saved_at) VALUES (?, ?, ?)",
                (doc_id, sqlite3.Binary(data), time.time()),
            )

    def delete_document_file(self, doc_id: str) -> None:
        """Remove the binary payload of a document."""
        with self._lock:
            self._conn.execute("DELETE FROM document_files WHERE doc_id = ?", (doc_id,))

    # === Document metadata ===

    def get_document_metadata(self, doc_id: str) -> dict[str, Any] | None:
        """Get the stored metadata of a document."""
        return self._load_json("SELECT data FROM document_metadata WHERE doc_id = ?", doc_id)

    def list_document_metadata(self) -> list[dict[str, Any]]:
        """Get the stored metadata of every document."""
        with self._lock:
            rows = self._conn.execute("SELECT doc_id, data FROM document_metadata ORDER BY doc_id").fetchall()
        result = []
        for row in rows:
            try:
                result.append(json.loads(row["data"]))
            except json.JSONDecodeError:
                logger.warning(f"Ignoring corrupt metadata stored for {row['doc_id']!r}")
        return result

    def put_document_metadata(self, doc_id: str, metadata: dict[str, Any]) -> None:
        """Store the metadata of a document."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO document_metadata (doc_id, data) VALUES (?, ?)",
                (doc_id, json.dumps(metadata)),
            )

    def delete_document_metadata(self, doc_id: str) -> None:
        """Remove the metadata of a document."""
        with self._lock:
            self._conn.execute("DELETE FROM document_metadata WHERE doc_id = ?", (doc_id,))

    # === Device-local exclusions ===

    def get_excluded_documents(self, owner_id: str) -> set[str]:
        """Get ids of documents removed from this device only."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT doc_id FROM excluded_documents WHERE owner_id = ?",
                (owner_id,),
            ).fetchall()
        return {row["doc_id"] for row in rows}

    def add_excluded_document(self, owner_id: str, doc_id: str) -> None:
        """Remember that a document was removed from this device only."""
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO excluded_documents (owner_id, doc_id) VALUES (?, ?)",
                (owner_id, doc_id),
            )

    # === Settings ===

    def get_setting(self, key: str) -> str | None:
        """Get a device setting value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        """Set a device setting value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete_setting(self, key: str) -> None:
        """Remove a device setting."""
        with self._lock:
            self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
