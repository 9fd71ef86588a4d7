"""
Pluggable persistence for engine state.

State is stored as JSON documents keyed by (namespace, key). The engine
owns (de)serialization; a store only moves dicts in and out.
"""

import json
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from mistake_learning.exceptions import PersistenceError
from mistake_learning.settings import PersistenceSettings
from mistake_learning.utils.logger import setup_logger

logger = setup_logger(__name__)

Document = Dict[str, Any]


def encode(namespace: str, key: str, doc: Document) -> str:
    try:
        return json.dumps(doc)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Cannot encode {namespace}/{key}: {e}") from e


class KeyValueStore(ABC):
    """Namespaced document store."""

    @abstractmethod
    def load(self, namespace: str) -> Dict[str, Document]:
        """Return every document in a namespace keyed by id."""

    @abstractmethod
    def save(self, namespace: str, documents: Dict[str, Document]) -> None:
        """Insert or replace the given documents. Others are left untouched."""

    def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """Store that lives only as long as the process."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, str]] = {}

    def load(self, namespace: str) -> Dict[str, Document]:
        return {k: json.loads(v) for k, v in self._data.get(namespace, {}).items()}

    def save(self, namespace: str, documents: Dict[str, Document]) -> None:
        # Stored as text so callers never share mutable state with the store
        encoded = {key: encode(namespace, key, doc) for key, doc in documents.items()}
        self._data.setdefault(namespace, {}).update(encoded)


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed document store."""

    def __init__(self, db_path: str):
        self.db_path = os.path.expanduser(db_path)
        self._ensure_dir()
        self._init_db()

    def _ensure_dir(self) -> None:
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"SQLite error on {self.db_path}: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    body TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
                """
            )

    def load(self, namespace: str) -> Dict[str, Document]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT key, body FROM documents WHERE namespace = ?", (namespace,)
            ).fetchall()
        documents = {}
        for row in rows:
            try:
                documents[row["key"]] = json.loads(row["body"])
            except json.JSONDecodeError as e:
                raise PersistenceError(
                    f"Corrupt document {namespace}/{row['key']}: {e}"
                ) from e
        return documents

    def save(self, namespace: str, documents: Dict[str, Document]) -> None:
        if not documents:
            return
        rows = [(namespace, key, encode(namespace, key, doc)) for key, doc in documents.items()]
        with self._conn() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO documents (namespace, key, body) VALUES (?, ?, ?)", rows
            )
        logger.debug(f"Saved {len(documents)} {namespace} document(s) to {self.db_path}")


def create_store(settings: Optional[PersistenceSettings] = None) -> KeyValueStore:
    """Build the store selected by persistence settings."""
    settings = settings or PersistenceSettings()
    backend = (settings.backend or "memory").lower()
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "sqlite":
        return SqliteKeyValueStore(settings.path)
    raise PersistenceError(f"Unknown persistence backend: {settings.backend}")
