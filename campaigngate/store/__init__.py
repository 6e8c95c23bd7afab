"""
Campaign Gate - Document Store

Async document-store contract used by the governance core, with an
in-memory backend and a persistent SQLite backend.

Documents are JSON objects keyed by (collection, id). Read-then-write
sequences that must not lose a race go through compare_and_update(),
which applies the write only if the expected field values still hold.
"""

import asyncio
import copy
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from ..core.config import StoreConfig
from ..core.exceptions import NotFoundError, StoreError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class DocumentStore(ABC):
    """Abstract async document store."""

    def new_id(self) -> str:
        """Allocate a fresh document id."""
        return uuid4().hex

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return a copy of the document, or None if absent."""

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Create or replace a document."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFoundError: If the document does not exist
        """

    @abstractmethod
    async def compare_and_update(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        """
        Atomically merge fields if every expected field still matches.

        Returns:
            True if the write was applied, False if the document changed
            or does not exist
        """

    @abstractmethod
    async def list(self, collection: str) -> List[Tuple[str, Document]]:
        """Return (id, document) pairs for a collection."""

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Store a document under a fresh id and return the id."""
        doc_id = self.new_id()
        await self.set(collection, doc_id, data)
        return doc_id

    async def close(self) -> None:
        """Release resources."""


def _matches(doc: Mapping[str, Any], expected: Mapping[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in expected.items())


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        async with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(dict(data))

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        async with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None:
                raise NotFoundError(
                    f"Document {collection}/{doc_id} not found",
                    collection=collection,
                    document_id=doc_id,
                )
            doc.update(copy.deepcopy(dict(fields)))

    async def compare_and_update(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        async with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            if doc is None or not _matches(doc, expected):
                return False
            doc.update(copy.deepcopy(dict(fields)))
            return True

    async def list(self, collection: str) -> List[Tuple[str, Document]]:
        async with self._lock:
            return [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._collections.get(collection, {}).items()
            ]


class SQLiteDocumentStore(DocumentStore):
    """
    Persistent store using SQLite.

    Each document is one JSON row. Blocking calls run in the default
    executor and are serialized with a lock, so conditional updates are
    atomic within and across processes sharing the database file.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize document store.

        Args:
            db_path: Path to SQLite database file.
                    If None, uses data/campaigngate.db under the working directory.
        """
        if db_path is None:
            db_path = Path("data") / "campaigngate.db"

        self._db_path = Path(db_path)
        self._lock = threading.RLock()

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """)
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=30.0,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    async def _run(self, operation: str, collection: str, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args))
        except NotFoundError:
            raise
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Store {operation} on {collection} failed: {e}")
            raise StoreError(
                f"Store {operation} failed: {e}",
                collection=collection,
                operation=operation,
            ) from e

    def _read(self, conn: sqlite3.Connection, collection: str, doc_id: str) -> Optional[Document]:
        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["data"]) if row else None

    def _write(self, conn: sqlite3.Connection, collection: str, doc_id: str, doc: Document) -> None:
        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET data = excluded.data
            """,
            (collection, doc_id, json.dumps(doc, sort_keys=True)),
        )

    def _get_sync(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            with self._get_connection() as conn:
                return self._read(conn, collection, doc_id)

    def _set_sync(self, collection: str, doc_id: str, data: Document) -> None:
        with self._lock:
            with self._get_connection() as conn:
                self._write(conn, collection, doc_id, data)
                conn.commit()

    def _update_sync(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        expected: Optional[Document],
    ) -> bool:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                doc = self._read(conn, collection, doc_id)
                if doc is None:
                    conn.rollback()
                    if expected is None:
                        raise NotFoundError(
                            f"Document {collection}/{doc_id} not found",
                            collection=collection,
                            document_id=doc_id,
                        )
                    return False
                if expected is not None and not _matches(doc, expected):
                    conn.rollback()
                    return False
                doc.update(fields)
                self._write(conn, collection, doc_id, doc)
                conn.commit()
                return True

    def _list_sync(self, collection: str) -> List[Tuple[str, Document]]:
        with self._lock:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY rowid",
                    (collection,),
                ).fetchall()
                return [(row["doc_id"], json.loads(row["data"])) for row in rows]

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return await self._run("get", collection, self._get_sync, collection, doc_id)

    async def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        await self._run("set", collection, self._set_sync, collection, doc_id, dict(data))

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        await self._run(
            "update", collection, self._update_sync, collection, doc_id, dict(fields), None
        )

    async def compare_and_update(
        self,
        collection: str,
        doc_id: str,
        expected: Mapping[str, Any],
        fields: Mapping[str, Any],
    ) -> bool:
        return await self._run(
            "compare_and_update",
            collection,
            self._update_sync,
            collection,
            doc_id,
            dict(fields),
            dict(expected),
        )

    async def list(self, collection: str) -> List[Tuple[str, Document]]:
        return await self._run("list", collection, self._list_sync, collection)


def create_store(config: StoreConfig) -> DocumentStore:
    """Build the configured store backend."""
    if config.backend == "memory":
        return InMemoryDocumentStore()
    if config.backend == "sqlite":
        return SQLiteDocumentStore(Path(config.path))
    raise ValueError(f"Unknown store backend: {config.backend}")


__all__ = [
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    "create_store",
]
