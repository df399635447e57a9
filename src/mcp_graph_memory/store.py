"""
Document store adapter for the knowledge graph.

The store is a directory holding a SQLite database of JSON documents plus a `LOCK`
artifact. Every document carries an `_id`, a revision `_rev` ("<generation>-<hex>")
and may be tombstoned (`_deleted`). Writes are checked against the stored revision,
so a writer holding a stale copy gets a per-document conflict instead of silently
overwriting newer data.

Reads and writes that hit a transient fault ("resource temporarily unavailable":
SQLite lock/busy errors, EAGAIN) are retried with doubling backoff and jitter.
Any other failure propagates immediately.
"""

from __future__ import annotations

import asyncio
import errno
import json
import os
import random
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable
from uuid import uuid4

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from .graph_logging import logger
from .models import Entity, KnowledgeGraph, Relation, WriteResult
from .settings import StoreOptions


DB_FILE_NAME = "docs.sqlite3"
LOCK_FILE_NAME = "LOCK"

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  rev TEXT NOT NULL,
  deleted INTEGER NOT NULL DEFAULT 0,
  body TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS revisions (
  id TEXT NOT NULL,
  generation INTEGER NOT NULL,
  rev TEXT NOT NULL,
  body TEXT,
  PRIMARY KEY (id, generation)
);
"""

_TRANSIENT_SQLITE_MESSAGES = ("database is locked", "database is busy", "database table is locked")


class StoreError(RuntimeError):
    """Raised when the primary document store cannot complete an operation."""

    pass


class StoreLockedError(StoreError):
    """Raised when another process holds a fresh lock on the store directory."""

    pass


def is_transient_error(exc: BaseException) -> bool:
    """True for "resource temporarily unavailable" faults that are worth retrying."""
    if isinstance(exc, sqlite3.OperationalError):
        msg = str(exc).lower()
        return any(m in msg for m in _TRANSIENT_SQLITE_MESSAGES)
    if isinstance(exc, OSError):
        return exc.errno in (errno.EAGAIN, errno.EWOULDBLOCK)
    return False


def _is_retryable_open_error(exc: BaseException) -> bool:
    return isinstance(exc, StoreLockedError) or is_transient_error(exc)


class wait_doubling_jitter(wait_base):
    """
    Wait `initial`, doubling after every failed attempt up to `maximum` (seconds).

    With jitter enabled each wait is scaled by a random factor in [0.75, 1.25).
    """

    def __init__(self, initial: float, maximum: float, jitter: bool = True) -> None:
        self.initial = initial
        self.maximum = maximum
        self.jitter = jitter

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = max(retry_state.attempt_number, 1)
        delay = min(self.initial * (2 ** (attempt - 1)), self.maximum)
        if self.jitter:
            delay *= 0.75 + random.random() * 0.5
        return delay


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"⏳ Transient store error on attempt {retry_state.attempt_number}: {exc}; retrying in {wait:.2f}s"
    )


def _rev_generation(rev: str | None) -> int:
    if not rev:
        return 0
    try:
        return int(rev.split("-", 1)[0])
    except ValueError:
        return 0


class DocumentStore:
    """
    Handle on a document store directory.

    The handle is owned explicitly: open it once with `open()` (or the `open_document_store()`
    context manager) and close it with `close()`, which compacts the database by default.
    """

    def __init__(self, path: str | Path, options: StoreOptions | None = None) -> None:
        self.path = Path(path)
        self.options = options or StoreOptions()
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self.path / DB_FILE_NAME

    @property
    def lock_path(self) -> Path:
        return self.path / LOCK_FILE_NAME

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ---------- Retry policies ----------
    def _io_retrying(self) -> AsyncRetrying:
        opts = self.options
        return AsyncRetrying(
            stop=stop_after_attempt(opts.max_retries),
            wait=wait_doubling_jitter(opts.initial_delay_ms / 1000, opts.max_delay_ms / 1000),
            retry=retry_if_exception(is_transient_error),
            before_sleep=_log_retry,
            reraise=True,
        )

    def _open_retrying(self) -> AsyncRetrying:
        opts = self.options
        return AsyncRetrying(
            stop=stop_after_attempt(opts.open_attempts),
            wait=wait_doubling_jitter(
                opts.initial_delay_ms / 1000, opts.max_delay_ms / 1000, jitter=False
            ),
            retry=retry_if_exception(_is_retryable_open_error),
            before_sleep=_log_retry,
            reraise=True,
        )

    # ---------- Lifecycle ----------
    async def open(self) -> "DocumentStore":
        """Open the store, retrying with doubling backoff while it is locked or busy."""
        if self._conn is not None:
            return self
        async for attempt in self._open_retrying():
            with attempt:
                self._open_sync()
        logger.info(f"📂 Opened document store at {self.path}")
        return self

    def _open_sync(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        self._acquire_lock()
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=1.0)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        except Exception:
            self._release_lock()
            raise
        self._conn = conn

    def _acquire_lock(self) -> None:
        lock = self.lock_path
        if lock.exists():
            try:
                age = time.time() - lock.stat().st_mtime
            except FileNotFoundError:
                age = None
            if age is not None and age > self.options.stale_lock_seconds:
                logger.warning(f"🔓 Removing stale lock {lock} ({age:.0f}s old)")
                lock.unlink(missing_ok=True)
            elif age is not None:
                raise StoreLockedError(f"Document store at {self.path} is locked by another process")
        try:
            fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise StoreLockedError(f"Document store at {self.path} is locked by another process")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))

    def _touch_lock(self) -> None:
        try:
            os.utime(self.lock_path)
        except FileNotFoundError:
            logger.warning(f"Lock file {self.lock_path} vanished while the store was open")

    def _release_lock(self) -> None:
        self.lock_path.unlink(missing_ok=True)

    def close(self, compact: bool = True) -> None:
        """Close the store, compacting it first unless `compact` is False."""
        if self._conn is None:
            return
        try:
            if compact:
                try:
                    self.compact()
                except sqlite3.Error as e:
                    logger.error(f"⚠️ Failed to compact document store at {self.path}: {e}")
            self._conn.close()
        finally:
            self._conn = None
            self._release_lock()
        logger.info(f"🔒 Closed document store at {self.path}")

    async def reinitialize(self) -> None:
        """Let in-flight operations settle, then close and reopen the handle."""
        logger.info(f"🔄 Reinitializing document store at {self.path}")
        await asyncio.sleep(self.options.settle_delay_ms / 1000)
        self.close(compact=False)
        await self.open()

    def compact(self) -> None:
        """Drop the bodies of non-current revisions and reclaim free space."""
        conn = self._require_conn()
        with conn:
            self._purge_revision_bodies(conn)
        conn.execute("VACUUM")
        logger.debug(f"🧹 Compacted document store at {self.path}")

    # ---------- Reads ----------
    async def all_docs(self) -> list[dict[str, Any]]:
        """Return every live document in insertion order."""
        async for attempt in self._io_retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 2:
                    await self.reinitialize()
                return self._all_docs_sync()
        return []

    def _all_docs_sync(self) -> list[dict[str, Any]]:
        conn = self._require_conn()
        rows = conn.execute(
            "SELECT id, rev, body FROM documents WHERE deleted = 0 ORDER BY seq"
        ).fetchall()
        docs: list[dict[str, Any]] = []
        for doc_id, rev, body in rows:
            doc = json.loads(body)
            doc["_id"] = doc_id
            doc["_rev"] = rev
            docs.append(doc)
        return docs

    async def load_all(self) -> KnowledgeGraph:
        """
        Load every document and partition them into entities and relations by `type`.

        On an unrecoverable read failure the error is logged and an empty graph is returned.
        """
        try:
            docs = await self.all_docs()
        except Exception as e:
            logger.error(f"⛔ Error loading graph from {self.path}: {e}")
            return KnowledgeGraph()

        graph = KnowledgeGraph()
        for doc in docs:
            kind = doc.get("type")
            try:
                if kind == "entity":
                    graph.entities.append(Entity.from_doc(doc))
                elif kind == "relation":
                    graph.relations.append(Relation.from_doc(doc))
                else:
                    logger.warning(f"Unknown document type '{kind}' for {doc.get('_id')}; skipping")
            except ValidationError as e:
                logger.warning(f"Invalid {kind} document {doc.get('_id')}: {e}; skipping")
        logger.debug(
            f"💾 Loaded {len(graph.entities)} entities and {len(graph.relations)} relations"
        )
        return graph

    def revisions(self, doc_id: str) -> list[str]:
        """Known revision ids of a document, newest first."""
        conn = self._require_conn()
        rows = conn.execute(
            "SELECT rev FROM revisions WHERE id = ? ORDER BY generation DESC", (doc_id,)
        ).fetchall()
        return [r[0] for r in rows]

    # ---------- Writes ----------
    async def bulk_write(self, docs: Iterable[dict[str, Any]]) -> list[WriteResult]:
        """
        Write a batch of documents in one transaction.

        Documents marked `_deleted: True` are tombstoned. A live document whose `_rev` does
        not match the stored revision is reported as a `conflict` and left untouched.
        """
        docs = list(docs)
        if not docs:
            return []
        async for attempt in self._io_retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 2:
                    await self.reinitialize()
                return self._bulk_write_sync(docs)
        return []

    def _bulk_write_sync(self, docs: list[dict[str, Any]]) -> list[WriteResult]:
        conn = self._require_conn()
        results: list[WriteResult] = []
        with conn:
            for doc in docs:
                results.append(self._write_one(conn, doc))
            if self.options.auto_compaction:
                self._purge_revision_bodies(conn)
        self._touch_lock()
        return results

    def _write_one(self, conn: sqlite3.Connection, doc: dict[str, Any]) -> WriteResult:
        doc_id = doc.get("_id")
        if not doc_id:
            return WriteResult(id="", ok=False, error="missing_id")
        given_rev = doc.get("_rev")
        deleted = bool(doc.get("_deleted", False))

        row = conn.execute("SELECT rev, deleted FROM documents WHERE id = ?", (doc_id,)).fetchone()
        if row is None:
            if deleted:
                return WriteResult(id=doc_id, ok=False, error="not_found")
            generation = 1
        else:
            current_rev, current_deleted = row
            # A tombstoned id may be recreated without a revision
            if given_rev != current_rev and not (current_deleted and given_rev is None):
                return WriteResult(id=doc_id, ok=False, error="conflict")
            generation = _rev_generation(current_rev) + 1

        new_rev = f"{generation}-{uuid4().hex}"
        body = json.dumps(
            {k: v for k, v in doc.items() if k not in ("_id", "_rev", "_deleted")},
            separators=(",", ":"),
        )
        conn.execute(
            """
            INSERT INTO documents(id, rev, deleted, body) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET rev=excluded.rev, deleted=excluded.deleted, body=excluded.body
            """,
            (doc_id, new_rev, int(deleted), body),
        )
        conn.execute(
            "INSERT OR REPLACE INTO revisions(id, generation, rev, body) VALUES (?, ?, ?, ?)",
            (doc_id, generation, new_rev, body),
        )
        conn.execute(
            "DELETE FROM revisions WHERE id = ? AND generation <= ?",
            (doc_id, generation - self.options.revs_limit),
        )
        return WriteResult(id=doc_id, rev=new_rev)

    def _purge_revision_bodies(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            UPDATE revisions SET body = NULL
            WHERE body IS NOT NULL
              AND rev NOT IN (SELECT rev FROM documents WHERE documents.id = revisions.id)
            """
        )

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError(f"Document store at {self.path} is not open")
        return self._conn


@asynccontextmanager
async def open_document_store(
    path: str | Path, options: StoreOptions | None = None
) -> AsyncIterator[DocumentStore]:
    """Open a document store for the duration of the block; close and compact it on exit."""
    store = DocumentStore(path, options)
    await store.open()
    try:
        yield store
    finally:
        store.close()


__all__ = [
    "DocumentStore",
    "StoreError",
    "StoreLockedError",
    "is_transient_error",
    "open_document_store",
    "wait_doubling_jitter",
]
