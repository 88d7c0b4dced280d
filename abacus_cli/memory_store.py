"""
SQLite-backed memory store for inspected files, conversations and file
operations.

One database file per project (``.abacus/memory.db`` by default).  The schema
is created with ``IF NOT EXISTS`` on every start and only ever grows, so store
files written by older versions keep working.

``conversations.context_id`` references ``code_context.id`` but the reference
is declared only: foreign-key enforcement is left off and nothing cascades.
Callers are responsible for passing ids they got from
:meth:`MemoryStore.store_code_context`.

A single connection is held for the lifetime of the store.  Writers in
separate processes are not coordinated beyond SQLite's own file locking.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10

OPERATIONS = ("create", "modify", "delete")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS code_context (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path      TEXT    NOT NULL,
    content        TEXT    NOT NULL,
    last_modified  REAL    NOT NULL,
    tags           TEXT    NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS conversations (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   REAL    NOT NULL,
    context_id  INTEGER REFERENCES code_context(id),
    prompt      TEXT    NOT NULL,
    response    TEXT    NOT NULL,
    metadata    TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS file_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path   TEXT    NOT NULL,
    operation   TEXT    NOT NULL,
    timestamp   REAL    NOT NULL,
    diff        TEXT    NOT NULL,
    metadata    TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_code_context_path ON code_context(file_path, last_modified);
CREATE INDEX IF NOT EXISTS idx_conversations_ctx ON conversations(context_id);
CREATE INDEX IF NOT EXISTS idx_file_history_path ON file_history(file_path);
"""

_SEARCH_SQL = """
SELECT
    c.id            AS context_id,
    c.file_path     AS file_path,
    c.content       AS content,
    c.tags          AS tags,
    c.last_modified AS last_modified,
    conv.prompt     AS prompt,
    conv.response   AS response,
    conv.metadata   AS metadata
FROM code_context c
LEFT JOIN conversations conv ON c.id = conv.context_id
WHERE
    icontains(c.content, :q)
    OR icontains(conv.prompt, :q)
    OR icontains(conv.response, :q)
ORDER BY c.last_modified DESC, c.id DESC, conv.id ASC
LIMIT :max_rows
"""


class StoreError(Exception):
    """Raised when the memory store cannot be opened, read or written."""


# ---------------------------------------------------------------------------
# Row / metadata dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConversationMetadata:
    """Model and cost figures attached to a conversation."""
    model: str
    tokens_used: int
    duration_ms: int


@dataclass(frozen=True)
class FileOperationMetadata:
    size_bytes: int
    lines_changed: int


@dataclass
class FileContextRow:
    """A stored snapshot of a file's content."""
    id: int
    file_path: str
    content: str
    last_modified: float
    tags: list[str] = field(default_factory=list)


@dataclass
class SearchResultRow:
    """
    One row of :meth:`MemoryStore.search_memory`.

    ``prompt``, ``response`` and ``metadata`` are None when the matching
    context has no conversation attached.
    """
    context_id: int
    file_path: str
    content: str
    tags: list[str]
    last_modified: float
    prompt: Optional[str] = None
    response: Optional[str] = None
    metadata: Optional[ConversationMetadata] = None


@dataclass
class FileOperationRow:
    """A recorded create/modify/delete event."""
    id: int
    file_path: str
    operation: str
    timestamp: float
    diff: str
    metadata: FileOperationMetadata


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _require_int(data: Mapping[str, Any], key: str, what: str) -> int:
    if key not in data:
        raise StoreError(f"Malformed {what} metadata: missing '{key}'")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise StoreError(
            f"Malformed {what} metadata: '{key}' must be an integer, got {value!r}"
        )
    return value


def _conversation_metadata(
    metadata: Union[ConversationMetadata, Mapping[str, Any]],
) -> ConversationMetadata:
    if isinstance(metadata, ConversationMetadata):
        metadata = asdict(metadata)
    if not isinstance(metadata, Mapping):
        raise StoreError(f"Malformed conversation metadata: {metadata!r}")
    model = metadata.get("model")
    if not isinstance(model, str):
        raise StoreError("Malformed conversation metadata: 'model' must be a string")
    return ConversationMetadata(
        model=model,
        tokens_used=_require_int(metadata, "tokens_used", "conversation"),
        duration_ms=_require_int(metadata, "duration_ms", "conversation"),
    )


def _operation_metadata(
    metadata: Union[FileOperationMetadata, Mapping[str, Any]],
) -> FileOperationMetadata:
    if isinstance(metadata, FileOperationMetadata):
        metadata = asdict(metadata)
    if not isinstance(metadata, Mapping):
        raise StoreError(f"Malformed file operation metadata: {metadata!r}")
    return FileOperationMetadata(
        size_bytes=_require_int(metadata, "size_bytes", "file operation"),
        lines_changed=_require_int(metadata, "lines_changed", "file operation"),
    )


def _decode(raw: str, what: str) -> Any:
    """Parse a JSON column; a corrupt value becomes a StoreError."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise StoreError(f"Corrupt {what} column: {exc}") from exc


def _decode_tags(raw: str) -> list[str]:
    tags = _decode(raw, "tags")
    if not isinstance(tags, list):
        raise StoreError(f"Corrupt tags column: {raw!r}")
    return [str(t) for t in tags]


def _decode_conversation_metadata(raw: str) -> ConversationMetadata:
    # Unknown keys written by newer versions are ignored.
    data = _decode(raw, "conversation metadata")
    try:
        return ConversationMetadata(
            model=str(data["model"]),
            tokens_used=int(data["tokens_used"]),
            duration_ms=int(data["duration_ms"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"Corrupt conversation metadata: {raw!r}") from exc


def _decode_operation_metadata(raw: str) -> FileOperationMetadata:
    data = _decode(raw, "file operation metadata")
    try:
        return FileOperationMetadata(
            size_bytes=int(data["size_bytes"]),
            lines_changed=int(data["lines_changed"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"Corrupt file operation metadata: {raw!r}") from exc


def _icontains(haystack: Optional[str], needle: Optional[str]) -> int:
    """SQL function: case-insensitive literal substring test."""
    if haystack is None or needle is None:
        return 0
    return int(needle.casefold() in haystack.casefold())


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class MemoryStore:
    """
    Durable record of file contexts, conversations and file history.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  The parent directory and the file
        are created if absent.

    Use as a context manager so the connection is released on every exit
    path::

        with MemoryStore(cfg.db_path()) as store:
            context_id = store.store_code_context("a.py", text)
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._last_ts = 0.0
        try:
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
            self._conn = sqlite3.connect(db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.create_function("icontains", 2, _icontains, deterministic=True)
            self._init_db()
        except (OSError, sqlite3.Error) as exc:
            self.close()
            raise StoreError(f"Failed to open memory store at {db_path}: {exc}") from exc
        logger.debug("Opened memory store %s", db_path)

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create tables if needed and seed the timestamp clock."""
        with self._conn:
            self._conn.executescript(_SCHEMA)
        row = self._conn.execute(
            "SELECT MAX(ts) FROM ("
            " SELECT MAX(last_modified) AS ts FROM code_context"
            " UNION ALL SELECT MAX(timestamp) FROM conversations"
            " UNION ALL SELECT MAX(timestamp) FROM file_history)"
        ).fetchone()
        self._last_ts = row[0] or 0.0

    def _now(self) -> float:
        """Return a store timestamp strictly later than any issued before."""
        ts = max(time.time(), self._last_ts + 1e-6)
        self._last_ts = ts
        return ts

    @contextmanager
    def _transaction(self, action: str):
        """Yield the open connection inside a transaction."""
        if self._conn is None:
            raise StoreError(f"Cannot {action}: memory store is closed")
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store_code_context(
        self,
        file_path: str,
        content: str,
        tags: Iterable[str] = (),
    ) -> int:
        """
        Insert a new snapshot of *file_path* and return its id.

        Existing rows for the same path are left untouched; readers pick the
        newest one.  Duplicate tags are dropped; a plain string is a single
        tag.
        """
        if isinstance(tags, str):
            tags = [tags]
        unique_tags = list(dict.fromkeys(str(t) for t in tags))
        with self._transaction("store code context") as conn:
            cur = conn.execute(
                "INSERT INTO code_context (file_path, content, last_modified, tags) "
                "VALUES (?, ?, ?, ?)",
                (file_path, content, self._now(), json.dumps(unique_tags)),
            )
            context_id = cur.lastrowid
        logger.debug("Stored context %d for %s (tags=%s)", context_id, file_path, unique_tags)
        return context_id

    def store_conversation(
        self,
        context_id: Optional[int],
        prompt: str,
        response: str,
        metadata: Union[ConversationMetadata, Mapping[str, Any]],
    ) -> None:
        """
        Record a prompt/response pair against *context_id*.

        *metadata* needs ``model`` (str), ``tokens_used`` and ``duration_ms``
        (int).  The context id is not checked for existence.
        """
        meta = _conversation_metadata(metadata)
        with self._transaction("store conversation") as conn:
            conn.execute(
                "INSERT INTO conversations "
                "(timestamp, context_id, prompt, response, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (self._now(), context_id, prompt, response, json.dumps(asdict(meta))),
            )
        logger.debug("Stored conversation for context %s (model=%s)", context_id, meta.model)

    def store_file_operation(
        self,
        file_path: str,
        operation: str,
        diff: str,
        metadata: Union[FileOperationMetadata, Mapping[str, Any]],
    ) -> None:
        """
        Record a file operation.

        *operation* is one of ``create``, ``modify`` or ``delete``; *metadata*
        needs integer ``size_bytes`` and ``lines_changed``.
        """
        if operation not in OPERATIONS:
            raise StoreError(
                f"Unknown file operation {operation!r}; expected one of {', '.join(OPERATIONS)}"
            )
        meta = _operation_metadata(metadata)
        with self._transaction("store file operation") as conn:
            conn.execute(
                "INSERT INTO file_history "
                "(file_path, operation, timestamp, diff, metadata) "
                "VALUES (?, ?, ?, ?, ?)",
                (file_path, operation, self._now(), diff, json.dumps(asdict(meta))),
            )
        logger.debug("Stored %s operation for %s", operation, file_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_code_context(self, file_path: str) -> Optional[FileContextRow]:
        """Return the most recent snapshot of *file_path*, or None."""
        with self._transaction("read code context") as conn:
            row = conn.execute(
                "SELECT id, file_path, content, last_modified, tags "
                "FROM code_context WHERE file_path = ? "
                "ORDER BY last_modified DESC, id DESC LIMIT 1",
                (file_path,),
            ).fetchone()
        if row is None:
            return None
        return FileContextRow(
            id=row["id"],
            file_path=row["file_path"],
            content=row["content"],
            last_modified=row["last_modified"],
            tags=_decode_tags(row["tags"]),
        )

    def get_file_history(
        self,
        file_path: Optional[str] = None,
        limit: int = 10,
    ) -> list[FileOperationRow]:
        """
        Return recorded file operations, newest first.

        Parameters
        ----------
        file_path:
            Only return operations recorded for this exact path.
        limit:
            Maximum number of rows.
        """
        sql = "SELECT id, file_path, operation, timestamp, diff, metadata FROM file_history"
        params: tuple = ()
        if file_path is not None:
            sql += " WHERE file_path = ?"
            params = (file_path,)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        with self._transaction("read file history") as conn:
            rows = conn.execute(sql, params + (limit,)).fetchall()
        return [
            FileOperationRow(
                id=r["id"],
                file_path=r["file_path"],
                operation=r["operation"],
                timestamp=r["timestamp"],
                diff=r["diff"],
                metadata=_decode_operation_metadata(r["metadata"]),
            )
            for r in rows
        ]

    def search_memory(self, query: str) -> list[SearchResultRow]:
        """
        Case-insensitive substring search over stored content and
        conversations.

        A context matches if its content, or the prompt or response of any
        conversation attached to it, contains *query*.  Contexts without
        conversations are included when their content matches.  At most
        :data:`SEARCH_LIMIT` rows are returned, newest context first.
        """
        with self._transaction("search memory") as conn:
            rows = conn.execute(_SEARCH_SQL, {"q": query, "max_rows": SEARCH_LIMIT}).fetchall()
        results = []
        for r in rows:
            meta = None
            if r["metadata"] is not None:
                meta = _decode_conversation_metadata(r["metadata"])
            results.append(SearchResultRow(
                context_id=r["context_id"],
                file_path=r["file_path"],
                content=r["content"],
                tags=_decode_tags(r["tags"]),
                last_modified=r["last_modified"],
                prompt=r["prompt"],
                response=r["response"],
                metadata=meta,
            ))
        logger.debug("Search %r returned %d row(s)", query, len(results))
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        """Release the connection.  Safe to call more than once."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to close memory store: {exc}") from exc
        logger.debug("Closed memory store %s", self._db_path)
