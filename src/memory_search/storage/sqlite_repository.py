# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
SQLite memory repository.

Stores memories in a single SQLite file with an FTS5 index over title, text
and context for lexical search.  Embeddings are stored as JSON arrays; the
search core scans them linearly, so no vector index is kept.
Async operations using aiosqlite; every write commits on its own.
"""

import json
import logging
import os
import re
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import aiosqlite

from ..errors import RepositoryError
from ..models.memory import Memory
from ..models.validators import EmbeddingModelTag
from .base import MemoryFilter, MemoryRepository

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    context TEXT NOT NULL DEFAULT '',
    tags TEXT NOT NULL DEFAULT '[]',
    created_at REAL NOT NULL,
    embedding TEXT,
    embedding_model TEXT,
    embedding_generated_at REAL
);

CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at);
CREATE INDEX IF NOT EXISTS idx_memories_embedding_model ON memories(embedding_model);

CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
    title, text, context, content='memories', content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
    INSERT INTO memories_fts(rowid, title, text, context)
    VALUES (new.rowid, new.title, new.text, new.context);
END;

CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, title, text, context)
    VALUES ('delete', old.rowid, old.title, old.text, old.context);
END;

CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE OF title, text, context ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, title, text, context)
    VALUES ('delete', old.rowid, old.title, old.text, old.context);
    INSERT INTO memories_fts(rowid, title, text, context)
    VALUES (new.rowid, new.title, new.text, new.context);
END;
"""

_COLUMNS = "m.id, m.text, m.title, m.url, m.context, m.tags, m.created_at, m.embedding, m.embedding_model, m.embedding_generated_at"
_WORD_RE = re.compile(r"\w+")


def build_match_expression(text: str) -> str | None:
    """Turn free text into an FTS5 expression matching any of its words."""
    words = list(dict.fromkeys(_WORD_RE.findall(text.lower())))
    if not words:
        return None
    return " OR ".join('"' + w.replace('"', '""') + '"' for w in words)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _where(memory_filter: MemoryFilter | None) -> tuple[list[str], list[Any]]:
    """SQL conditions (on alias ``m``) for every constraint except text_query and limit."""
    if memory_filter is None:
        return [], []

    conditions: list[str] = []
    params: list[Any] = []

    if memory_filter.date_range is not None:
        conditions.append("m.created_at >= ? AND m.created_at <= ?")
        params += [memory_filter.date_range.start.timestamp(), memory_filter.date_range.end.timestamp()]
    if memory_filter.domain:
        conditions.append("LOWER(m.url) LIKE ? ESCAPE '\\'")
        params.append(f"%{_escape_like(memory_filter.domain.lower())}%")
    if memory_filter.tags:
        placeholders = ", ".join("?" for _ in memory_filter.tags)
        conditions.append(f"EXISTS (SELECT 1 FROM json_each(m.tags) WHERE json_each.value IN ({placeholders}))")
        params += list(memory_filter.tags)
    if memory_filter.has_embedding is True:
        conditions.append("m.embedding IS NOT NULL")
    elif memory_filter.has_embedding is False:
        conditions.append("m.embedding IS NULL")
    if memory_filter.embedding_model is not None:
        conditions.append("m.embedding_model = ?")
        params.append(memory_filter.embedding_model)
    if memory_filter.exclude_id is not None:
        conditions.append("m.id != ?")
        params.append(memory_filter.exclude_id)

    return conditions, params


class SQLiteMemoryRepository(MemoryRepository):
    """Async SQLite repository with FTS5 lexical search."""

    def __init__(self, db_path: str):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._initialized = False

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        if not self._initialized:
            await self.initialize()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except sqlite3.Error as e:
            raise RepositoryError(f"SQLite error on {self.db_path}: {e}") from e

    async def initialize(self) -> None:
        """Initialize database schema if not exists."""
        if self._initialized:
            return

        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executescript(_SCHEMA)
                await db.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to initialize memory database at {self.db_path}: {e}") from e

        self._initialized = True
        logger.info(f"Memory database initialized at {self.db_path}")

    async def add(self, memory: Memory) -> Memory:
        row = memory.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        async with self._connect() as db:
            await db.execute(f"INSERT INTO memories ({columns}) VALUES ({placeholders})", tuple(row.values()))
            await db.commit()
        return memory

    async def find_all(self, memory_filter: MemoryFilter | None = None) -> list[Memory]:
        conditions, params = _where(memory_filter)
        sql = f"SELECT {_COLUMNS} FROM memories m"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY m.created_at ASC, m.rowid ASC"
        if memory_filter is not None and memory_filter.limit:
            sql += " LIMIT ?"
            params.append(memory_filter.limit)

        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [Memory.from_row(dict(row)) for row in rows]

    async def search_text(self, memory_filter: MemoryFilter) -> list[tuple[Memory, float]]:
        expression = build_match_expression(memory_filter.text_query or "")
        if expression is None:
            return []

        conditions, params = _where(memory_filter)
        sql = (
            f"SELECT {_COLUMNS}, -bm25(memories_fts) AS score "
            "FROM memories_fts JOIN memories m ON m.rowid = memories_fts.rowid "
            "WHERE memories_fts MATCH ?"
        )
        params.insert(0, expression)
        if conditions:
            sql += " AND " + " AND ".join(conditions)
        sql += " ORDER BY score DESC"
        if memory_filter.limit:
            sql += " LIMIT ?"
            params.append(memory_filter.limit)

        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        results = []
        for row in rows:
            data = dict(row)
            score = float(data.pop("score") or 0.0)
            results.append((Memory.from_row(data), score))
        return results

    async def find_by_id(self, memory_id: str) -> Memory | None:
        async with self._connect() as db:
            cursor = await db.execute(f"SELECT {_COLUMNS} FROM memories m WHERE m.id = ?", (memory_id,))
            row = await cursor.fetchone()
        return Memory.from_row(dict(row)) if row else None

    async def update_embedding(
        self,
        memory_id: str,
        vector: list[float],
        model_tag: EmbeddingModelTag,
        timestamp: datetime,
    ) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                """
                UPDATE memories
                SET embedding = ?, embedding_model = ?, embedding_generated_at = ?
                WHERE id = ?
            """,
                (json.dumps(vector), model_tag, timestamp.timestamp(), memory_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise RepositoryError(f"Memory {memory_id} not found")

    async def count(self, memory_filter: MemoryFilter | None = None) -> int:
        conditions, params = _where(memory_filter)
        if memory_filter is not None and memory_filter.text_query:
            expression = build_match_expression(memory_filter.text_query)
            if expression is None:
                return 0
            sql = (
                "SELECT COUNT(*) FROM memories_fts JOIN memories m ON m.rowid = memories_fts.rowid "
                "WHERE memories_fts MATCH ?"
            )
            params.insert(0, expression)
            if conditions:
                sql += " AND " + " AND ".join(conditions)
        else:
            sql = "SELECT COUNT(*) FROM memories m"
            if conditions:
                sql += " WHERE " + " AND ".join(conditions)

        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def close(self) -> None:
        """Close database connections."""
        # aiosqlite doesn't maintain persistent connections, so nothing to close
        pass
