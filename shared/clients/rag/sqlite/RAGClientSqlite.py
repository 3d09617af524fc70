"""Vector index stored in a local SQLite file, searched with numpy.

Vectors are float32 blobs next to their chunk metadata. Similarity search is
an exact cosine scan over a normalised matrix that is cached per model and
dropped on every write.
"""

import asyncio
import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Iterator

import numpy as np

from shared.clients.rag.RAGClientInterface import RAGClientInterface, UpsertGuard
from shared.clients.rag.models.ChunkRecord import ChunkRecord, IndexStats, ScoredChunk, SourceVector
from shared.helper.HelperConfig import HelperConfig
from shared.helper.ReadWriteLock import ReadWriteLock
from shared.models.config import EnvConfig
from shared.models.errors import IndexStorageError
from shared.models.external import ExternalBlockContent

INDEX_FILE_NAME = "rag_index.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS chunks (
    point_id        TEXT PRIMARY KEY,
    doc_id          TEXT NOT NULL,
    block_id        TEXT NOT NULL DEFAULT '',
    chunk_index     INTEGER NOT NULL,
    source_type     TEXT NOT NULL,
    doc_title       TEXT NOT NULL DEFAULT '',
    source_title    TEXT NOT NULL DEFAULT '',
    block_type      TEXT NOT NULL DEFAULT '',
    heading_context TEXT NOT NULL DEFAULT '',
    chunk_text      TEXT NOT NULL,
    content_hash    TEXT NOT NULL DEFAULT '',
    embed_model     TEXT NOT NULL,
    dim             INTEGER NOT NULL,
    vector          BLOB NOT NULL,
    updated_at      REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chunks_scope ON chunks (doc_id, block_id);
CREATE INDEX IF NOT EXISTS idx_chunks_model ON chunks (embed_model, dim);

CREATE TABLE IF NOT EXISTS external_content (
    doc_id       TEXT NOT NULL,
    block_id     TEXT NOT NULL,
    block_type   TEXT NOT NULL DEFAULT '',
    locator      TEXT NOT NULL DEFAULT '',
    title        TEXT NOT NULL DEFAULT '',
    raw_content  TEXT NOT NULL DEFAULT '',
    error        TEXT,
    extracted_at REAL,
    PRIMARY KEY (doc_id, block_id)
);

CREATE TABLE IF NOT EXISTS metadata (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

_INSERT_COLUMNS = (
    "point_id, doc_id, block_id, chunk_index, source_type, doc_title, source_title, "
    "block_type, heading_context, chunk_text, content_hash, embed_model, dim, vector, updated_at"
)
_META_COLUMNS = (
    "point_id, doc_id, block_id, chunk_index, source_type, doc_title, source_title, "
    "block_type, heading_context, chunk_text, content_hash, embed_model, updated_at"
)


class RAGClientSqlite(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._path = os.path.abspath(os.path.expanduser(
            self.get_config_val("PATH", default=self._default_path(), val_type="string")
        ))
        self._lock = ReadWriteLock()
        # (embed_model, dim) -> (records, normalised matrix)
        self._matrix_cache: dict[tuple[str | None, int], tuple[list[ChunkRecord], np.ndarray]] = {}
        self._booted = False

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Sqlite"

    def get_path(self) -> str:
        return self._path

    ################ CONFIG ##################
    def _default_path(self) -> str:
        return os.path.join(self._helper_config.get_data_dir(), INDEX_FILE_NAME)

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="PATH", val_type="string", default=self._default_path()),
        ]

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Open (or create) the index file.

        A file that is not a readable SQLite database is moved aside as
        `<name>.corrupt-<timestamp>` and an empty index is started.
        """
        await asyncio.to_thread(self._initialize)
        self._booted = True

    async def close(self) -> None:
        self._matrix_cache.clear()
        self._booted = False

    async def do_healthcheck(self) -> bool:
        try:
            await asyncio.to_thread(self._read, lambda conn: conn.execute("SELECT 1").fetchone())
        except IndexStorageError:
            return False
        return True

    def _initialize(self) -> None:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        try:
            self._create_schema()
        except sqlite3.OperationalError as exc:
            raise IndexStorageError(f"Cannot open the vector index: {exc}", details={"path": self._path}) from exc
        except sqlite3.DatabaseError as exc:
            corrupt_path = f"{self._path}.corrupt-{int(time.time())}"
            self.logging.warning(
                "Vector index '%s' is unreadable (%s). Moving it to '%s' and starting with an empty index.",
                self._path, exc, corrupt_path,
            )
            os.replace(self._path, corrupt_path)
            for suffix in ("-wal", "-shm"):
                if os.path.exists(self._path + suffix):
                    os.remove(self._path + suffix)
            self._create_schema()
        self.logging.info("Vector index ready at '%s'.", self._path)

    def _create_schema(self) -> None:
        conn = sqlite3.connect(self._path, timeout=self.timeout)
        try:
            result = conn.execute("PRAGMA quick_check").fetchone()
            if result is None or result[0] != "ok":
                raise sqlite3.DatabaseError(f"integrity check failed: {result[0] if result else 'no result'}")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    ##########################################
    ############### CONNECTION ###############
    ##########################################

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """One connection per operation, committed on success and rolled back on error."""
        if not self._booted:
            raise IndexStorageError("Vector index not booted. Call boot() first.")
        conn = sqlite3.connect(self._path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _read(self, fn):
        with self._lock.read():
            try:
                with self._connection() as conn:
                    return fn(conn)
            except sqlite3.Error as exc:
                raise IndexStorageError(f"Reading the vector index failed: {exc}", details={"path": self._path}) from exc

    def _write(self, fn, guard: UpsertGuard | None = None):
        with self._lock.write():
            if guard is not None and not guard():
                return None
            try:
                with self._connection() as conn:
                    result = fn(conn)
            except sqlite3.Error as exc:
                raise IndexStorageError(f"Writing the vector index failed: {exc}", details={"path": self._path}) from exc
            self._matrix_cache.clear()
            return result

    ##########################################
    ################ WRITES ##################
    ##########################################

    @staticmethod
    def _insert_chunks(conn: sqlite3.Connection, chunks: list[ChunkRecord]) -> int:
        now = time.time()
        rows = []
        for chunk in chunks:
            vector = np.asarray(chunk.vector, dtype=np.float32)
            if vector.ndim != 1 or vector.size == 0:
                raise IndexStorageError(f"Chunk {chunk.point_id} has no vector.")
            rows.append((
                chunk.point_id, chunk.doc_id, chunk.block_id, chunk.chunk_index, chunk.source_type,
                chunk.doc_title, chunk.source_title, chunk.block_type, chunk.heading_context,
                chunk.chunk_text, chunk.content_hash, chunk.embed_model, int(vector.size),
                vector.tobytes(), chunk.updated_at or now,
            ))
        conn.executemany(
            f"INSERT OR REPLACE INTO chunks ({_INSERT_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )
        return len(rows)

    async def do_upsert(self, chunks: list[ChunkRecord], guard: UpsertGuard | None = None) -> int:
        if not chunks:
            return 0
        written = await asyncio.to_thread(self._write, lambda conn: self._insert_chunks(conn, chunks), guard)
        return written or 0

    async def do_replace_chunks(
        self,
        doc_id: str,
        block_id: str,
        chunks: list[ChunkRecord],
        guard: UpsertGuard | None = None,
        content: ExternalBlockContent | None = None,
    ) -> int | None:
        def replace(conn: sqlite3.Connection) -> int:
            conn.execute("DELETE FROM chunks WHERE doc_id = ? AND block_id = ?", (doc_id, block_id))
            if content is not None:
                self._insert_content(conn, content)
            return self._insert_chunks(conn, chunks) if chunks else 0

        return await asyncio.to_thread(self._write, replace, guard)

    async def do_delete_by_document(self, doc_id: str) -> int:
        def delete(conn: sqlite3.Connection) -> int:
            removed = conn.execute("DELETE FROM chunks WHERE doc_id = ?", (doc_id,)).rowcount
            conn.execute("DELETE FROM external_content WHERE doc_id = ?", (doc_id,))
            return removed

        return await asyncio.to_thread(self._write, delete)

    async def do_delete_by_block(self, doc_id: str, block_id: str) -> int:
        if not block_id:
            raise ValueError("block_id must not be empty, use do_delete_document_chunks for document chunks.")

        def delete(conn: sqlite3.Connection) -> int:
            removed = conn.execute(
                "DELETE FROM chunks WHERE doc_id = ? AND block_id = ?", (doc_id, block_id)
            ).rowcount
            conn.execute("DELETE FROM external_content WHERE doc_id = ? AND block_id = ?", (doc_id, block_id))
            return removed

        return await asyncio.to_thread(self._write, delete)

    async def do_delete_document_chunks(self, doc_id: str) -> int:
        return await asyncio.to_thread(
            self._write,
            lambda conn: conn.execute("DELETE FROM chunks WHERE doc_id = ? AND block_id = ''", (doc_id,)).rowcount,
        )

    async def do_delete_orphan_blocks(self, doc_id: str, keep_block_ids: set[str]) -> int:
        keep = sorted(keep_block_ids)
        placeholders = ", ".join("?" for _ in keep)
        not_in = f" AND block_id NOT IN ({placeholders})" if keep else ""

        def delete(conn: sqlite3.Connection) -> int:
            removed = conn.execute(
                f"DELETE FROM chunks WHERE doc_id = ? AND block_id != ''{not_in}", (doc_id, *keep)
            ).rowcount
            conn.execute(f"DELETE FROM external_content WHERE doc_id = ?{not_in}", (doc_id, *keep))
            return removed

        return await asyncio.to_thread(self._write, delete)

    async def do_purge_other_models(self, embed_model: str) -> int:
        removed = await asyncio.to_thread(
            self._write,
            lambda conn: conn.execute("DELETE FROM chunks WHERE embed_model != ?", (embed_model,)).rowcount,
        )
        if removed:
            self.logging.info("Purged %d chunk(s) not embedded with '%s'.", removed, embed_model)
        return removed

    ##########################################
    ################ READS ###################
    ##########################################

    @staticmethod
    def _row_to_record(row: sqlite3.Row, with_vector: bool = False) -> ChunkRecord:
        data = {key: row[key] for key in row.keys() if key not in ("vector", "dim")}
        if with_vector:
            data["vector"] = np.frombuffer(row["vector"], dtype=np.float32).tolist()
        return ChunkRecord(**data)

    def _load_matrix(self, embed_model: str | None, dim: int) -> tuple[list[ChunkRecord], np.ndarray]:
        cache_key = (embed_model, dim)
        cached = self._matrix_cache.get(cache_key)
        if cached is not None:
            return cached

        def load(conn: sqlite3.Connection):
            sql = f"SELECT {_META_COLUMNS}, vector FROM chunks WHERE dim = ?"
            params: tuple = (dim,)
            if embed_model is not None:
                sql += " AND embed_model = ?"
                params = (dim, embed_model)
            return conn.execute(sql, params).fetchall()

        with self._connection() as conn:
            rows = load(conn)
        records = [self._row_to_record(row) for row in rows]
        if rows:
            matrix = np.vstack([np.frombuffer(row["vector"], dtype=np.float32) for row in rows])
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = matrix / norms
        else:
            matrix = np.zeros((0, dim), dtype=np.float32)
        self._matrix_cache[cache_key] = (records, matrix)
        return records, matrix

    def _query(self, vector: list[float], limit: int, embed_model: str | None) -> list[ScoredChunk]:
        query = np.asarray(vector, dtype=np.float32)
        with self._lock.read():
            try:
                records, matrix = self._load_matrix(embed_model, int(query.size))
            except sqlite3.Error as exc:
                raise IndexStorageError(f"Reading the vector index failed: {exc}") from exc
        if not records or limit <= 0:
            return []
        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            return []
        scores = matrix @ (query / norm)
        limit = min(limit, len(records))
        if limit < len(records):
            top = np.argpartition(-scores, limit - 1)[:limit]
            top = top[np.argsort(-scores[top], kind="stable")]
        else:
            top = np.argsort(-scores, kind="stable")
        return [ScoredChunk(chunk=records[i], score=float(scores[i])) for i in top]

    async def do_query(self, vector: list[float], limit: int, embed_model: str | None = None) -> list[ScoredChunk]:
        return await asyncio.to_thread(self._query, vector, limit, embed_model)

    async def do_stats(self) -> IndexStats:
        def stats(conn: sqlite3.Connection) -> IndexStats:
            result = IndexStats()
            result.docs = conn.execute("SELECT COUNT(DISTINCT doc_id) FROM chunks WHERE block_id = ''").fetchone()[0]
            result.chunks = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            rows = conn.execute(
                "SELECT source_type, COUNT(*) AS n FROM "
                "(SELECT DISTINCT doc_id, block_id, source_type FROM chunks WHERE block_id != '') "
                "GROUP BY source_type"
            ).fetchall()
            for row in rows:
                if row["source_type"] == "bookmark":
                    result.bookmarks = row["n"]
                elif row["source_type"] == "file":
                    result.files = row["n"]
                elif row["source_type"] == "folder":
                    result.folders = row["n"]
            return result

        return await asyncio.to_thread(self._read, stats)

    async def do_get_doc_ids(self) -> set[str]:
        rows = await asyncio.to_thread(self._read, lambda conn: conn.execute("SELECT DISTINCT doc_id FROM chunks").fetchall())
        return {row["doc_id"] for row in rows}

    async def do_get_chunk_vectors(self, doc_id: str, block_id: str) -> dict[str, list[float]]:
        rows = await asyncio.to_thread(
            self._read,
            lambda conn: conn.execute(
                "SELECT content_hash, vector FROM chunks WHERE doc_id = ? AND block_id = ? AND content_hash != ''",
                (doc_id, block_id),
            ).fetchall(),
        )
        return {row["content_hash"]: np.frombuffer(row["vector"], dtype=np.float32).tolist() for row in rows}

    async def do_get_source_vectors(self, embed_model: str | None = None) -> list[SourceVector]:
        def load(conn: sqlite3.Connection):
            sql = "SELECT doc_id, block_id, source_type, doc_title, source_title, dim, vector FROM chunks"
            params: tuple = ()
            if embed_model is not None:
                sql += " WHERE embed_model = ?"
                params = (embed_model,)
            return conn.execute(sql + " ORDER BY doc_id, block_id, chunk_index", params).fetchall()

        rows = await asyncio.to_thread(self._read, load)

        grouped: dict[tuple[str, str], list[sqlite3.Row]] = {}
        for row in rows:
            grouped.setdefault((row["doc_id"], row["block_id"]), []).append(row)

        sources: list[SourceVector] = []
        for (doc_id, block_id), group in grouped.items():
            dims = {row["dim"] for row in group}
            if len(dims) != 1:
                self.logging.warning("Skipping source %s/%s with mixed vector sizes %s.", doc_id, block_id, dims)
                continue
            vectors = np.vstack([np.frombuffer(row["vector"], dtype=np.float32) for row in group])
            first = group[0]
            sources.append(SourceVector(
                doc_id=doc_id,
                block_id=block_id,
                source_type=first["source_type"],
                title=(first["source_title"] or first["doc_title"]) if block_id else (first["doc_title"] or first["source_title"]),
                chunk_count=len(group),
                vector=vectors.mean(axis=0).tolist(),
            ))
        return sources

    ##########################################
    ########### EXTERNAL CONTENT #############
    ##########################################

    @staticmethod
    def _insert_content(conn: sqlite3.Connection, content: ExternalBlockContent) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO external_content "
            "(doc_id, block_id, block_type, locator, title, raw_content, error, extracted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                content.doc_id, content.block_id, content.block_type, content.locator, content.title,
                content.raw_content, content.error, content.extracted_at or time.time(),
            ),
        )

    async def do_save_external_content(self, content: ExternalBlockContent) -> None:
        await asyncio.to_thread(self._write, lambda conn: self._insert_content(conn, content))

    async def do_get_external_content(self, doc_id: str, block_id: str) -> ExternalBlockContent | None:
        row = await asyncio.to_thread(
            self._read,
            lambda conn: conn.execute(
                "SELECT * FROM external_content WHERE doc_id = ? AND block_id = ?", (doc_id, block_id)
            ).fetchone(),
        )
        if row is None:
            return None
        return ExternalBlockContent(**{key: row[key] for key in row.keys()})

    ##########################################
    ################ META ####################
    ##########################################

    async def do_set_meta(self, key: str, value: str) -> None:
        await asyncio.to_thread(
            self._write,
            lambda conn: conn.execute("INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", (key, value)),
        )

    async def do_get_meta(self, key: str) -> str | None:
        row = await asyncio.to_thread(
            self._read,
            lambda conn: conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone(),
        )
        return row["value"] if row else None
