"""Namespaced vector index on sqlite-vec.

One vec0 virtual table per embedding model, created once with a fixed
dimensionality and cosine distance and partitioned by namespace. Payloads
live in the ``vector_records`` table; the vec0 rowid equals the payload row id.
A query only ever scans the partition of its own namespace.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Sequence

from loguru import logger

from quarry.db.connection import LockedConnection
from quarry.db.models import RecordPayload, VectorRecord
from quarry.errors import VectorIndexError

_METRIC = "cosine"


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "huggingface/BAAI/bge-large-en-v1.5" -> "huggingface_baai_bge_large_en_v1_5"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_records_{model_slug}"


def ensure_vec_table(
    conn: sqlite3.Connection, model: str, dimensions: int
) -> str:
    """Create the vec table for *model* if it doesn't already exist.

    The dimensionality is recorded in ``vec_index_meta`` on creation; opening
    an existing table with a different dimensionality is refused.

    Returns:
        The table name (vec_records_{model_slug}).

    Raises:
        ValueError: If *dimensions* < 1.
        VectorIndexError: If the table exists with a different dimensionality.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_to_slug(model))
    meta = conn.execute(
        "SELECT dimensions FROM vec_index_meta WHERE table_name = ?", (table,)
    ).fetchone()

    if meta is not None:
        if meta["dimensions"] != dimensions:
            raise VectorIndexError(
                f"Vector index '{table}' was created with {meta['dimensions']} "
                f"dimensions; configured embedding produces {dimensions}."
            )
        return table

    conn.execute(
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} USING vec0("
        f"namespace text partition key, "
        f"embedding float[{dimensions}] distance_metric={_METRIC})"
    )
    conn.execute(
        "INSERT INTO vec_index_meta (table_name, model, dimensions, metric) VALUES (?, ?, ?, ?)",
        (table, model, dimensions, _METRIC),
    )
    conn.commit()
    logger.info(f"Created vector index {table} ({dimensions} dims, {_METRIC})")
    return table


class VectorIndex:
    """Namespaced nearest-neighbour store.

    Every read and every transaction holds ``conn.lock``, so an upsert is
    committed whole even when other threads write through the same connection.

    Args:
        conn: Open connection from Database.connect(), schema initialised.
        model: Embedding model the vectors come from (selects the vec table).
        dimensions: Vector size agreed with the embedder.
    """

    def __init__(self, conn: LockedConnection, model: str, dimensions: int) -> None:
        self._conn = conn
        self.model = model
        self.dimensions = dimensions
        self._table: str | None = None

    def ensure(self) -> str:
        """Create the backing table once; later calls are no-ops."""
        with self._conn.lock:
            if self._table is None:
                try:
                    self._table = ensure_vec_table(self._conn, self.model, self.dimensions)
                except sqlite3.Error as exc:
                    raise VectorIndexError(f"Could not create vector index: {exc}") from exc
            return self._table

    def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None:
        """Insert or overwrite *records* under *namespace* in one transaction.

        Re-upserting an existing record id replaces its vector and payload.

        Raises:
            VectorIndexError: On a dimensionality mismatch or store failure;
                nothing from this call is committed in that case.
        """
        for record in records:
            if len(record.vector) != self.dimensions:
                raise VectorIndexError(
                    f"Record '{record.id}' has {len(record.vector)} dimensions; "
                    f"index expects {self.dimensions}."
                )
        if not records:
            return

        try:
            with self._conn.lock:
                table = self.ensure()
                with self._conn:
                    for record in records:
                        self._upsert_one(table, namespace, record)
        except sqlite3.Error as exc:
            raise VectorIndexError(
                f"Upsert of {len(records)} records into '{namespace}' failed: {exc}"
            ) from exc
        logger.debug(f"Upserted {len(records)} records into namespace {namespace}")

    def _upsert_one(self, table: str, namespace: str, record: VectorRecord) -> None:
        existing = self._conn.execute(
            "SELECT id FROM vector_records WHERE namespace = ? AND record_id = ?",
            (namespace, record.id),
        ).fetchone()

        if existing is not None:
            row_id = existing["id"]
            self._conn.execute(
                "UPDATE vector_records SET content = ?, source_index = ? WHERE id = ?",
                (record.payload.content, record.payload.source_index, row_id),
            )
            self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (row_id,))
        else:
            cur = self._conn.execute(
                """
                INSERT INTO vector_records (namespace, record_id, content, source_index)
                VALUES (?, ?, ?, ?)
                """,
                (namespace, record.id, record.payload.content, record.payload.source_index),
            )
            row_id = cur.lastrowid

        self._conn.execute(
            f"INSERT INTO {table}(rowid, namespace, embedding) VALUES (?, ?, ?)",
            (row_id, namespace, json.dumps(record.vector)),
        )

    def query(
        self, namespace: str, vector: Sequence[float], top_k: int
    ) -> list[tuple[RecordPayload, float]]:
        """Return at most *top_k* payloads from *namespace*, most similar first.

        Score is cosine similarity (1 − cosine distance).

        Raises:
            VectorIndexError: On a dimensionality mismatch or store failure.
        """
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        if len(vector) != self.dimensions:
            raise VectorIndexError(
                f"Query vector has {len(vector)} dimensions; index expects {self.dimensions}."
            )

        try:
            with self._conn.lock:
                table = self.ensure()
                hits = self._conn.execute(
                    f"""
                    SELECT rowid, distance FROM {table}
                    WHERE embedding MATCH ? AND k = ? AND namespace = ?
                    ORDER BY distance
                    """,
                    (json.dumps(list(vector)), top_k, namespace),
                ).fetchall()

                results: list[tuple[RecordPayload, float]] = []
                for hit in hits:
                    row = self._conn.execute(
                        "SELECT content, source_index FROM vector_records WHERE id = ?",
                        (hit["rowid"],),
                    ).fetchone()
                    if row is not None:
                        payload = RecordPayload(
                            content=row["content"], source_index=row["source_index"]
                        )
                        results.append((payload, 1.0 - hit["distance"]))
        except sqlite3.Error as exc:
            raise VectorIndexError(f"Query against '{namespace}' failed: {exc}") from exc
        return results

    def count(self, namespace: str) -> int:
        """Return the number of records stored under *namespace*."""
        with self._conn.lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM vector_records WHERE namespace = ?", (namespace,)
            ).fetchone()[0]

    def delete_namespace(self, namespace: str) -> int:
        """Delete every record of *namespace* from all vec tables.

        Returns the number of payload rows deleted.
        """
        try:
            with self._conn.lock:
                vec_tables = [
                    r[0]
                    for r in self._conn.execute(
                        "SELECT table_name FROM vec_index_meta"
                    ).fetchall()
                ]
                row_ids = [
                    r[0]
                    for r in self._conn.execute(
                        "SELECT id FROM vector_records WHERE namespace = ?", (namespace,)
                    ).fetchall()
                ]
                with self._conn:
                    for table in vec_tables:
                        for row_id in row_ids:
                            self._conn.execute(
                                f"DELETE FROM [{table}] WHERE rowid = ?",  # noqa: S608
                                (row_id,),
                            )
                    cur = self._conn.execute(
                        "DELETE FROM vector_records WHERE namespace = ?", (namespace,)
                    )
        except sqlite3.Error as exc:
            raise VectorIndexError(f"Delete of namespace '{namespace}' failed: {exc}") from exc
        return cur.rowcount
