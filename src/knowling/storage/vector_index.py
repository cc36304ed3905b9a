"""Vector index over note embeddings, backed by sqlite-vec.

Each logical embedding record is ``(id, text, vector, created, modified)``.
The vector lives in a ``vec0`` virtual table keyed by record id; the rest
of the record lives in a regular table with the same key.
"""

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

import numpy as np
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from knowling.config import config
from knowling.exceptions import (
    EmbeddingDimensionError,
    ErrorCode,
    KnowlingError,
    VectorIndexError,
)
from knowling.models.db_models import (
    VECTOR_RECORDS_TABLE,
    VECTOR_TABLE,
    init_sqlite_vec,
    init_vector_db,
)
from knowling.services.embedding_service import EmbeddingService
from knowling.services.embedding_types import Embeddable

logger = logging.getLogger(__name__)

_DECLARED_DIM = re.compile(r"float\[(\d+)\]")

# sqlite-vec rejects KNN queries with k above this
MAX_KNN_K = 4096


@dataclass(frozen=True)
class VectorHit:
    """One nearest-neighbor result. Lower distance means more similar."""

    id: str
    text: str
    distance: float


@dataclass(frozen=True)
class VectorRecord:
    """A stored embedding record."""

    id: str
    text: str
    vector: np.ndarray
    created_at: int
    modified_at: int


@contextmanager
def _vector_errors(operation: str) -> Iterator[None]:
    """Re-raise engine failures as VectorIndexError."""
    try:
        yield
    except KnowlingError:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Vector store failure during {operation}: {e}")
        raise VectorIndexError(
            f"Vector store failed during {operation}",
            operation=operation,
            original_error=e,
        ) from e


class VectorIndex:
    """Embedding-side mirror of the notebook.

    Owns embedding requests and vector-store CRUD plus nearest-neighbor
    queries. Distances are squared Euclidean: 0 for identical vectors,
    unbounded above.

    Args:
        embedding_service: Service that turns text into vectors.
        dimension: Length every vector must have. Defaults to
            config.embedding_dim.
        engine: Pre-configured engine that loads sqlite-vec on connect.
        db_url: SQLite URL used when no engine is given.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        dimension: Optional[int] = None,
        engine: Optional[Engine] = None,
        db_url: Optional[str] = None,
    ):
        self._embedding_service = embedding_service
        self.dimension = dimension or config.embedding_dim

        try:
            if engine is not None:
                self.engine = engine
                init_sqlite_vec(self.engine, self.dimension)
            else:
                self.engine = init_vector_db(self.dimension, db_url)
        except (ImportError, AttributeError, sqlite3.Error, SQLAlchemyError) as e:
            # AttributeError: interpreter built without extension loading
            raise VectorIndexError(
                f"Could not open the sqlite-vec store: {e}",
                operation="open",
                code=ErrorCode.VECTOR_EXTENSION_UNAVAILABLE,
                original_error=e,
            ) from e

        self._check_stored_dimension()

    def _check_stored_dimension(self) -> None:
        """Refuse to open a store built for another embedding dimension."""
        with _vector_errors("open"):
            with self.engine.connect() as conn:
                table_sql = conn.execute(
                    text("SELECT sql FROM sqlite_master WHERE name = :name"),
                    {"name": VECTOR_TABLE},
                ).scalar()
                row = conn.execute(
                    text(
                        f"SELECT dimension FROM {VECTOR_RECORDS_TABLE} "
                        "WHERE dimension != :dim LIMIT 1"
                    ),
                    {"dim": self.dimension},
                ).fetchone()

        stored = None
        match = _DECLARED_DIM.search(table_sql or "")
        if match and int(match.group(1)) != self.dimension:
            stored = int(match.group(1))
        elif row is not None:
            stored = row[0]
        if stored is not None:
            logger.critical(
                f"Vector store dimension {stored} != configured {self.dimension}"
            )
            raise EmbeddingDimensionError(
                self.dimension,
                stored,
                message=(
                    f"Vector store holds {stored}-dimensional vectors but "
                    f"the configured dimension is {self.dimension}"
                ),
            )

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed texts and check every vector has the configured dimension.

        Raises:
            EmbeddingError: If the embedding model fails.
            EmbeddingDimensionError: If any vector has the wrong length.
        """
        vectors = self._embedding_service.embed_batch(list(texts))
        checked = []
        for vector in vectors:
            arr = np.asarray(vector, dtype=np.float32)
            if arr.ndim != 1 or arr.shape[0] != self.dimension:
                actual = arr.shape[-1] if arr.ndim else 0
                logger.critical(
                    f"Embedding model produced a {actual}-dimensional vector, "
                    f"store expects {self.dimension}"
                )
                raise EmbeddingDimensionError(self.dimension, actual)
            checked.append(arr)
        return checked

    def upsert(self, records: Sequence[Embeddable]) -> int:
        """Embed and store records, replacing any with the same id.

        The engine has no native update, so each record is deleted and
        reinserted. All records are written in one transaction.

        Returns:
            Number of records written.
        """
        if not records:
            return 0
        vectors = self.embed([r.text for r in records])

        with _vector_errors("upsert"):
            with self.engine.connect() as conn:
                for record, vector in zip(records, vectors):
                    self._delete_record_conn(conn, record.id)
                    conn.execute(
                        text(
                            f"INSERT INTO {VECTOR_TABLE}(record_id, embedding) "
                            "VALUES (:rid, :emb)"
                        ),
                        {"rid": record.id, "emb": vector.tobytes()},
                    )
                    conn.execute(
                        text(
                            f"INSERT INTO {VECTOR_RECORDS_TABLE}"
                            "(id, text, dimension, created, modified) "
                            "VALUES (:rid, :text, :dim, :created, :modified)"
                        ),
                        {
                            "rid": record.id,
                            "text": record.text,
                            "dim": self.dimension,
                            "created": record.created_at,
                            "modified": record.modified_at,
                        },
                    )
                conn.commit()

        logger.debug(f"Upserted {len(records)} embedding records")
        return len(records)

    @staticmethod
    def _delete_record_conn(conn, record_id: str) -> int:
        """Delete one record within an existing connection."""
        conn.execute(
            text(f"DELETE FROM {VECTOR_TABLE} WHERE record_id = :rid"),
            {"rid": record_id},
        )
        result = conn.execute(
            text(f"DELETE FROM {VECTOR_RECORDS_TABLE} WHERE id = :rid"),
            {"rid": record_id},
        )
        return result.rowcount

    def delete(self, ids: Sequence[str]) -> int:
        """Delete records by id. Absent ids are ignored.

        Returns:
            Number of records that existed and were deleted.
        """
        if not ids:
            return 0
        deleted = 0
        with _vector_errors("delete"):
            with self.engine.connect() as conn:
                for record_id in ids:
                    deleted += self._delete_record_conn(conn, record_id)
                conn.commit()
        logger.debug(f"Deleted {deleted} embedding records")
        return deleted

    def clear(self) -> int:
        """Delete every record.

        Returns:
            Number of records deleted.
        """
        with _vector_errors("clear"):
            with self.engine.connect() as conn:
                count = conn.execute(
                    text(f"SELECT count(*) FROM {VECTOR_RECORDS_TABLE}")
                ).scalar()
                conn.execute(text(f"DELETE FROM {VECTOR_TABLE}"))
                conn.execute(text(f"DELETE FROM {VECTOR_RECORDS_TABLE}"))
                conn.commit()
        logger.info(f"Cleared {count} embedding records")
        return count or 0

    def count(self) -> int:
        """Number of stored records."""
        with _vector_errors("count"):
            with self.engine.connect() as conn:
                return (
                    conn.execute(
                        text(f"SELECT count(*) FROM {VECTOR_RECORDS_TABLE}")
                    ).scalar()
                    or 0
                )

    def ids(self) -> List[str]:
        """Ids of every stored record."""
        with _vector_errors("ids"):
            with self.engine.connect() as conn:
                rows = conn.execute(
                    text(f"SELECT id FROM {VECTOR_RECORDS_TABLE} ORDER BY id")
                ).fetchall()
        return [row[0] for row in rows]

    def get(self, record_id: str) -> Optional[VectorRecord]:
        """Fetch one stored record with its vector, or None."""
        with _vector_errors("get"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    text(
                        f"SELECT r.id, r.text, v.embedding, r.created, r.modified "
                        f"FROM {VECTOR_RECORDS_TABLE} r "
                        f"JOIN {VECTOR_TABLE} v ON v.record_id = r.id "
                        "WHERE r.id = :rid"
                    ),
                    {"rid": record_id},
                ).fetchone()
        if row is None:
            return None
        return VectorRecord(
            id=row[0],
            text=row[1],
            vector=np.frombuffer(row[2], dtype=np.float32).copy(),
            created_at=row[3],
            modified_at=row[4],
        )

    def nearest(
        self,
        query_text: str,
        exclude_id: Optional[str] = None,
        limit: int = 3,
    ) -> List[VectorHit]:
        """Find the stored records closest to ``query_text``.

        The vec0 KNN query cannot filter on record id, so when
        ``exclude_id`` is given one extra neighbor is fetched and the
        excluded record is dropped here. At most ``MAX_KNN_K`` neighbors
        are fetched per query.

        Returns:
            Up to ``limit`` hits ordered by ascending distance. An empty
            store gives an empty list.
        """
        if limit <= 0:
            return []
        query_vector = self.embed([query_text])[0]
        fetch_limit = limit + 1 if exclude_id is not None else limit
        if fetch_limit > MAX_KNN_K:
            logger.debug(f"Clamping KNN k from {fetch_limit} to {MAX_KNN_K}")
            fetch_limit = MAX_KNN_K

        with _vector_errors("nearest"):
            with self.engine.connect() as conn:
                rows = conn.execute(
                    text(
                        "SELECT record_id, distance "
                        f"FROM {VECTOR_TABLE} "
                        "WHERE embedding MATCH :qvec "
                        "AND k = :k "
                        "ORDER BY distance"
                    ),
                    {"qvec": query_vector.tobytes(), "k": fetch_limit},
                ).fetchall()
                rows = [row for row in rows if row[0] != exclude_id][:limit]
                texts = {}
                if rows:
                    stmt = text(
                        f"SELECT id, text FROM {VECTOR_RECORDS_TABLE} "
                        "WHERE id IN :ids"
                    ).bindparams(bindparam("ids", expanding=True))
                    texts = dict(
                        conn.execute(stmt, {"ids": [row[0] for row in rows]}).fetchall()
                    )

        # vec0 reports Euclidean distance; callers get it squared
        return [
            VectorHit(
                id=record_id,
                text=texts.get(record_id, ""),
                distance=float(l2_distance) ** 2,
            )
            for record_id, l2_distance in rows
        ]

    def close(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
