"""
SQLite-backed record store.
Text, vector, fingerprint and payload of a place live in one row and are
written by a single statement, so readers never see a half-applied update.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

import numpy as np

from .db import get_db, init_db, transaction, health_check
from .errors import DimensionMismatchError, EntityNotFoundError, PersistenceError, StaleVectorError
from .schema import LocationPayload, encode_list, decode_list
from ..util.logging import logger
from ..vector.index import IRecordStore, validate_entity
from ..vector.types import IndexedEntity, as_vector, fingerprint_text

_COLUMNS = (
    "id, title, category, description, latitude, longitude, image_urls, visit_dates, "
    "embedding, embedding_dim, text_fingerprint, model_version, created_at, updated_at"
)


def _sql_fingerprint(text):
    return fingerprint_text(text) if text is not None else None


class SQLiteRecordStore(IRecordStore):
    """Durable IRecordStore over a single SQLite table."""

    def __init__(self, db_path: str, dimension: int = 384, timeout: float = None, scan_batch_size: int = 512):
        self.db_path = db_path
        self.dimension = dimension
        self.timeout = timeout
        self.scan_batch_size = scan_batch_size
        try:
            init_db(db_path)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Failed to initialize database at {db_path}: {e}") from e

    @contextmanager
    def _connect(self):
        try:
            with get_db(self.db_path, self.timeout) as conn:
                conn.create_function("fingerprint", 1, _sql_fingerprint, deterministic=True)
                yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error: {e}") from e

    def _row_to_entity(self, row) -> IndexedEntity:
        (entity_id, title, category, description, latitude, longitude, image_urls, visit_dates,
         embedding, embedding_dim, text_fingerprint, model_version, created_at, updated_at) = row

        vector = np.frombuffer(embedding, dtype=np.float32)
        if len(vector) != embedding_dim:
            raise DimensionMismatchError(embedding_dim, len(vector))

        return IndexedEntity(
            id=entity_id,
            text=description,
            vector=as_vector(vector),
            text_fingerprint=text_fingerprint,
            model_version=model_version,
            payload=LocationPayload(
                title=title,
                category=category,
                latitude=latitude,
                longitude=longitude,
                image_urls=decode_list(image_urls),
                visit_dates=decode_list(visit_dates),
            ),
            created_at=datetime.fromisoformat(created_at),
            updated_at=datetime.fromisoformat(updated_at),
        )

    def upsert(self, entity: IndexedEntity, only_if_text: Optional[str] = None) -> IndexedEntity:
        """Insert a new row (id is None) or replace text, vector and payload of an existing one."""
        vector = validate_entity(entity, self.dimension)
        payload = entity.payload
        now = datetime.now().isoformat()
        values = (
            payload.title, payload.category, entity.text, payload.latitude, payload.longitude,
            encode_list(payload.image_urls), encode_list(payload.visit_dates),
            vector.tobytes(), len(vector), entity.text_fingerprint, entity.model_version,
        )

        with self._connect() as conn:
            with transaction(conn) as cursor:
                if entity.id is None:
                    cursor.execute(
                        "INSERT INTO locations (title, category, description, latitude, longitude, "
                        "image_urls, visit_dates, embedding, embedding_dim, text_fingerprint, model_version, "
                        "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        values + (now, now)
                    )
                    entity_id = cursor.lastrowid
                else:
                    entity_id = entity.id
                    cursor.execute("SELECT description FROM locations WHERE id = ?", (entity_id,))
                    current = cursor.fetchone()
                    if current is None:
                        raise EntityNotFoundError(entity_id)
                    if only_if_text is not None and current[0] != only_if_text:
                        raise StaleVectorError(f"Text of entity {entity_id} changed before the write")
                    cursor.execute(
                        "UPDATE locations SET title = ?, category = ?, description = ?, latitude = ?, "
                        "longitude = ?, image_urls = ?, visit_dates = ?, embedding = ?, embedding_dim = ?, "
                        "text_fingerprint = ?, model_version = ?, updated_at = ? WHERE id = ?",
                        values + (now, entity_id)
                    )

                cursor.execute(f"SELECT {_COLUMNS} FROM locations WHERE id = ?", (entity_id,))
                row = cursor.fetchone()

        return self._row_to_entity(row)

    def get(self, entity_id: int) -> Optional[IndexedEntity]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM locations WHERE id = ?", (entity_id,))
            row = cursor.fetchone()

        if row:
            return self._row_to_entity(row)
        return None

    def delete(self, entity_id: int) -> bool:
        with self._connect() as conn:
            with transaction(conn) as cursor:
                cursor.execute("DELETE FROM locations WHERE id = ?", (entity_id,))
                deleted = cursor.rowcount > 0

        logger.log_index_operation("delete", entity_id, status="success" if deleted else "not_found")
        return deleted

    def list(self, category: Optional[str] = None) -> List[IndexedEntity]:
        with self._connect() as conn:
            cursor = conn.cursor()
            if category and category != "all":
                cursor.execute(f"SELECT {_COLUMNS} FROM locations WHERE category = ? ORDER BY id", (category,))
            else:
                cursor.execute(f"SELECT {_COLUMNS} FROM locations ORDER BY id")
            rows = cursor.fetchall()

        return [self._row_to_entity(row) for row in rows]

    def scan_all(self) -> Iterator[Tuple[int, np.ndarray]]:
        """Stream (id, vector) pairs from a single read snapshot.

        Rows whose description was edited without re-encoding are skipped.
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, embedding FROM locations "
                "WHERE text_fingerprint = fingerprint(description) ORDER BY id"
            )
            while True:
                rows = cursor.fetchmany(self.scan_batch_size)
                if not rows:
                    break
                for entity_id, embedding in rows:
                    vector = np.frombuffer(embedding, dtype=np.float32)
                    if len(vector) != self.dimension:
                        raise DimensionMismatchError(self.dimension, len(vector))
                    yield entity_id, vector

    def count(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM locations")
            return cursor.fetchone()[0]

    def health_check(self) -> bool:
        return health_check(self.db_path)
