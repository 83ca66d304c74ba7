"""
Vector record store interface and the in-memory backend.
The SQLite backend lives in core/dao.py.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from itertools import count
from typing import Iterator, List, Optional, Tuple
import threading

import numpy as np

from ..core.config import NORM_TOLERANCE
from ..core.errors import (
    DimensionMismatchError,
    EntityNotFoundError,
    InvalidInputError,
    StaleVectorError,
)
from .types import IndexedEntity, as_vector


def validate_entity(entity: IndexedEntity, dimension: int) -> np.ndarray:
    """Check the dimension, norm and freshness invariants. Returns the float32 vector."""
    if not entity.text or not entity.text.strip():
        raise InvalidInputError("Indexed entities must have non-empty text")

    vector = np.asarray(entity.vector, dtype=np.float32).reshape(-1)
    if len(vector) != dimension:
        raise DimensionMismatchError(dimension, len(vector))

    norm = float(np.linalg.norm(vector.astype(np.float64)))
    if abs(norm - 1.0) > NORM_TOLERANCE:
        raise InvalidInputError(f"Vector is not unit length (norm={norm:.6f})")

    if not entity.is_fresh():
        raise StaleVectorError(f"Vector fingerprint does not match text for entity {entity.id}")

    return vector


class IRecordStore(ABC):
    """Abstract interface for indexed entity storage."""

    dimension: int

    @abstractmethod
    def upsert(self, entity: IndexedEntity, only_if_text: Optional[str] = None) -> IndexedEntity:
        """Insert (id is None) or replace an entity. Returns the stored entity.

        When only_if_text is given, a replace goes through only if the stored
        text still equals it; otherwise StaleVectorError is raised.
        """
        pass

    @abstractmethod
    def get(self, entity_id: int) -> Optional[IndexedEntity]:
        """Get an entity by id, or None."""
        pass

    @abstractmethod
    def delete(self, entity_id: int) -> bool:
        """Delete an entity. Returns False if it did not exist."""
        pass

    @abstractmethod
    def list(self, category: Optional[str] = None) -> List[IndexedEntity]:
        """List entities in id order, optionally filtered by category."""
        pass

    @abstractmethod
    def scan_all(self) -> Iterator[Tuple[int, np.ndarray]]:
        """Lazily yield (id, vector) for every entity. Each call reads current state."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    def health_check(self) -> bool:
        return True


class InMemoryRecordStore(IRecordStore):
    """Simple in-memory implementation of IRecordStore.

    Entities are immutable, so a replace swaps one reference under the lock
    and readers see either the old entity or the new one, never a mix.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self._entities = {}  # entity_id -> IndexedEntity
        self._ids = count(1)
        self._lock = threading.Lock()

    def upsert(self, entity: IndexedEntity, only_if_text: Optional[str] = None) -> IndexedEntity:
        vector = validate_entity(entity, self.dimension)
        now = datetime.now()

        with self._lock:
            if entity.id is None:
                stored = IndexedEntity(
                    id=next(self._ids),
                    text=entity.text,
                    vector=as_vector(vector),
                    text_fingerprint=entity.text_fingerprint,
                    model_version=entity.model_version,
                    payload=entity.payload,
                    created_at=now,
                    updated_at=now,
                )
            else:
                existing = self._entities.get(entity.id)
                if existing is None:
                    raise EntityNotFoundError(entity.id)
                if only_if_text is not None and existing.text != only_if_text:
                    raise StaleVectorError(f"Text of entity {entity.id} changed before the write")
                stored = IndexedEntity(
                    id=entity.id,
                    text=entity.text,
                    vector=as_vector(vector),
                    text_fingerprint=entity.text_fingerprint,
                    model_version=entity.model_version,
                    payload=entity.payload,
                    created_at=existing.created_at,
                    updated_at=now,
                )
            self._entities[stored.id] = stored

        return stored

    def get(self, entity_id: int) -> Optional[IndexedEntity]:
        return self._entities.get(entity_id)

    def delete(self, entity_id: int) -> bool:
        with self._lock:
            return self._entities.pop(entity_id, None) is not None

    def list(self, category: Optional[str] = None) -> List[IndexedEntity]:
        with self._lock:
            entities = sorted(self._entities.values(), key=lambda e: e.id)
        if category and category != "all":
            entities = [e for e in entities if e.payload.category == category]
        return entities

    def scan_all(self) -> Iterator[Tuple[int, np.ndarray]]:
        with self._lock:
            snapshot = list(self._entities.values())
        for entity in snapshot:
            yield entity.id, entity.vector

    def count(self) -> int:
        return len(self._entities)

