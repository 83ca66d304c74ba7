"""
Indexing pipeline: keeps every stored vector consistent with its text.

Each write encodes first and persists second. The persist step writes text,
vector, fingerprint and payload together, so a failure in either phase leaves
the previously stored state untouched.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import EntityNotFoundError, PlaceFinderError, StaleVectorError
from .schema import LocationPayload
from ..util.logging import logger
from ..vector.encoder_cache import EncoderCache, get_encoder_cache
from ..vector.index import IRecordStore
from ..vector.types import IndexedEntity, fingerprint_text


@dataclass
class RebuildReport:
    """Outcome of a reindex_stale() pass."""
    scanned: int = 0
    reindexed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class IndexingPipeline:
    """Encode-then-persist writes for indexed places."""

    def __init__(self, store: IRecordStore, encoder_cache: EncoderCache = None,
                 acquire_timeout: Optional[float] = None):
        self.store = store
        self.encoder_cache = encoder_cache or get_encoder_cache()
        self.acquire_timeout = acquire_timeout

    def _encode(self, text: str):
        encoder = self.encoder_cache.acquire(timeout=self.acquire_timeout)
        return encoder, encoder.encode(text)

    def _persist(self, operation: str, entity: IndexedEntity, started: float,
                 only_if_text: Optional[str] = None) -> IndexedEntity:
        try:
            stored = self.store.upsert(entity, only_if_text=only_if_text)
        except PlaceFinderError as e:
            logger.log_index_operation(operation, entity.id, {"error": str(e)}, status="failed")
            raise

        logger.log_index_operation(operation, stored.id, {
            "text": stored.text,
            "dimension": len(stored.vector),
            "model_version": stored.model_version,
            "duration_ms": round((time.time() - started) * 1000, 2),
        })
        return stored

    def index_for_create(self, text: str, payload: LocationPayload = None) -> IndexedEntity:
        """
        Encode text and insert a new entity.

        Raises:
            InvalidInputError: text is empty.
            EncodingFailure: the encoder could not be loaded or failed. Nothing was written.
            PersistenceError: the store write failed. Nothing was written.
        """
        started = time.time()
        encoder, vector = self._encode(text)

        entity = IndexedEntity(
            id=None,
            text=text,
            vector=vector,
            text_fingerprint=fingerprint_text(text),
            model_version=encoder.model_version,
            payload=payload or LocationPayload(),
        )
        return self._persist("create", entity, started)

    def index_for_update(self, entity_id: int, new_text: str, new_payload: LocationPayload = None) -> IndexedEntity:
        """
        Encode new_text and replace text, vector and payload of an existing entity in one write.

        When new_payload is None the stored payload is kept.

        Raises:
            EntityNotFoundError: no entity with this id. Nothing was written.
        """
        started = time.time()
        if new_payload is None:
            current = self.store.get(entity_id)
            if current is None:
                raise EntityNotFoundError(entity_id)
            new_payload = current.payload

        encoder, vector = self._encode(new_text)

        entity = IndexedEntity(
            id=entity_id,
            text=new_text,
            vector=vector,
            text_fingerprint=fingerprint_text(new_text),
            model_version=encoder.model_version,
            payload=new_payload,
        )
        return self._persist("update", entity, started)

    def reindex(self, entity_id: int) -> IndexedEntity:
        """Re-encode an entity's current text, keeping its payload.

        Raises StaleVectorError if the text changes between the read and the write;
        that concurrent update already stored a fresh vector.
        """
        started = time.time()
        current = self.store.get(entity_id)
        if current is None:
            raise EntityNotFoundError(entity_id)

        encoder, vector = self._encode(current.text)
        entity = IndexedEntity(
            id=entity_id,
            text=current.text,
            vector=vector,
            text_fingerprint=fingerprint_text(current.text),
            model_version=encoder.model_version,
            payload=current.payload,
        )
        return self._persist("reindex", entity, started, only_if_text=current.text)

    def reindex_stale(self, model_version: Optional[str] = None, force: bool = False) -> RebuildReport:
        """
        Re-encode entities whose vector no longer matches their text or the encoder.

        Args:
            model_version: Encoder version to compare against, defaults to the shared encoder's
            force: Re-encode every entity regardless of staleness
        """
        if model_version is None:
            model_version = self.encoder_cache.acquire(timeout=self.acquire_timeout).model_version

        report = RebuildReport()
        for entity in self.store.list():
            report.scanned += 1
            if not force and entity.is_fresh() and entity.model_version == model_version:
                continue

            try:
                self.reindex(entity.id)
                report.reindexed.append(entity.id)
            except (EntityNotFoundError, StaleVectorError):
                # Deleted or rewritten since the listing
                continue
            except PlaceFinderError as e:
                logger.warning(f"Reindex failed for entity {entity.id}: {e}")
                report.failed.append(entity.id)

        logger.log_rebuild(report.scanned, len(report.reindexed), report.failed)
        return report
