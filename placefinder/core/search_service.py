"""
Similarity search over the record store.
Cosine similarity of unit vectors, threshold-filtered and ranked in process.
"""

import heapq
import math
import numbers
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .config import SEARCH_BATCH_SIZE
from .errors import InvalidArgumentError, PlaceFinderError
from ..util.logging import logger
from ..vector.encoder_cache import EncoderCache, get_encoder_cache
from ..vector.index import IRecordStore
from ..vector.types import SearchHit, SearchQuery


def validate_search_params(threshold, limit) -> None:
    """Reject a threshold outside [-1, 1] or a non-positive limit."""
    if isinstance(limit, bool) or not isinstance(limit, numbers.Integral) or limit <= 0:
        raise InvalidArgumentError(f"limit must be a positive integer, got {limit!r}")

    if isinstance(threshold, bool) or not isinstance(threshold, numbers.Real):
        raise InvalidArgumentError(f"threshold must be a number, got {threshold!r}")
    if math.isnan(threshold) or not -1.0 <= threshold <= 1.0:
        raise InvalidArgumentError(f"threshold must be within [-1, 1], got {threshold!r}")


def _batches(pairs: Iterable[Tuple[int, np.ndarray]], batch_size: int):
    ids, vectors = [], []
    for entity_id, vector in pairs:
        ids.append(entity_id)
        vectors.append(vector)
        if len(ids) >= batch_size:
            yield ids, vectors
            ids, vectors = [], []
    if ids:
        yield ids, vectors


def cosine_similarities(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Row-wise dot products of unit vectors, clipped to [-1, 1].

    Each row is reduced on its own, so identical rows always score identically.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    query = np.asarray(query, dtype=np.float64).reshape(-1)
    return np.clip((matrix * query).sum(axis=1), -1.0, 1.0)


def rank_by_similarity(query_vector: np.ndarray, pairs: Iterable[Tuple[int, np.ndarray]],
                       threshold: float, limit: int, batch_size: int = SEARCH_BATCH_SIZE) -> List[SearchHit]:
    """
    Rank (id, vector) pairs against a unit query vector.

    Keeps similarity >= threshold, orders by similarity descending then id
    ascending, and returns at most limit hits.
    """
    query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
    candidates = []

    for ids, vectors in _batches(pairs, batch_size):
        similarities = cosine_similarities(np.vstack(vectors), query)
        for entity_id, similarity in zip(ids, similarities.tolist()):
            if similarity >= threshold:
                candidates.append((-similarity, entity_id))

        # Only the best `limit` candidates can survive
        if len(candidates) > 4 * limit:
            candidates = heapq.nsmallest(limit, candidates)

    return [SearchHit(id=entity_id, similarity=-neg) for neg, entity_id in heapq.nsmallest(limit, candidates)]


class SimilaritySearchEngine:
    """Answers similarity queries against an IRecordStore."""

    def __init__(self, store: IRecordStore, encoder_cache: EncoderCache = None,
                 acquire_timeout: Optional[float] = None, batch_size: int = SEARCH_BATCH_SIZE):
        self.store = store
        self.encoder_cache = encoder_cache or get_encoder_cache()
        self.acquire_timeout = acquire_timeout
        self.batch_size = batch_size

    def search(self, query_text: str, threshold: float, limit: int) -> List[SearchHit]:
        """
        Rank stored entities by similarity to query_text.

        Args:
            query_text: Free-text query
            threshold: Minimum similarity to keep, inclusive, within [-1, 1]
            limit: Maximum number of hits, positive

        Returns:
            Hits ordered by similarity descending, ties by ascending id

        Raises:
            InvalidArgumentError: threshold or limit out of range
            InvalidInputError: query_text is empty
            EncodingFailure: the query could not be encoded
        """
        validate_search_params(threshold, limit)
        query = SearchQuery(query_text, float(threshold), int(limit))
        started = time.time()

        try:
            encoder = self.encoder_cache.acquire(timeout=self.acquire_timeout)
            query_vector = encoder.encode(query.query_text)
            hits = rank_by_similarity(query_vector, self.store.scan_all(), query.threshold, query.limit,
                                      self.batch_size)
        except PlaceFinderError:
            logger.log_search(query_text or "", threshold, limit, 0,
                              (time.time() - started) * 1000, status="failed")
            raise

        logger.log_search(query_text, threshold, limit, len(hits), (time.time() - started) * 1000)
        return hits


def semantic_search(engine: SimilaritySearchEngine, query: str, threshold: float, limit: int) -> List[Dict[str, Any]]:
    """
    Search and join each hit back to its stored record.

    Records deleted between the scan and the join are skipped.

    Returns:
        List of dicts with the record fields plus 'similarity'
    """
    results = []
    for hit in engine.search(query, threshold, limit):
        entity = engine.store.get(hit.id)
        if entity is None:
            continue

        result = entity.payload.to_dict()
        result.update({
            "id": entity.id,
            "description": entity.text,
            "similarity": hit.similarity,
        })
        results.append(result)

    return results
