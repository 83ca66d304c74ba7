"""
Indexing pipeline tests: encode-then-persist writes stay consistent with their text.
"""

import sqlite3
import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from placefinder.core.dao import SQLiteRecordStore
from placefinder.core.errors import EncodingFailure, EntityNotFoundError, InvalidInputError, PersistenceError
from placefinder.core.indexing import IndexingPipeline, RebuildReport
from placefinder.core.schema import LocationPayload
from placefinder.core.search_service import SimilaritySearchEngine
from placefinder.vector.embeddings import DeterministicHashEmbedding, IEmbeddingProvider, TextEncoder
from placefinder.vector.encoder_cache import EncoderCache
from placefinder.vector.index import InMemoryRecordStore
from placefinder.vector.types import IndexedEntity, fingerprint_text

DIM = 384


def make_encoder(model_version="hash-test"):
    return TextEncoder(DeterministicHashEmbedding(dimension=DIM), dimension=DIM, model_version=model_version)


@pytest.fixture
def encoder_cache():
    cache = EncoderCache(loader=make_encoder)
    yield cache
    cache.shutdown()


@pytest.fixture
def store():
    return InMemoryRecordStore(dimension=DIM)


@pytest.fixture
def pipeline(store, encoder_cache):
    return IndexingPipeline(store, encoder_cache, acquire_timeout=10)


def test_create_stores_vector_of_text(pipeline, store):
    payload = LocationPayload(title="Fushimi Inari", category="shrine")

    entity = pipeline.index_for_create("Kyoto shrine famous for its red gates", payload)

    stored = store.get(entity.id)
    assert stored.text == "Kyoto shrine famous for its red gates"
    assert stored.payload == payload
    assert stored.model_version == "hash-test"
    assert stored.is_fresh()
    np.testing.assert_allclose(stored.vector, make_encoder().encode("Kyoto shrine famous for its red gates"), atol=1e-6)


def test_create_rejects_empty_text(pipeline, store):
    with pytest.raises(InvalidInputError):
        pipeline.index_for_create("   ")

    assert store.count() == 0


def test_create_with_failing_encoder_writes_nothing(store):
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed_texts.side_effect = RuntimeError("inference crashed")
    cache = EncoderCache(loader=lambda: TextEncoder(provider, dimension=DIM, model_version="broken"))
    pipeline = IndexingPipeline(store, cache, acquire_timeout=10)

    with pytest.raises(EncodingFailure):
        pipeline.index_for_create("quiet mountain shrine")

    assert store.count() == 0
    cache.shutdown()


def test_create_with_unloadable_encoder_writes_nothing(store):
    def loader():
        raise OSError("model files missing")

    cache = EncoderCache(loader=loader)
    pipeline = IndexingPipeline(store, cache, acquire_timeout=10)

    with pytest.raises(EncodingFailure):
        pipeline.index_for_create("quiet mountain shrine")

    assert store.count() == 0
    cache.shutdown()


def test_update_replaces_text_vector_and_payload_together(pipeline, store):
    created = pipeline.index_for_create("quiet mountain shrine", LocationPayload(title="Shrine"))

    updated = pipeline.index_for_update(created.id, "harbor fish market", LocationPayload(title="Market"))

    stored = store.get(created.id)
    assert updated.id == created.id
    assert stored.text == "harbor fish market"
    assert stored.payload.title == "Market"
    assert stored.is_fresh()
    np.testing.assert_allclose(stored.vector, make_encoder().encode("harbor fish market"), atol=1e-6)


def test_update_without_payload_keeps_existing_payload(pipeline, store):
    created = pipeline.index_for_create("quiet mountain shrine", LocationPayload(title="Shrine", category="shrine"))

    pipeline.index_for_update(created.id, "old forest shrine")

    assert store.get(created.id).payload == LocationPayload(title="Shrine", category="shrine")


def test_update_unknown_id_writes_nothing(pipeline, store):
    with pytest.raises(EntityNotFoundError):
        pipeline.index_for_update(99, "harbor fish market", LocationPayload())
    with pytest.raises(EntityNotFoundError):
        pipeline.index_for_update(99, "harbor fish market")

    assert store.count() == 0


def test_update_persistence_failure_keeps_previous_state(pipeline, store):
    created = pipeline.index_for_create("quiet mountain shrine")
    before = store.get(created.id)

    with patch.object(store, "upsert", side_effect=PersistenceError("disk I/O error")):
        with pytest.raises(PersistenceError):
            pipeline.index_for_update(created.id, "harbor fish market")

    after = store.get(created.id)
    assert after.text == "quiet mountain shrine"
    np.testing.assert_array_equal(after.vector, before.vector)


def test_update_encoding_failure_keeps_previous_state(store):
    cache = EncoderCache(loader=make_encoder)
    pipeline = IndexingPipeline(store, cache, acquire_timeout=10)
    created = pipeline.index_for_create("quiet mountain shrine")

    encoder = cache.acquire()
    with patch.object(encoder, "encode", side_effect=EncodingFailure("inference crashed")):
        with pytest.raises(EncodingFailure):
            pipeline.index_for_update(created.id, "harbor fish market")

    assert store.get(created.id).text == "quiet mountain shrine"
    cache.shutdown()


def test_reindex_keeps_text_and_payload(pipeline, store):
    created = pipeline.index_for_create("quiet mountain shrine", LocationPayload(title="Shrine"))

    reindexed = pipeline.reindex(created.id)

    assert reindexed.text == created.text
    assert reindexed.payload == created.payload
    np.testing.assert_allclose(reindexed.vector, created.vector, atol=1e-6)


def test_reindex_unknown_id(pipeline):
    with pytest.raises(EntityNotFoundError):
        pipeline.reindex(123)


def test_reindex_stale_reencodes_old_model_versions(pipeline, store):
    old = make_encoder(model_version="old-model")
    legacy = store.upsert(IndexedEntity(
        id=None,
        text="quiet mountain shrine",
        vector=old.encode("quiet mountain shrine"),
        text_fingerprint=fingerprint_text("quiet mountain shrine"),
        model_version="old-model",
    ))
    current = pipeline.index_for_create("busy shopping street")

    report = pipeline.reindex_stale()

    assert isinstance(report, RebuildReport)
    assert report.scanned == 2
    assert report.reindexed == [legacy.id]
    assert report.failed == []
    assert store.get(legacy.id).model_version == "hash-test"
    assert store.get(current.id).model_version == "hash-test"


def test_reindex_stale_force_reencodes_everything(pipeline):
    ids = [pipeline.index_for_create(text).id for text in ["red gates", "fish market", "bamboo grove"]]

    report = pipeline.reindex_stale(force=True)

    assert report.reindexed == ids


def test_reindex_stale_repairs_out_of_band_edit(tmp_path, encoder_cache):
    db_path = str(tmp_path / "places.db")
    store = SQLiteRecordStore(db_path, dimension=DIM)
    pipeline = IndexingPipeline(store, encoder_cache, acquire_timeout=10)
    engine = SimilaritySearchEngine(store, encoder_cache, acquire_timeout=10)
    entity = pipeline.index_for_create("quiet mountain shrine")

    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE locations SET description = ? WHERE id = ?", ("harbor fish market", entity.id))
    conn.commit()
    conn.close()

    # The edited row has no vector for its text and is invisible to search
    assert engine.search("harbor fish market", threshold=-1.0, limit=10) == []

    report = pipeline.reindex_stale()

    assert report.reindexed == [entity.id]
    hits = engine.search("harbor fish market", threshold=0.99, limit=10)
    assert [hit.id for hit in hits] == [entity.id]


def test_reindex_stale_reports_failures(store):
    created_with = make_encoder(model_version="old-model")
    for text in ["red gates", "fish market"]:
        store.upsert(IndexedEntity(
            id=None,
            text=text,
            vector=created_with.encode(text),
            text_fingerprint=fingerprint_text(text),
            model_version="old-model",
        ))
    cache = EncoderCache(loader=make_encoder)
    pipeline = IndexingPipeline(store, cache, acquire_timeout=10)

    with patch.object(store, "upsert", side_effect=PersistenceError("read-only database")):
        report = pipeline.reindex_stale()

    assert report.scanned == 2
    assert report.reindexed == []
    assert report.failed == [1, 2]
    cache.shutdown()


def test_concurrent_updates_never_expose_mixed_text_and_vector(pipeline, store, encoder_cache):
    text_x = "quiet mountain shrine with red gates"
    text_y = "busy harbor fish market at dawn"
    encoder = make_encoder()
    cross = float(np.dot(encoder.encode(text_x).astype(np.float64), encoder.encode(text_y).astype(np.float64)))
    entity = pipeline.index_for_create(text_x)
    engine = SimilaritySearchEngine(store, encoder_cache, acquire_timeout=10)
    errors = []

    def writer():
        try:
            for i in range(50):
                pipeline.index_for_update(entity.id, text_y if i % 2 == 0 else text_x)
        except Exception as e:  # surfaced below
            errors.append(e)

    def reader():
        try:
            for _ in range(50):
                stored = store.get(entity.id)
                assert stored.is_fresh()
                np.testing.assert_allclose(stored.vector, encoder.encode(stored.text), atol=1e-6)
                for hit in engine.search(text_x, threshold=-1.0, limit=5):
                    assert min(abs(hit.similarity - 1.0), abs(hit.similarity - cross)) < 1e-5
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer) for _ in range(2)] + [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.count() == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
