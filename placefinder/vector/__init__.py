"""
Vector layer: text encoders, the shared encoder cache and record store types.
"""

# Package initialization for vector module
from .index import IRecordStore, InMemoryRecordStore, validate_entity
from .types import IndexedEntity, SearchHit, SearchQuery, fingerprint_text
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding, TextEncoder
from .encoder_cache import EncoderCache, get_encoder_cache, set_encoder_cache

__all__ = [
    'IRecordStore',
    'InMemoryRecordStore',
    'validate_entity',
    'IndexedEntity',
    'SearchHit',
    'SearchQuery',
    'fingerprint_text',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'TextEncoder',
    'EncoderCache',
    'get_encoder_cache',
    'set_encoder_cache',
]
