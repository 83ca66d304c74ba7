"""
Environment-driven configuration for the place index.
Module constants hold the values read at import; the getter functions re-read
the environment so tests and scripts can override settings at runtime.
"""

import os
from pathlib import Path

import dotenv

# Pick up a local .env before reading settings; real environment variables win
dotenv.load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/places.db")
DB_TIMEOUT_SEC = float(os.getenv("DB_TIMEOUT_SEC", "30"))

# Debug flag is also exposed as a function to be dynamic
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Record store backend
RECORD_STORE = os.getenv("RECORD_STORE", "sqlite")  # sqlite|memory

# Text encoder configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "sentence_transformers")  # sentence_transformers|hash
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))
EMBED_DEVICE = os.getenv("EMBED_DEVICE")  # None lets sentence-transformers pick
EMBED_POOLING = "mean"
EMBED_NORMALIZATION = "l2"
ENCODER_LOAD_TIMEOUT_SEC = float(os.getenv("ENCODER_LOAD_TIMEOUT_SEC", "300"))
ENCODER_SERIALIZE_INFERENCE = os.getenv("ENCODER_SERIALIZE_INFERENCE", "true").lower() == "true"

# Search defaults
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.5"))
MATCH_COUNT = int(os.getenv("MATCH_COUNT", "10"))
SEARCH_BATCH_SIZE = int(os.getenv("SEARCH_BATCH_SIZE", "1024"))

# Tolerance for the unit-norm invariant on stored vectors
NORM_TOLERANCE = 1e-5

# Version string
VERSION = "1.0.0"


def get_db_path() -> str:
    """Current database path."""
    return os.getenv("DB_PATH", DB_PATH)


def get_db_timeout() -> float:
    """SQLite busy timeout in seconds."""
    return float(os.getenv("DB_TIMEOUT_SEC", str(DB_TIMEOUT_SEC)))


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def get_embed_provider_name() -> str:
    return os.getenv("EMBED_PROVIDER", EMBED_PROVIDER)


def get_embed_model_name() -> str:
    return os.getenv("EMBED_MODEL_NAME", EMBED_MODEL_NAME)


def get_embed_dim() -> int:
    return int(os.getenv("EMBED_DIM", str(EMBED_DIM)))


def get_encoder_load_timeout() -> float:
    return float(os.getenv("ENCODER_LOAD_TIMEOUT_SEC", str(ENCODER_LOAD_TIMEOUT_SEC)))


def get_search_defaults():
    """Default (threshold, limit) for searches that do not specify them."""
    threshold = float(os.getenv("MATCH_THRESHOLD", str(MATCH_THRESHOLD)))
    limit = int(os.getenv("MATCH_COUNT", str(MATCH_COUNT)))
    return threshold, limit


def get_model_version() -> str:
    """Identifier stamped on every stored vector so re-encoding is reproducible."""
    return f"{get_embed_provider_name()}:{get_embed_model_name()}:{EMBED_POOLING}-{EMBED_NORMALIZATION}:{get_embed_dim()}"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    provider = get_embed_provider_name()

    if provider == "hash":
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(dimension=get_embed_dim())
    elif provider == "sentence_transformers":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(
            model_name=get_embed_model_name(),
            device=os.getenv("EMBED_DEVICE", EMBED_DEVICE),
        )
    else:
        raise ValueError(f"Unknown EMBED_PROVIDER: {provider}")


def build_text_encoder():
    """Build a ready-to-use text encoder. This is the expensive one-time load."""
    from ..vector.embeddings import TextEncoder

    serialize = os.getenv("ENCODER_SERIALIZE_INFERENCE", str(ENCODER_SERIALIZE_INFERENCE)).lower() == "true"
    encoder = TextEncoder(
        get_embedding_provider(),
        dimension=get_embed_dim(),
        model_version=get_model_version(),
        serialize_inference=serialize,
    )
    encoder.warm_up()
    return encoder


def get_record_store():
    """Get configured record store implementation."""
    backend = os.getenv("RECORD_STORE", RECORD_STORE)

    if backend == "memory":
        from ..vector.index import InMemoryRecordStore
        return InMemoryRecordStore(dimension=get_embed_dim())
    elif backend == "sqlite":
        from .dao import SQLiteRecordStore
        return SQLiteRecordStore(get_db_path(), dimension=get_embed_dim(), timeout=get_db_timeout())
    else:
        raise ValueError(f"Unknown RECORD_STORE: {backend}")


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if os.getenv("RECORD_STORE", RECORD_STORE) not in ["sqlite", "memory"]:
        issues.append(f"Invalid RECORD_STORE: {os.getenv('RECORD_STORE')}")

    if get_embed_provider_name() not in ["sentence_transformers", "hash"]:
        issues.append(f"Invalid EMBED_PROVIDER: {get_embed_provider_name()}")

    if get_embed_dim() < 1:
        issues.append("EMBED_DIM must be >= 1")

    threshold, limit = get_search_defaults()
    if not -1.0 <= threshold <= 1.0:
        issues.append("MATCH_THRESHOLD must be within [-1, 1]")
    if limit < 1:
        issues.append("MATCH_COUNT must be >= 1")

    if get_encoder_load_timeout() <= 0:
        issues.append("ENCODER_LOAD_TIMEOUT_SEC must be > 0")

    return issues
