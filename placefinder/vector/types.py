"""
Indexed entity and search hit types shared by the stores, the indexing
pipeline and the search engine.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np

from ..core.schema import LocationPayload


def fingerprint_text(text: str) -> str:
    """SHA-256 of the text a vector was derived from."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def as_vector(values) -> np.ndarray:
    """Copy values into a read-only float32 vector."""
    vector = np.array(values, dtype=np.float32).reshape(-1)
    vector.flags.writeable = False
    return vector


@dataclass(frozen=True, eq=False)
class IndexedEntity:
    """A stored place together with the vector derived from its text."""

    id: Optional[int]
    """Assigned by the store on creation, immutable afterwards"""

    text: str
    """Source description the vector was derived from"""

    vector: np.ndarray
    """Unit-length float32 vector of the configured dimension"""

    text_fingerprint: str
    """fingerprint_text(text) at encode time"""

    model_version: str
    """Encoder identifier that produced the vector"""

    payload: LocationPayload = field(default_factory=LocationPayload)
    """Opaque record fields carried through unchanged"""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_fresh(self) -> bool:
        """True when the vector was derived from the current text."""
        return self.text_fingerprint == fingerprint_text(self.text)


@dataclass(frozen=True)
class SearchHit:
    """One ranked search result."""

    id: int
    similarity: float


@dataclass(frozen=True)
class SearchQuery:
    """Validated search request. Not persisted."""

    query_text: str
    threshold: float
    limit: int
