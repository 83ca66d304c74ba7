"""
Record payload carried alongside every indexed place.
The indexing and search layers never look inside it.
"""

import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class LocationPayload:
    title: str = ""
    category: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image_urls: List[str] = field(default_factory=list)
    visit_dates: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LocationPayload":
        data = data or {}
        return cls(
            title=data.get("title") or "",
            category=data.get("category") or "",
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            image_urls=list(data.get("image_urls") or []),
            visit_dates=list(data.get("visit_dates") or []),
        )


def encode_list(values: List[str]) -> str:
    """Serialize a list column for SQLite."""
    return json.dumps(list(values or []))


def decode_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return list(json.loads(raw))
