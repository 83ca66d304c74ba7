"""
Request/response models for the place index API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime

from ..core.schema import LocationPayload


class LocationRequest(BaseModel):
    title: str = ""
    category: str = ""
    text: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image_urls: List[str] = []
    visit_dates: List[str] = []

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('text cannot be empty')
        return v

    @field_validator('latitude')
    @classmethod
    def latitude_in_range(cls, v):
        if v is not None and not -90.0 <= v <= 90.0:
            raise ValueError('latitude must be within [-90, 90]')
        return v

    @field_validator('longitude')
    @classmethod
    def longitude_in_range(cls, v):
        if v is not None and not -180.0 <= v <= 180.0:
            raise ValueError('longitude must be within [-180, 180]')
        return v

    def to_payload(self) -> LocationPayload:
        return LocationPayload(
            title=self.title,
            category=self.category,
            latitude=self.latitude,
            longitude=self.longitude,
            image_urls=list(self.image_urls),
            visit_dates=list(self.visit_dates),
        )


class LocationResponse(BaseModel):
    id: int
    title: str
    category: str
    description: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image_urls: List[str]
    visit_dates: List[str]
    model_version: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LocationListResponse(BaseModel):
    items: List[LocationResponse]


class DeleteResponse(BaseModel):
    success: bool
    id: int


class SearchResult(BaseModel):
    id: int
    title: str
    category: str
    description: str
    image_urls: List[str]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    similarity: float


class SearchResponse(BaseModel):
    query: str
    threshold: float
    limit: int
    results: List[SearchResult]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    record_count: int
    encoder_loaded: bool


class ErrorResponse(BaseModel):
    error_type: str
    detail: str
