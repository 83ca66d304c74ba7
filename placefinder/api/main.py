"""
HTTP binding for the place index.
Handlers only translate between JSON and the indexing/search operations.
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import threading

from .schemas import (
    LocationRequest,
    LocationResponse,
    LocationListResponse,
    DeleteResponse,
    SearchResult,
    SearchResponse,
    HealthResponse,
    ErrorResponse,
)
from ..core.config import VERSION, debug_enabled, get_record_store, get_search_defaults, get_encoder_load_timeout
from ..core.errors import (
    PlaceFinderError,
    InvalidInputError,
    EntityNotFoundError,
    EncodingFailure,
)
from ..core.indexing import IndexingPipeline
from ..core.search_service import SimilaritySearchEngine, semantic_search
from ..util.logging import logger
from ..vector.encoder_cache import EncoderCache, get_encoder_cache
from ..vector.index import IRecordStore
from ..vector.types import IndexedEntity


class PlaceIndex:
    """Store, indexing pipeline and search engine sharing one encoder cache."""

    def __init__(self, store: IRecordStore, encoder_cache: EncoderCache, acquire_timeout: Optional[float] = None):
        self.store = store
        self.encoder_cache = encoder_cache
        self.pipeline = IndexingPipeline(store, encoder_cache, acquire_timeout=acquire_timeout)
        self.engine = SimilaritySearchEngine(store, encoder_cache, acquire_timeout=acquire_timeout)

    @classmethod
    def from_config(cls) -> "PlaceIndex":
        return cls(get_record_store(), get_encoder_cache(), acquire_timeout=get_encoder_load_timeout())


_place_index: Optional[PlaceIndex] = None
_place_index_lock = threading.Lock()


def get_place_index() -> PlaceIndex:
    """FastAPI dependency returning the process-wide PlaceIndex."""
    global _place_index
    if _place_index is None:
        with _place_index_lock:
            if _place_index is None:
                _place_index = PlaceIndex.from_config()
    return _place_index


def set_place_index(place_index: Optional[PlaceIndex]) -> None:
    global _place_index
    with _place_index_lock:
        _place_index = place_index


# Initialize the FastAPI application
app = FastAPI(
    title="Place Finder API",
    version=VERSION,
    description="Semantic place search over free-text descriptions",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

# Add CORS middleware to allow frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _to_response(entity: IndexedEntity) -> LocationResponse:
    payload = entity.payload
    return LocationResponse(
        id=entity.id,
        title=payload.title,
        category=payload.category,
        description=entity.text,
        latitude=payload.latitude,
        longitude=payload.longitude,
        image_urls=payload.image_urls,
        visit_dates=payload.visit_dates,
        model_version=entity.model_version,
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(index: PlaceIndex = Depends(get_place_index)):
    """Check system health."""
    db_health = index.store.health_check()
    record_count = index.store.count() if db_health else 0

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        record_count=record_count,
        encoder_loaded=index.encoder_cache.is_loaded(),
    )


@app.get("/locations", response_model=LocationListResponse)
def list_locations(category: Optional[str] = None, index: PlaceIndex = Depends(get_place_index)):
    """List stored places, optionally for one category ('all' lists everything)."""
    return LocationListResponse(items=[_to_response(e) for e in index.store.list(category)])


@app.get("/locations/{location_id}", response_model=LocationResponse)
def get_location(location_id: int, index: PlaceIndex = Depends(get_place_index)):
    entity = index.store.get(location_id)
    if entity is None:
        raise HTTPException(status_code=404, detail="Location not found")
    return _to_response(entity)


@app.post("/locations", response_model=LocationResponse)
def create_location(request: LocationRequest, index: PlaceIndex = Depends(get_place_index)):
    """Encode the description and store a new place."""
    entity = index.pipeline.index_for_create(request.text, request.to_payload())
    return _to_response(entity)


@app.put("/locations/{location_id}", response_model=LocationResponse)
def update_location(location_id: int, request: LocationRequest, index: PlaceIndex = Depends(get_place_index)):
    """Re-encode the description and replace the stored place in one write."""
    entity = index.pipeline.index_for_update(location_id, request.text, request.to_payload())
    return _to_response(entity)


@app.delete("/locations/{location_id}", response_model=DeleteResponse)
def delete_location(location_id: int, index: PlaceIndex = Depends(get_place_index)):
    if not index.store.delete(location_id):
        raise HTTPException(status_code=404, detail="Location not found")
    return DeleteResponse(success=True, id=location_id)


@app.get("/search", response_model=SearchResponse)
def search_endpoint(query: str, threshold: Optional[float] = None, limit: Optional[int] = None,
                    index: PlaceIndex = Depends(get_place_index)):
    """Rank places by semantic similarity to the query."""
    default_threshold, default_limit = get_search_defaults()
    threshold = default_threshold if threshold is None else threshold
    limit = default_limit if limit is None else limit

    results = semantic_search(index.engine, query, threshold, limit)

    return SearchResponse(
        query=query,
        threshold=threshold,
        limit=limit,
        results=[SearchResult(**result) for result in results],
    )


_ERROR_STATUS = (
    (InvalidInputError, 400),
    (EntityNotFoundError, 404),
    (EncodingFailure, 503),
)


@app.exception_handler(PlaceFinderError)
async def place_finder_error_handler(request, exc: PlaceFinderError):
    """Map the error taxonomy onto HTTP status codes."""
    status_code = 500
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=str(exc), error_type=type(exc).__name__).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
