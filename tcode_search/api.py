from __future__ import annotations

"""
FastAPI application for the T-code search service.

- POST /search runs the hybrid pipeline; an unreachable catalog is a 503,
  an empty result list is a normal 200
- GET /autocomplete serves identifier/description prefix suggestions
- POST /feedback records one up/down vote
- cache status and an admin-only flush
"""

from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from .config import (
    AUTOCOMPLETE_LIMIT,
    QUERY_MAX_CHARS,
    QUERY_MIN_CHARS,
    RESULT_DEFAULT,
    RESULT_MAX,
    RESULT_MIN,
    HealthResponse,
    SearchResponse,
    SearchSettings,
)
from .pipeline import SearchPipeline, build_pipeline


# -----------------------
# Request / response bodies
# -----------------------

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=QUERY_MIN_CHARS, max_length=QUERY_MAX_CHARS)
    limit: int = Field(default=RESULT_DEFAULT, ge=RESULT_MIN, le=RESULT_MAX)


class FeedbackRequest(BaseModel):
    tcode: str = Field(..., min_length=1, max_length=40)
    vote: int
    query: Optional[str] = Field(default=None, max_length=QUERY_MAX_CHARS)


class AutocompleteItem(BaseModel):
    tcode: str
    description: Optional[str] = None
    module: Optional[str] = None


# -----------------------
# FastAPI app + startup
# -----------------------

app = FastAPI(title="tcode-search")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_pipeline: Optional[SearchPipeline] = None


def get_pipeline() -> SearchPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(SearchSettings.from_env())
    return _pipeline


@app.on_event("startup")
def startup_event() -> None:
    logger.info("Starting app warmup...")
    try:
        pipeline = get_pipeline()
        logger.info("Pipeline ready (cache backend: {})", pipeline.cache.backend)
    except Exception as e:
        # /search reports the failure per request; /health stays up
        logger.warning("Warmup failed: {}", e)
    logger.info("Warmup complete.")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if _pipeline is not None:
        await _pipeline.aclose()
        logger.info("Pipeline connections closed.")


def _pipeline_or_503() -> SearchPipeline:
    try:
        return get_pipeline()
    except Exception as e:
        logger.error("Pipeline unavailable: {}", e)
        raise HTTPException(status_code=503, detail="Search service unavailable")


async def _run_search(query: str, limit: int) -> SearchResponse:
    query = query.strip()
    if len(query) < QUERY_MIN_CHARS:
        raise HTTPException(status_code=422, detail=f"Query must be at least {QUERY_MIN_CHARS} characters")
    response = await _pipeline_or_503().search(query, limit)
    if response.error:
        raise HTTPException(status_code=503, detail=response.error)
    return response


# -----------------------
# Endpoints
# -----------------------

@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.post("/search", response_model=SearchResponse)
async def search(req: SearchRequest) -> SearchResponse:
    return await _run_search(req.query, req.limit)


@app.get("/search", response_model=SearchResponse)
async def search_get(
    q: str = Query(..., min_length=QUERY_MIN_CHARS, max_length=QUERY_MAX_CHARS),
    limit: int = Query(RESULT_DEFAULT, ge=RESULT_MIN, le=RESULT_MAX),
) -> SearchResponse:
    return await _run_search(q, limit)


@app.get("/autocomplete", response_model=List[AutocompleteItem])
async def autocomplete(q: str = Query("", max_length=QUERY_MAX_CHARS)) -> List[AutocompleteItem]:
    if not q.strip():
        return []
    entries = await _pipeline_or_503().autocomplete(q, AUTOCOMPLETE_LIMIT)
    return [
        AutocompleteItem(tcode=e.identifier, description=e.description, module=e.category)
        for e in entries
    ]


@app.post("/feedback")
async def feedback(req: FeedbackRequest):
    if req.vote not in (1, -1):
        raise HTTPException(status_code=422, detail="vote must be 1 or -1")
    try:
        await _pipeline_or_503().record_vote(req.tcode, req.vote, req.query)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"success": True}


@app.get("/cache/status")
def cache_status():
    return _pipeline_or_503().cache.stats()


@app.post("/cache/flush")
def cache_flush(authorization: Optional[str] = Header(default=None)):
    pipeline = _pipeline_or_503()
    secret = pipeline.settings.admin_secret
    if not secret:
        raise HTTPException(status_code=503, detail="Admin secret not configured")
    if authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
    flushed = pipeline.cache.flush_all()
    logger.info("Cache flushed: {}", flushed)
    return {"success": True, "flushed": flushed}
