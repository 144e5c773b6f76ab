from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
CATALOG_RAW_DIR = DATA_DIR / "catalog_raw"
CATALOG_SNAPSHOT_PATH = DATA_DIR / "catalog_snapshot.parquet"

INDICES_DIR = PROJECT_ROOT / "indices"
FAISS_INDEX_PATH = INDICES_DIR / "faiss.index"
EMBEDDINGS_PATH = INDICES_DIR / "item_embeddings.npy"
IDS_MAPPING_PATH = INDICES_DIR / "ids.json"

MODELS_DIR = PROJECT_ROOT / "models"  # for HF cache if you want to mount it


# ---------------------------
# Model names (pinned)
# ---------------------------

# Hosted models
OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
OPENAI_CHAT_MODEL = "gpt-4o-mini"

# Local dense encoder (used when no OpenAI key is configured)
BGE_ENCODER_MODEL = "BAAI/bge-base-en-v1.5"

HF_ENV_VARS = {
    "HF_HOME": str(MODELS_DIR),
}


# ---------------------------
# Candidate generation
# ---------------------------

EXACT_LIMIT = 5
FUZZY_LIMIT = 20
FULLTEXT_LIMIT = 30
SEMANTIC_LIMIT = 20

PREFIX_BASE_SCORE = 0.9
SUBSTRING_BASE_SCORE = 0.7
FUZZY_LENGTH_PENALTY = 0.02
FULLTEXT_WEIGHT = 0.8
MIN_LEXICAL_SCORE = 0.1
CORROBORATION_BOOST = 1.2

MIN_TERM_LENGTH = 3  # words of length > 2

AUTOCOMPLETE_LIMIT = 8


# ---------------------------
# Rerank / boosting
# ---------------------------

RERANK_FALLBACK_EXPLANATION = "Matches based on description similarity."

TERM_BOOST_STEP = 0.05
TERM_BOOST_CAP = 0.15

LOCALE_MATCH_FACTOR = 1.5
LOCALE_MISMATCH_FACTOR = 0.5
MAX_BOOSTED_CONFIDENCE = 0.99

FEEDBACK_LOG_SCALE = 0.15
FEEDBACK_MIN_FACTOR = 0.7
FEEDBACK_MAX_FACTOR = 1.5


# ---------------------------
# Web / knowledge fallbacks
# ---------------------------

WEB_QUERY_TEMPLATE = "SAP transaction code {query}"
WEB_RESULT_CONFIDENCE = 0.78
WEB_EXISTING_BOOST = 1.15
WEB_EXISTING_CAP = 0.95
WEB_VERIFIED_SUFFIX = " (verified through web search)"
WEB_TOKEN_LIMIT = 10
WEB_RESULTS_PER_PROVIDER = 5

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
SERPAPI_SEARCH_URL = "https://serpapi.com/search"

DEEP_MIN_CONFIDENCE = 0.3
DEEP_MAX_CONFIDENCE = 0.85
DEEP_MAX_SUGGESTIONS = 5
DEEP_MAX_EXISTING = 5
DEEP_WEB_CONTENT_CHARS = 1500


# ---------------------------
# Cache namespaces & TTLs (seconds)
# ---------------------------

CACHE_KEY_PREFIX = "tcode:"
CACHE_MEMORY_MAX_ENTRIES = 1000

NS_EMBED = "embed"
NS_EXPAND = "query-expand"
NS_SEARCH = "ai-search"
NS_FALLBACK = "ai-fallback"
NS_LOCALE = "molga-map"
NS_FEEDBACK = "feedback-scores"

HOUR = 60 * 60
DAY = 24 * HOUR

TTL_EMBED = 7 * DAY
TTL_EXPAND = 7 * DAY
TTL_SEARCH = DAY
TTL_FALLBACK = 12 * HOUR
TTL_LOCALE = DAY
TTL_FEEDBACK = HOUR


# ---------------------------
# HTTP hardening
# ---------------------------

HTTP_CONNECT_TIMEOUT = 3.0
HTTP_USER_AGENT = "tcode-search/1.0 (+https://example.com)"


# ---------------------------
# Request policy
# ---------------------------

QUERY_MIN_CHARS = 3
QUERY_MAX_CHARS = 500
RESULT_MIN = 1
RESULT_MAX = 10
RESULT_DEFAULT = 5


# ---------------------------
# Runtime settings
# ---------------------------

def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


class SearchSettings(BaseModel):
    """
    Everything the pipeline needs to know about its environment.

    Built once (usually via ``from_env``) and handed to ``build_pipeline``;
    stages only ever read the fields they are given.
    """

    # Credentials. A missing key disables the collaborator that needs it.
    openai_api_key: Optional[str] = None
    brave_api_key: Optional[str] = None
    serpapi_api_key: Optional[str] = None
    admin_secret: Optional[str] = None

    # Shared cache tier (memory-only when unset)
    redis_url: Optional[str] = None
    cache_key_prefix: str = CACHE_KEY_PREFIX
    cache_max_entries: int = Field(default=CACHE_MEMORY_MAX_ENTRIES, ge=1)

    # Data locations
    catalog_path: Path = CATALOG_SNAPSHOT_PATH
    feedback_log_path: Optional[Path] = None

    # Models
    chat_model: str = OPENAI_CHAT_MODEL
    embedding_model: str = OPENAI_EMBEDDING_MODEL
    local_encoder_model: str = BGE_ENCODER_MODEL
    embedding_backend: str = "auto"  # auto | openai | local | none

    # Stage deadlines (seconds)
    embedding_timeout: float = Field(default=3.0, gt=0)
    expansion_timeout: float = Field(default=3.0, gt=0)
    rerank_timeout: float = Field(default=8.0, gt=0)
    judge_timeout: float = Field(default=5.0, gt=0)
    web_provider_timeout: float = Field(default=5.0, gt=0)
    web_fallback_timeout: float = Field(default=10.0, gt=0)
    deep_reasoning_timeout: float = Field(default=12.0, gt=0)
    store_timeout: float = Field(default=2.0, gt=0)
    overall_timeout: float = Field(default=45.0, gt=0)

    # Thresholds
    web_fallback_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    judge_top_n: int = Field(default=5, ge=1)

    # Feature toggles
    expansion_enabled: bool = True
    judge_enabled: bool = True
    web_fallback_enabled: bool = True
    deep_reasoning_enabled: bool = True
    deep_reasoning_on_web_miss: bool = False

    @classmethod
    def from_env(cls) -> "SearchSettings":
        """Read the process environment. The only place the app does so."""
        values = {
            "openai_api_key": _env_str("OPENAI_API_KEY"),
            "brave_api_key": _env_str("BRAVE_API_KEY"),
            "serpapi_api_key": _env_str("SERPAPI_API_KEY"),
            "admin_secret": _env_str("ADMIN_SECRET"),
            "redis_url": _env_str("REDIS_URL"),
            "embedding_backend": (_env_str("EMBEDDING_BACKEND") or "auto").lower(),
            "expansion_enabled": _env_flag("EXPANSION_ENABLED", True),
            "judge_enabled": _env_flag("JUDGE_ENABLED", True),
            "web_fallback_enabled": _env_flag("WEB_FALLBACK_ENABLED", True),
            "deep_reasoning_enabled": _env_flag("DEEP_REASONING_ENABLED", True),
            "deep_reasoning_on_web_miss": _env_flag("DEEP_REASONING_ON_WEB_MISS", False),
        }
        catalog_path = _env_str("CATALOG_PATH")
        if catalog_path:
            values["catalog_path"] = Path(catalog_path)
        feedback_path = _env_str("FEEDBACK_LOG_PATH")
        if feedback_path:
            values["feedback_log_path"] = Path(feedback_path)
        return cls(**values)


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class SearchResultItem(BaseModel):
    """
    One ranked identifier as returned by the API.
    """

    tcode: str
    description: Optional[str] = None
    module: Optional[str] = None
    relevance_score: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    match_type: str
    explanation: str
    catalog_validated: bool = True
    source: str = "catalog"


class SearchResponse(BaseModel):
    """
    Response body for POST /search.

    ``error`` is only set when the request could not be serviced at all;
    an empty ``results`` list with no error means "no matches".
    """

    query: str
    results: List[SearchResultItem]
    cached: bool = False
    timed_out: bool = False
    processing_time_ms: int = 0
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """
    Response body for GET /health.
    """

    status: str
