from __future__ import annotations

"""
Search orchestrator.

  cache check
  -> (expansion -> semantic(expanded)) || semantic(raw) || lexical
  -> fusion
  -> [nothing found -> deep reasoning -> return]
  -> rerank -> term boost -> judge
  -> [top confidence < threshold -> web fallback]
  -> locale boost -> feedback boost -> sort -> cache write

Every collaborator is injected. Stages degrade to their own fallbacks, so the
only error result is an unreachable catalog. The whole request runs under
``settings.overall_timeout``; when it fires the furthest partial result is
returned with ``timed_out=True``.
"""

import asyncio
import time
from typing import Dict, List, Optional, Sequence

from loguru import logger

from . import config
from .cache import SearchCache, build_cache
from .catalog import Catalog, DataFrameCatalog
from .clients import build_embedding_service, build_reasoning_model
from .deep_reasoning import DeepReasoner
from .errors import UpstreamUnavailable
from .expansion import QueryExpander
from .feedback import FeedbackBooster
from .fusion import cap_for_rerank, fuse_candidates
from .judge import Judge
from .lexical import LexicalSearcher
from .locale_boost import LocaleDirectory
from .normalize import normalize_query
from .pipeline_types import Candidate, CatalogEntry
from .rerank import Reranker, apply_term_boost, fallback_candidate
from .semantic import SemanticSearcher
from .stores import InMemoryFeedbackStore, JsonlFeedbackStore, StaticLocaleStore
from .web_fallback import WebFallback
from .web_search import build_web_providers

CATALOG_UNAVAILABLE = "Catalog unavailable"
SEARCH_FAILED = "Search failed"


# ---------------------------
# Helpers
# ---------------------------

def dedupe(candidates: Sequence[Candidate]) -> List[Candidate]:
    seen: Dict[str, Candidate] = {}
    for c in candidates:
        seen.setdefault(c.key, c)
    return list(seen.values())


def final_sort(candidates: Sequence[Candidate], limit: int) -> List[Candidate]:
    """Confidence descending; ``sorted`` is stable so ties keep fusion order."""
    ranked = sorted(dedupe(candidates), key=lambda c: -c.score)
    return ranked[:limit]


def to_result_item(c: Candidate) -> config.SearchResultItem:
    return config.SearchResultItem(
        tcode=c.identifier,
        description=c.description,
        module=c.category,
        relevance_score=c.relevance_score,
        confidence=c.score,
        match_type=c.match_type,
        explanation=c.explanation or config.RERANK_FALLBACK_EXPLANATION,
        catalog_validated=c.catalog_validated,
        source=c.source,
    )


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return config.RESULT_DEFAULT
    return max(config.RESULT_MIN, min(config.RESULT_MAX, int(limit)))


class _Progress:
    """Furthest point a request has reached; read when the deadline fires."""

    def __init__(self) -> None:
        self.fused: List[Candidate] = []
        self.scored: Optional[List[Candidate]] = None

    def partial(self) -> List[Candidate]:
        if self.scored is not None:
            return self.scored
        return [fallback_candidate(c) for c in self.fused]


# ---------------------------
# Orchestrator
# ---------------------------

class SearchPipeline:
    def __init__(
        self,
        settings: config.SearchSettings,
        cache: SearchCache,
        catalog: Catalog,
        lexical: LexicalSearcher,
        semantic: SemanticSearcher,
        expander: QueryExpander,
        reranker: Reranker,
        judge: Judge,
        web_fallback: WebFallback,
        deep_reasoner: DeepReasoner,
        locales: LocaleDirectory,
        feedback: FeedbackBooster,
    ):
        self.settings = settings
        self.cache = cache
        self.catalog = catalog
        self.lexical = lexical
        self.semantic = semantic
        self.expander = expander
        self.reranker = reranker
        self.judge = judge
        self.web_fallback = web_fallback
        self.deep_reasoner = deep_reasoner
        self.locales = locales
        self.feedback = feedback

    # ----- candidate generation -----

    async def _expanded_semantic(self, query: str) -> List[Candidate]:
        expanded = await self.expander.expand(query)
        if not expanded or normalize_query(expanded) == normalize_query(query):
            return []
        return await self.semantic.search(expanded)

    async def _generate(self, query: str) -> List[Candidate]:
        lexical, expanded_sem, direct_sem = await asyncio.gather(
            self.lexical.search(query),
            self._expanded_semantic(query),
            self.semantic.search(query),
        )
        fused = fuse_candidates(lexical, expanded_sem, direct_sem)
        logger.info(
            "Candidates for '{}': lexical={} expanded={} direct={} fused={}",
            query[:50],
            len(lexical),
            len(expanded_sem),
            len(direct_sem),
            len(fused),
        )
        return fused

    # ----- main flow -----

    async def _run(self, query: str, limit: int, progress: _Progress) -> List[Candidate]:
        fused = await self._generate(query)
        progress.fused = fused

        if not fused:
            logger.info("No catalog candidates for '{}'; trying deep reasoning", query[:50])
            suggestions = await self.deep_reasoner.suggest(query)
            progress.scored = suggestions
            return final_sort(suggestions, limit)

        ranked = await self.reranker.rerank(query, cap_for_rerank(fused, limit))
        progress.scored = ranked

        ranked = apply_term_boost(query, ranked)
        progress.scored = ranked

        ranked = (await self.judge.validate(query, ranked)).candidates
        progress.scored = ranked

        if self.web_fallback.should_run(ranked):
            outcome = await self.web_fallback.run(query, ranked)
            ranked = outcome.candidates
            progress.scored = ranked
            if not outcome.validated_any and self.settings.deep_reasoning_on_web_miss:
                extra = await self.deep_reasoner.suggest(
                    query,
                    final_sort(ranked, config.DEEP_MAX_EXISTING),
                    outcome.web_content,
                )
                ranked = dedupe(ranked + extra)
                progress.scored = ranked

        ranked = await self.locales.boost(query, ranked)
        progress.scored = ranked

        ranked = await self.feedback.boost(ranked)
        progress.scored = ranked

        return final_sort(ranked, limit)

    async def search(self, query: str, limit: Optional[int] = None) -> config.SearchResponse:
        started = time.perf_counter()
        limit = clamp_limit(limit)

        def _elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        if not normalize_query(query):
            return config.SearchResponse(query=query, results=[])

        cached = await self.cache.aget(config.NS_SEARCH, query, extra=str(limit))
        if isinstance(cached, list):
            logger.info("Search cache hit for '{}'", query[:50])
            return config.SearchResponse(
                query=query,
                results=[config.SearchResultItem(**row) for row in cached],
                cached=True,
                processing_time_ms=_elapsed_ms(),
            )

        progress = _Progress()
        timed_out = False
        error: Optional[str] = None
        try:
            final = await asyncio.wait_for(
                self._run(query, limit, progress),
                timeout=self.settings.overall_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Search for '{}' hit the {:.0f}s deadline; returning partial results", query[:50], self.settings.overall_timeout)
            timed_out = True
            final = final_sort(progress.partial(), limit)
        except UpstreamUnavailable as e:
            logger.error("Search for '{}' failed: {}", query[:50], e)
            error = CATALOG_UNAVAILABLE
            final = []
        except Exception:
            logger.exception("Search for '{}' failed unexpectedly", query[:50])
            error = SEARCH_FAILED
            final = final_sort(progress.partial(), limit)

        results = [to_result_item(c) for c in final]
        if results and not timed_out and error is None:
            await self.cache.aset(
                config.NS_SEARCH,
                query,
                [r.model_dump() for r in results],
                ttl=config.TTL_SEARCH,
                extra=str(limit),
            )

        response = config.SearchResponse(
            query=query,
            results=results,
            timed_out=timed_out,
            processing_time_ms=_elapsed_ms(),
            error=error,
        )
        logger.info(
            "Search for '{}' completed in {} ms: {} results, timed_out={}",
            query[:50],
            response.processing_time_ms,
            len(results),
            timed_out,
        )
        return response

    # ----- secondary operations -----

    async def autocomplete(self, prefix: str, limit: int = config.AUTOCOMPLETE_LIMIT) -> List[CatalogEntry]:
        try:
            return await self.lexical.autocomplete(prefix, limit)
        except UpstreamUnavailable as e:
            logger.warning("Autocomplete failed: {}", e)
            return []

    async def record_vote(self, identifier: str, vote: int, query: Optional[str] = None) -> None:
        await self.feedback.record_vote(identifier, vote, query)

    async def aclose(self) -> None:
        """Release the web providers' HTTP connection pools."""
        for provider in self.web_fallback.providers:
            await provider.aclose()


# ---------------------------
# Wiring
# ---------------------------

def build_pipeline(
    settings: Optional[config.SearchSettings] = None,
    catalog: Optional[Catalog] = None,
) -> SearchPipeline:
    """Default collaborators for ``settings``; pass ``catalog`` to skip loading files."""
    settings = settings or config.SearchSettings.from_env()
    cache = build_cache(settings)

    if catalog is None:
        catalog = DataFrameCatalog.from_files(
            settings.catalog_path,
            config.EMBEDDINGS_PATH,
            config.IDS_MAPPING_PATH,
            config.FAISS_INDEX_PATH,
        )

    embedder = build_embedding_service(settings)
    model = build_reasoning_model(settings)

    if settings.feedback_log_path is not None:
        feedback_store = JsonlFeedbackStore(settings.feedback_log_path)
    else:
        feedback_store = InMemoryFeedbackStore()

    return SearchPipeline(
        settings=settings,
        cache=cache,
        catalog=catalog,
        lexical=LexicalSearcher(catalog),
        semantic=SemanticSearcher(embedder, catalog, cache, settings),
        expander=QueryExpander(model, cache, settings),
        reranker=Reranker(model, settings),
        judge=Judge(model, settings),
        web_fallback=WebFallback(build_web_providers(settings), catalog, settings),
        deep_reasoner=DeepReasoner(model, catalog, cache, settings),
        locales=LocaleDirectory(StaticLocaleStore(), cache, settings),
        feedback=FeedbackBooster(feedback_store, cache, settings),
    )
