from __future__ import annotations

"""
Web-validation fallback.

When the best post-judge confidence is low, ask the web which transaction
codes people mention for the query, keep only the ones that exist in the
catalog, and merge them into the result set.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from loguru import logger

from . import config
from .bounded import bounded_call
from .catalog import Catalog
from .constants import WEB_TOKEN_STOPWORDS
from .pipeline_types import SOURCE_WEB, Candidate, WebSnippet
from .web_search import WebSearchProvider

_TOKEN_RE = re.compile(r"\b([A-Z][A-Z0-9_/]{1,19})\b")

WEB_HIT_EXPLANATION = "Found via web search - commonly mentioned in SAP documentation and forums."


@dataclass
class WebFallbackOutcome:
    candidates: List[Candidate]
    validated_any: bool = False
    web_content: str = ""


def extract_identifier_tokens(text: str, limit: Optional[int] = None) -> List[str]:
    """Upper-case tokens that look like identifiers, in first-seen order."""
    seen: Dict[str, None] = {}
    for m in _TOKEN_RE.finditer(text or ""):
        token = m.group(1).upper()
        if token in WEB_TOKEN_STOPWORDS:
            continue
        seen.setdefault(token, None)
    tokens = list(seen)
    return tokens[:limit] if limit else tokens


def merge_web_hits(candidates: Sequence[Candidate], hits: Sequence[Candidate]) -> List[Candidate]:
    """
    Boost candidates the web corroborates, append the ones it adds.

    Existing candidates keep their position; new ones go to the end and find
    their place in the orchestrator's final sort.
    """
    hit_keys = {h.key for h in hits}
    out: List[Candidate] = []
    for c in candidates:
        if c.key not in hit_keys:
            out.append(c)
            continue
        boosted = min(config.WEB_EXISTING_CAP, c.score * config.WEB_EXISTING_BOOST)
        explanation = c.explanation
        if not explanation.endswith(config.WEB_VERIFIED_SUFFIX):
            explanation = explanation + config.WEB_VERIFIED_SUFFIX
        out.append(c.with_scores(confidence=max(c.score, boosted), explanation=explanation))

    present = {c.key for c in candidates}
    for h in hits:
        if h.key not in present:
            out.append(h)
            present.add(h.key)
    return out


class WebFallback:
    def __init__(
        self,
        providers: Sequence[WebSearchProvider],
        catalog: Catalog,
        settings: Optional[config.SearchSettings] = None,
    ):
        self.providers = list(providers)
        self.catalog = catalog
        self.settings = settings or config.SearchSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.web_fallback_enabled and bool(self.providers)

    def should_run(self, candidates: Sequence[Candidate]) -> bool:
        if not self.enabled:
            return False
        top = max((c.score for c in candidates), default=0.0)
        return top < self.settings.web_fallback_threshold

    async def _fetch_all(self, query: str) -> List[List[WebSnippet]]:
        web_query = config.WEB_QUERY_TEMPLATE.format(query=query)
        calls = [
            bounded_call(p.search(web_query), self.settings.web_provider_timeout, list, f"web search ({p.name})")
            for p in self.providers
        ]
        return await asyncio.gather(*calls)

    def _validate(self, tokens: List[str]) -> List[Candidate]:
        entries = self.catalog.find_by_identifier_in(tokens)
        return [
            Candidate(
                identifier=e.identifier,
                description=e.description,
                category=e.category,
                relevance_score=config.WEB_RESULT_CONFIDENCE,
                confidence=config.WEB_RESULT_CONFIDENCE,
                match_type="web",
                explanation=WEB_HIT_EXPLANATION,
                source=SOURCE_WEB,
            )
            for e in entries
        ]

    async def _run(self, query: str, candidates: List[Candidate]) -> WebFallbackOutcome:
        per_provider = await self._fetch_all(query)

        # provider order decides which source a token is attributed to
        texts = [s.text for snippets in per_provider for s in snippets]
        web_content = " ".join(t for t in texts if t)
        if not web_content:
            logger.info("Web search returned no content for '{}'", query)
            return WebFallbackOutcome(candidates=candidates)

        tokens = extract_identifier_tokens(web_content, limit=config.WEB_TOKEN_LIMIT)
        logger.debug("Extracted {} potential identifiers from web: {}", len(tokens), tokens)

        hits = await bounded_call(
            asyncio.to_thread(self._validate, tokens),
            self.settings.store_timeout,
            list,
            "web token validation",
        )
        logger.info("Web fallback validated {} of {} tokens", len(hits), len(tokens))
        if not hits:
            return WebFallbackOutcome(candidates=candidates, web_content=web_content)

        return WebFallbackOutcome(
            candidates=merge_web_hits(candidates, hits),
            validated_any=True,
            web_content=web_content,
        )

    async def run(self, query: str, candidates: Sequence[Candidate]) -> WebFallbackOutcome:
        candidates = list(candidates)
        if not self.enabled:
            return WebFallbackOutcome(candidates=candidates)

        top = max((c.score for c in candidates), default=0.0)
        logger.info(
            "Web fallback triggered: top confidence {:.2f} < {:.2f}",
            top,
            self.settings.web_fallback_threshold,
        )
        return await bounded_call(
            self._run(query, candidates),
            self.settings.web_fallback_timeout,
            lambda: WebFallbackOutcome(candidates=candidates),
            "web fallback",
        )
