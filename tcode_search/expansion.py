from __future__ import annotations

"""
Query expansion: ask the reasoning model to append domain synonyms,
abbreviations and likely transaction codes to a user query.

Failure of any kind returns the query unchanged. Successful model replies are
cached for a week, keyed by the raw query; abbreviation mappings are stable.
"""

from typing import Optional

from loguru import logger

from . import config
from .bounded import bounded_call
from .cache import SearchCache
from .clients import ReasoningModel
from .normalize import basic_clean

EXPANSION_SYSTEM_PROMPT = """You are an SAP expert. Expand the user's search query with SAP-specific synonyms and abbreviations.

Rules:
1. Add SAP abbreviations (G/L = GL = General Ledger, PO = Purchase Order, etc.)
2. Add likely transaction code prefixes where known (FB for FI postings, ME for MM purchasing, VA for SD sales, SE for BASIS development)
3. Add business context terms and common SAP terminology
4. Keep the response under 80 words
5. Return ONLY the expanded query as plain text, no explanation or formatting

Examples:
Input: "make G/L posting"
Output: "G/L posting general ledger GL account posting journal entry FB50 FI financial single screen document"

Input: "display dictionary table"
Output: "dictionary table display data browser SE16 SE16N SE16H table contents ABAP dictionary database view"

Input: "create purchase order"
Output: "create purchase order PO ME21N procurement MM materials management purchasing vendor\""""

MAX_EXPANSION_CHARS = 600


class QueryExpander:
    def __init__(
        self,
        model: ReasoningModel,
        cache: SearchCache,
        settings: Optional[config.SearchSettings] = None,
    ):
        self.model = model
        self.cache = cache
        self.settings = settings or config.SearchSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.expansion_enabled and self.model.enabled

    async def _call_model(self, query: str) -> Optional[str]:
        reply = await self.model.complete(
            EXPANSION_SYSTEM_PROMPT,
            query,
            json_mode=False,
            temperature=0.3,
            max_tokens=100,
        )
        text = basic_clean(reply).strip().strip('"').strip()
        return text[:MAX_EXPANSION_CHARS] or None

    async def expand(self, query: str) -> str:
        if not query or not query.strip():
            return query

        cached = await self.cache.aget(config.NS_EXPAND, query)
        if isinstance(cached, str) and cached:
            logger.debug("Query expansion cache hit: {}", query[:30])
            return cached

        if not self.enabled:
            return query

        expanded = await bounded_call(
            self._call_model(query),
            self.settings.expansion_timeout,
            None,
            "query expansion",
        )
        if not expanded:
            return query

        await self.cache.aset(config.NS_EXPAND, query, expanded, ttl=config.TTL_EXPAND)
        logger.info("Query expanded: '{}' -> '{}'", query, expanded[:60])
        return expanded
