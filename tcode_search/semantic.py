from __future__ import annotations

"""
Semantic candidate generation: query -> embedding (cached) -> nearest
neighbours in the catalog's vector index.

Semantic search is advisory. Any failure (no embedding service, timeout, no
vector index) yields an empty list.
"""

import asyncio
from typing import List, Optional

from loguru import logger

from . import config
from .bounded import bounded_call
from .cache import SearchCache
from .catalog import Catalog
from .clients import EmbeddingService
from .normalize import clamp
from .pipeline_types import Candidate


class SemanticSearcher:
    def __init__(
        self,
        embedder: EmbeddingService,
        catalog: Catalog,
        cache: SearchCache,
        settings: Optional[config.SearchSettings] = None,
    ):
        self.embedder = embedder
        self.catalog = catalog
        self.cache = cache
        self.settings = settings or config.SearchSettings()

    async def embed_query(self, text: str) -> Optional[List[float]]:
        """Embedding for ``text``; cached per raw query string."""
        cached = await self.cache.aget(config.NS_EMBED, text)
        if cached:
            return cached

        vector = await bounded_call(
            self.embedder.embed(text),
            self.settings.embedding_timeout,
            None,
            "embedding",
        )
        if vector:
            await self.cache.aset(config.NS_EMBED, text, list(vector), ttl=config.TTL_EMBED)
        return vector

    async def search(
        self,
        text: str,
        module: Optional[str] = None,
        limit: int = config.SEMANTIC_LIMIT,
    ) -> List[Candidate]:
        if not text or not text.strip():
            return []
        if not self.embedder.enabled or not self.catalog.has_vectors:
            return []

        vector = await self.embed_query(text)
        if not vector:
            return []

        try:
            rows = await asyncio.to_thread(self.catalog.find_by_embedding_nearest, vector, module, limit)
        except Exception as e:
            logger.warning("Semantic lookup failed: {}", e)
            return []

        rows = sorted(rows, key=lambda pair: pair[1])
        return [
            Candidate.from_entry(entry, clamp(1.0 - distance), "semantic")
            for entry, distance in rows
        ]
