from __future__ import annotations

"""
Lexical candidate generation: exact, fuzzy (prefix/substring) and full-text
matching against the catalog, run concurrently and merged.
"""

import asyncio
from typing import Dict, List, Optional

from loguru import logger

from . import config
from .catalog import Catalog
from .errors import UpstreamUnavailable
from .normalize import clamp, query_terms
from .pipeline_types import Candidate, CatalogEntry

_STRATEGIES = ("exact", "fuzzy", "fulltext")


# ---------------------------
# Scoring (pure)
# ---------------------------

def fuzzy_score(identifier: str, query: str) -> float:
    ident = identifier.upper()
    q = query.strip().upper()
    extra = len(ident) - len(q)
    if ident == q:
        score = 1.0
    elif ident.startswith(q):
        score = config.PREFIX_BASE_SCORE - extra * config.FUZZY_LENGTH_PENALTY
    elif q in ident:
        score = config.SUBSTRING_BASE_SCORE - extra * config.FUZZY_LENGTH_PENALTY
    else:
        score = 0.5
    return max(config.MIN_LEXICAL_SCORE, score)


def fulltext_score(entry: CatalogEntry, words: List[str]) -> float:
    if not words:
        return 0.0
    text = f"{entry.identifier} {entry.description or ''}".lower()
    matched = sum(1 for w in words if w in text)
    return max(config.MIN_LEXICAL_SCORE, matched / len(words) * config.FULLTEXT_WEIGHT)


def merge_lexical(
    exact: List[Candidate],
    fuzzy: List[Candidate],
    fulltext: List[Candidate],
) -> List[Candidate]:
    """
    Exact hits own their slot. Otherwise the best score wins, and an
    identifier found by more than one strategy is boosted by 20% (max 1.0).
    """
    best: Dict[str, Candidate] = {}
    hits: Dict[str, int] = {}

    for batch in (exact, fuzzy, fulltext):
        seen_in_batch = set()
        for cand in batch:
            key = cand.key
            if key not in seen_in_batch:
                hits[key] = hits.get(key, 0) + 1
                seen_in_batch.add(key)
            current = best.get(key)
            if current is None:
                best[key] = cand
            elif current.match_type != "exact" and cand.relevance_score > current.relevance_score:
                best[key] = cand

    merged: List[Candidate] = []
    for key, cand in best.items():
        if cand.match_type != "exact" and hits[key] > 1:
            cand = cand.with_scores(
                relevance_score=clamp(cand.relevance_score * config.CORROBORATION_BOOST)
            )
        merged.append(cand)

    merged.sort(key=lambda c: -c.relevance_score)
    return merged


# ---------------------------
# Searcher
# ---------------------------

class LexicalSearcher:
    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    # -- strategies (blocking; run in worker threads) --

    def _exact(self, query: str, module: Optional[str]) -> List[Candidate]:
        rows = self.catalog.find_by_identifier_exact(query.strip(), limit=config.EXACT_LIMIT)
        return [
            Candidate.from_entry(e, 1.0, "exact")
            for e in rows
            if _in_module(e, module)
        ]

    def _fuzzy(self, query: str, module: Optional[str]) -> List[Candidate]:
        q = query.strip()
        rows: Dict[str, CatalogEntry] = {}
        for e in self.catalog.find_by_identifier_prefix(q, limit=config.FUZZY_LIMIT):
            rows.setdefault(e.identifier.upper(), e)
        for e in self.catalog.find_by_identifier_substring(q, limit=config.FUZZY_LIMIT):
            rows.setdefault(e.identifier.upper(), e)
        ordered = [rows[k] for k in sorted(rows)]
        ordered = [e for e in ordered if _in_module(e, module)][: config.FUZZY_LIMIT]
        return [Candidate.from_entry(e, fuzzy_score(e.identifier, q), "fuzzy") for e in ordered]

    def _fulltext(self, query: str, module: Optional[str]) -> List[Candidate]:
        words = query_terms(query)
        if not words:
            return []
        rows = self.catalog.find_by_keywords(words, limit=config.FULLTEXT_LIMIT)
        return [
            Candidate.from_entry(e, fulltext_score(e, words), "fulltext")
            for e in rows
            if _in_module(e, module)
        ]

    async def search(self, query: str, module: Optional[str] = None) -> List[Candidate]:
        """
        Run the three strategies concurrently and merge.

        A strategy whose catalog call fails contributes nothing; if all three
        fail with ``UpstreamUnavailable`` the error is re-raised so the caller
        can tell "catalog down" from "no matches".
        """
        if not query or not query.strip():
            return []

        results = await asyncio.gather(
            asyncio.to_thread(self._exact, query, module),
            asyncio.to_thread(self._fuzzy, query, module),
            asyncio.to_thread(self._fulltext, query, module),
            return_exceptions=True,
        )

        batches: List[List[Candidate]] = []
        unavailable = 0
        for name, res in zip(_STRATEGIES, results):
            if isinstance(res, BaseException):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                if isinstance(res, UpstreamUnavailable):
                    unavailable += 1
                logger.warning("Lexical {} search failed: {}", name, res)
                batches.append([])
            else:
                batches.append(res)

        if unavailable == len(_STRATEGIES):
            raise UpstreamUnavailable("catalog unreachable for every lexical strategy")

        merged = merge_lexical(*batches)
        logger.debug(
            "Lexical '{}': exact={} fuzzy={} fulltext={} merged={}",
            query,
            len(batches[0]),
            len(batches[1]),
            len(batches[2]),
            len(merged),
        )
        return merged

    async def autocomplete(self, prefix: str, limit: int = config.AUTOCOMPLETE_LIMIT) -> List[CatalogEntry]:
        """Identifier-prefix matches first, topped up with description matches."""
        p = (prefix or "").strip()
        if not p:
            return []
        found = await asyncio.to_thread(self.catalog.find_by_identifier_prefix, p, False, limit)
        out = list(found)
        if len(out) < limit:
            seen = {e.identifier.upper() for e in out}
            extra = await asyncio.to_thread(self.catalog.find_by_description_substring, p, False, limit)
            for e in extra:
                if e.identifier.upper() not in seen:
                    out.append(e)
                    seen.add(e.identifier.upper())
                if len(out) >= limit:
                    break
        return out[:limit]


def _in_module(entry: CatalogEntry, module: Optional[str]) -> bool:
    if not module:
        return True
    return (entry.category or "").upper() == module.upper()
