from __future__ import annotations

"""
Locale booster.

Many HR/payroll identifiers embed a two-digit country grouping (``M10`` in
``PC00_M10_CALC`` is the US). When a query names a country, identifiers for
that country are boosted and identifiers for other countries are penalised.
Identifiers without an embedded grouping are left alone.
"""

import asyncio
import re
from dataclasses import asdict
from typing import List, Optional, Sequence

from loguru import logger

from . import config
from .bounded import bounded_call
from .cache import SearchCache
from .pipeline_types import Candidate, LocaleEntry, LocaleMatch
from .stores import LocaleStore

_LOCALE_CACHE_KEY = "all"

# Tried in order; first hit wins.
_IDENTIFIER_PATTERNS = [
    re.compile(r"_M(\d{1,2})_", re.IGNORECASE),
    re.compile(r"_M(\d{1,2})$", re.IGNORECASE),
    re.compile(r"^M(\d{1,2})_", re.IGNORECASE),
    re.compile(r"M(\d{1,2})(?=[A-Z_]|$)", re.IGNORECASE),
]


def locale_pattern(code: int) -> str:
    return "M%02d" % int(code)


def extract_locale_code(identifier: str) -> Optional[int]:
    """Country grouping embedded in ``identifier``, or None."""
    for pattern in _IDENTIFIER_PATTERNS:
        m = pattern.search(identifier or "")
        if m:
            return int(m.group(1))
    return None


def _whole_word(term: str, text: str, flags: int = 0) -> bool:
    return re.search(r"(?<!\w)" + re.escape(term) + r"(?!\w)", text, flags) is not None


def detect_locales(query: str, entries: Sequence[LocaleEntry]) -> List[LocaleMatch]:
    """
    Every locale the query refers to, in table order.

    Per entry: the ISO code as an upper-case whole word, else the canonical
    name as a case-insensitive substring, else the first alias found as a
    case-insensitive whole word. Aliases spelling an ISO code are skipped so
    those codes only ever match in upper case.
    """
    query = query or ""
    query_lower = query.lower()
    iso_codes = {e.iso_code.upper() for e in entries if e.iso_code}
    matches: List[LocaleMatch] = []

    for entry in entries:
        matched: Optional[str] = None
        if entry.iso_code and _whole_word(entry.iso_code.upper(), query):
            matched = entry.iso_code
        elif entry.canonical_name and entry.canonical_name.lower() in query_lower:
            matched = entry.canonical_name
        else:
            for alias in entry.aliases:
                if alias and alias.upper() not in iso_codes and _whole_word(alias, query, re.IGNORECASE):
                    matched = alias
                    break
        if matched is not None:
            matches.append(
                LocaleMatch(
                    code=entry.code,
                    canonical_name=entry.canonical_name,
                    pattern=locale_pattern(entry.code),
                    matched_term=matched,
                )
            )
    return matches


def apply_locale_boost(candidates: Sequence[Candidate], active: Optional[LocaleMatch]) -> List[Candidate]:
    """Pure: returns new candidates, input is not modified."""
    if active is None:
        return list(candidates)

    out: List[Candidate] = []
    for c in candidates:
        code = extract_locale_code(c.identifier)
        if code is None:
            out.append(c)
            continue
        if code == active.code:
            factor, conf_cap = config.LOCALE_MATCH_FACTOR, config.MAX_BOOSTED_CONFIDENCE
        else:
            factor, conf_cap = config.LOCALE_MISMATCH_FACTOR, 1.0
        confidence = None if c.confidence is None else min(conf_cap, c.confidence * factor)
        relevance = min(1.0, c.relevance_score * factor)
        out.append(c.with_scores(relevance_score=relevance, confidence=confidence))
    return out


class LocaleDirectory:
    """
    Locale reference table with three tiers: this process, the shared
    cache, then the store.
    """

    def __init__(
        self,
        store: LocaleStore,
        cache: SearchCache,
        settings: Optional[config.SearchSettings] = None,
    ):
        self.store = store
        self.cache = cache
        self.settings = settings or config.SearchSettings()
        self._entries: Optional[List[LocaleEntry]] = None

    async def entries(self) -> List[LocaleEntry]:
        if self._entries is not None:
            return self._entries

        cached = await self.cache.aget(config.NS_LOCALE, _LOCALE_CACHE_KEY)
        if isinstance(cached, list) and cached:
            self._entries = [LocaleEntry(**row) for row in cached]
            return self._entries

        loaded = await bounded_call(
            asyncio.to_thread(self.store.list_all),
            self.settings.store_timeout,
            None,
            "locale table",
        )
        if loaded is None:
            # not memoised, so the next request retries the store
            return []

        self._entries = list(loaded)
        await self.cache.aset(
            config.NS_LOCALE,
            _LOCALE_CACHE_KEY,
            [asdict(e) for e in self._entries],
            ttl=config.TTL_LOCALE,
        )
        logger.info("Loaded {} locale entries", len(self._entries))
        return self._entries

    async def detect(self, query: str) -> List[LocaleMatch]:
        return detect_locales(query, await self.entries())

    async def boost(self, query: str, candidates: Sequence[Candidate]) -> List[Candidate]:
        if not candidates:
            return list(candidates)
        matches = await self.detect(query)
        if not matches:
            return list(candidates)
        active = matches[0]
        logger.info(
            "Locale detected: {} ({}) from '{}'",
            active.canonical_name,
            active.pattern,
            active.matched_term,
        )
        return apply_locale_boost(candidates, active)
