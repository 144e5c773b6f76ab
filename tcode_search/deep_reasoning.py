from __future__ import annotations

"""
Deep-reasoning fallback: when the catalog has nothing (or the web could not
corroborate anything), ask the reasoning model to propose identifiers from its
own knowledge.

Suggestions are never trusted blindly: confidence is clamped into a
conservative band, and anything the catalog does not know is flagged as not
catalog-validated.
"""

import asyncio
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from . import config
from .bounded import bounded_call
from .cache import SearchCache
from .catalog import Catalog
from .clients import ReasoningModel, parse_json_reply
from .errors import MalformedResponse
from .normalize import clamp
from .pipeline_types import SOURCE_KNOWLEDGE, SOURCE_WEB, Candidate, CatalogEntry, DeepSuggestion

DEEP_SYSTEM_PROMPT = (
    "You are an SAP expert with comprehensive knowledge of SAP transaction codes "
    "across all modules (FI, CO, MM, SD, HR, PP, PM, QM, WM, etc.). Provide accurate, "
    "helpful suggestions based on your expertise."
)

DEFAULT_SUGGESTION_EXPLANATION = "Suggested based on SAP knowledge"


def build_user_prompt(query: str, existing: Sequence[Candidate], web_content: str = "") -> str:
    top_confidence = existing[0].score if existing else 0.0
    candidates_info = "\n".join(
        f"- {c.identifier}: {c.description or 'N/A'} (confidence: {c.score * 100:.0f}%)"
        for c in list(existing)[: config.DEEP_MAX_EXISTING]
    )
    web_context = ""
    if web_content:
        web_context = f"\n\nWEB SEARCH FINDINGS:\n{web_content[: config.DEEP_WEB_CONTENT_CHARS]}..."

    return f"""You are an SAP expert performing DEEP ANALYSIS on a search query where standard search returned low confidence results (best match: {top_confidence * 100:.0f}%).

USER QUERY: "{query}"

EXISTING CANDIDATES (from database):
{candidates_info or 'No candidates found'}
{web_context}

YOUR TASK:
1. INTERPRET the user's intent - what SAP functionality are they likely looking for?
2. CONSIDER common SAP terminology variations, abbreviations, and module-specific terms
3. IDENTIFY the most relevant T-codes based on:
   - Your comprehensive SAP knowledge
   - The web search findings (if available)
   - The existing database candidates
4. For EACH suggested T-code:
   - Provide a detailed explanation of why it matches
   - Consider country-specific variants (MOLGA codes like M10=USA, M01=Germany)
   - Note any prerequisites or related T-codes

OUTPUT FORMAT (JSON):
{{
  "queryInterpretation": "What the user is likely trying to do in SAP...",
  "suggestedTCodes": [
    {{
      "tcode": "XX01",
      "description": "Description of what this T-code does",
      "module": "FI/MM/SD/HR/etc",
      "explanation": "Detailed explanation of why this matches the query",
      "confidence": 0.0-1.0,
      "source": "gpt-knowledge"
    }}
  ],
  "ambiguityNotes": "Any ambiguity in the query that affects results, or null if clear"
}}

IMPORTANT:
- Only suggest T-codes you are confident exist in SAP
- Be conservative with confidence scores (0.5-0.85 range for GPT suggestions)
- If suggesting country-specific T-codes, explain the MOLGA pattern
- Maximum {config.DEEP_MAX_SUGGESTIONS} suggestions"""


def _suggestion_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = 0.5
    if value != value:  # NaN
        value = 0.5
    return clamp(value, config.DEEP_MIN_CONFIDENCE, config.DEEP_MAX_CONFIDENCE)


def parse_suggestions(text: str) -> List[DeepSuggestion]:
    data = parse_json_reply(text)
    raw = data.get("suggestedTCodes")
    if not isinstance(raw, list):
        raise MalformedResponse("deep analysis reply has no 'suggestedTCodes' list")

    interpretation = data.get("queryInterpretation")
    if interpretation:
        logger.info("Query interpretation: {}", interpretation)
    if data.get("ambiguityNotes"):
        logger.info("Ambiguity notes: {}", data["ambiguityNotes"])

    out: List[DeepSuggestion] = []
    seen = set()
    for s in raw:
        if not isinstance(s, dict):
            continue
        ident = str(s.get("tcode") or "").strip().upper()
        if not ident or ident in seen:
            continue
        seen.add(ident)
        out.append(
            DeepSuggestion(
                identifier=ident,
                description=str(s.get("description") or "N/A"),
                category=str(s.get("module") or "Unknown"),
                explanation=str(s.get("explanation") or DEFAULT_SUGGESTION_EXPLANATION),
                confidence=_suggestion_confidence(s.get("confidence")),
                source=SOURCE_WEB if s.get("source") == SOURCE_WEB else SOURCE_KNOWLEDGE,
            )
        )
        if len(out) >= config.DEEP_MAX_SUGGESTIONS:
            break
    return out


def suggestions_to_candidates(
    suggestions: Sequence[DeepSuggestion],
    known: Dict[str, CatalogEntry],
) -> List[Candidate]:
    """Catalog rows win over model-provided text for identifiers the catalog has."""
    out: List[Candidate] = []
    for s in suggestions:
        entry = known.get(s.identifier.upper())
        out.append(
            Candidate(
                identifier=entry.identifier if entry else s.identifier,
                description=entry.description if entry else s.description,
                category=entry.category if entry else s.category,
                relevance_score=s.confidence,
                confidence=s.confidence,
                match_type="knowledge",
                explanation=s.explanation,
                catalog_validated=entry is not None,
                source=s.source,
            )
        )
    return out


class DeepReasoner:
    def __init__(
        self,
        model: ReasoningModel,
        catalog: Catalog,
        cache: SearchCache,
        settings: Optional[config.SearchSettings] = None,
    ):
        self.model = model
        self.catalog = catalog
        self.cache = cache
        self.settings = settings or config.SearchSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.deep_reasoning_enabled and self.model.enabled

    async def _analyse(self, query: str, existing: Sequence[Candidate], web_content: str) -> List[DeepSuggestion]:
        reply = await self.model.complete(
            DEEP_SYSTEM_PROMPT,
            build_user_prompt(query, existing, web_content),
            json_mode=True,
            temperature=0.2,
            max_tokens=800,
        )
        return parse_suggestions(reply)

    def _lookup(self, identifiers: List[str]) -> Dict[str, CatalogEntry]:
        return {e.identifier.upper(): e for e in self.catalog.find_by_identifier_in(identifiers)}

    async def suggest(
        self,
        query: str,
        existing: Sequence[Candidate] = (),
        web_content: str = "",
    ) -> List[Candidate]:
        if not self.enabled or not query.strip():
            return []

        # replies built with ranked or web context are cached apart from bare ones
        variant = "web" if web_content.strip() else ("ranked" if existing else None)
        cached = await self.cache.aget(config.NS_FALLBACK, query, variant)
        if isinstance(cached, list):
            logger.debug("Deep analysis cache hit: {}", query[:30])
            return [Candidate(**row) for row in cached]

        suggestions = await bounded_call(
            self._analyse(query, existing, web_content),
            self.settings.deep_reasoning_timeout,
            list,
            "deep reasoning",
        )
        if not suggestions:
            return []

        known = await bounded_call(
            asyncio.to_thread(self._lookup, [s.identifier for s in suggestions]),
            self.settings.store_timeout,
            dict,
            "deep reasoning catalog check",
        )
        candidates = suggestions_to_candidates(suggestions, known)
        logger.info(
            "Deep analysis for '{}': {} suggestions, {} in catalog",
            query[:30],
            len(candidates),
            sum(1 for c in candidates if c.catalog_validated),
        )
        await self.cache.aset(
            config.NS_FALLBACK,
            query,
            [asdict(c) for c in candidates],
            ttl=config.TTL_FALLBACK,
            extra=variant,
        )
        return candidates
