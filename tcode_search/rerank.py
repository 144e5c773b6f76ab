from __future__ import annotations

"""
External re-ranking and the deterministic term-match booster.

``Reranker.rerank`` is total: every input candidate comes back exactly once,
in input order, with a confidence and an explanation. Candidates the model
skipped, and every candidate when the call times out or returns garbage, get
the deterministic fallback (confidence = relevance score).
"""

from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from . import config
from .bounded import bounded_call
from .clients import ReasoningModel, parse_json_reply
from .errors import MalformedResponse
from .normalize import clamp, query_terms
from .pipeline_types import Candidate

RERANK_SYSTEM_PROMPT = """You are an SAP expert helping users find the right transaction code. Given a user's query and a list of candidate T-codes, explain why each T-code might match their needs. Be concise (1-2 sentences per explanation). Also rate your confidence (0.0-1.0) that each T-code matches the user's intent.

Respond in JSON format:
{
  "results": [
    {"tcode": "XX01", "explanation": "Brief explanation", "confidence": 0.95}
  ]
}"""

EXACT_MATCH_EXPLANATION = "Exact transaction code match."


# ---------------------------------------------------------------------------
# Prompt / reply helpers
# ---------------------------------------------------------------------------

def build_candidate_list(candidates: Sequence[Candidate]) -> str:
    return "\n".join(
        f"{i + 1}. {c.identifier} - {c.description or 'No description'} (Module: {c.category or 'Unknown'})"
        for i, c in enumerate(candidates)
    )


def build_user_prompt(query: str, candidates: Sequence[Candidate]) -> str:
    return (
        f'User query: "{query}"\n\n'
        f"Candidate T-codes:\n{build_candidate_list(candidates)}\n\n"
        "Provide explanations for each candidate."
    )


def parse_rerank_reply(text: str) -> Dict[str, Tuple[str, Optional[float]]]:
    """``{IDENTIFIER: (explanation, confidence)}``; raises MalformedResponse."""
    data = parse_json_reply(text)
    results = data.get("results")
    if not isinstance(results, list):
        raise MalformedResponse("rerank reply has no 'results' list")

    out: Dict[str, Tuple[str, Optional[float]]] = {}
    for item in results:
        if not isinstance(item, dict) or not item.get("tcode"):
            continue
        key = str(item["tcode"]).strip().upper()
        explanation = str(item.get("explanation") or "").strip()
        conf = item.get("confidence")
        try:
            confidence = clamp(float(conf)) if conf is not None else None
        except (TypeError, ValueError):
            confidence = None
        out.setdefault(key, (explanation, confidence))
    return out


def fallback_candidate(c: Candidate) -> Candidate:
    if c.match_type == "exact":
        return c.with_scores(confidence=1.0, explanation=c.explanation or EXACT_MATCH_EXPLANATION)
    return c.with_scores(
        confidence=c.relevance_score,
        explanation=c.explanation or config.RERANK_FALLBACK_EXPLANATION,
    )


def apply_rerank_scores(
    candidates: Sequence[Candidate],
    scores: Dict[str, Tuple[str, Optional[float]]],
) -> List[Candidate]:
    out: List[Candidate] = []
    for c in candidates:
        hit = scores.get(c.key)
        if hit is None:
            out.append(fallback_candidate(c))
            continue
        explanation, confidence = hit
        if c.match_type == "exact":
            # exact identifier hits stay pinned at 1.0 before boosting
            confidence = 1.0
        elif confidence is None:
            confidence = c.relevance_score
        out.append(
            c.with_scores(
                confidence=confidence,
                explanation=explanation or config.RERANK_FALLBACK_EXPLANATION,
            )
        )
    return out


# ---------------------------------------------------------------------------
# Term-match booster (pure)
# ---------------------------------------------------------------------------

def term_boost(query: str, candidate: Candidate) -> float:
    terms = query_terms(query)
    if not terms:
        return 0.0
    haystack = f"{candidate.identifier} {candidate.description or ''}".lower()
    hits = sum(1 for t in terms if t in haystack)
    return min(config.TERM_BOOST_CAP, hits * config.TERM_BOOST_STEP)


def apply_term_boost(query: str, candidates: Sequence[Candidate]) -> List[Candidate]:
    out: List[Candidate] = []
    for c in candidates:
        inc = term_boost(query, c)
        if inc <= 0:
            out.append(c)
            continue
        out.append(c.with_scores(confidence=clamp(c.score + inc)))
    return out


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

class Reranker:
    def __init__(self, model: ReasoningModel, settings: Optional[config.SearchSettings] = None):
        self.model = model
        self.settings = settings or config.SearchSettings()

    async def _score(self, query: str, candidates: Sequence[Candidate]):
        reply = await self.model.complete(
            RERANK_SYSTEM_PROMPT,
            build_user_prompt(query, candidates),
            json_mode=True,
            temperature=0.3,
            max_tokens=1000,
        )
        return parse_rerank_reply(reply)

    async def rerank(self, query: str, candidates: Sequence[Candidate]) -> List[Candidate]:
        """
        High-level rerank:
          1) ask the model for (explanation, confidence) per candidate
          2) merge by identifier, falling back per candidate
          3) keep input order; sorting happens once, in the orchestrator
        """
        if not candidates:
            return []
        if not self.model.enabled:
            return [fallback_candidate(c) for c in candidates]

        scores = await bounded_call(
            self._score(query, candidates),
            self.settings.rerank_timeout,
            dict,
            "rerank",
        )
        if not scores:
            return [fallback_candidate(c) for c in candidates]

        ranked = apply_rerank_scores(candidates, scores)
        missing = sum(1 for c in candidates if c.key not in scores)
        if missing:
            logger.info("Reranker skipped {} of {} candidates; using fallback for them", missing, len(candidates))
        return ranked
