from __future__ import annotations

"""
Feedback booster: user up/down votes nudge ranking.

The boost factor grows with log10 of the net vote count so a popular
identifier cannot run away with the ranking, and is clamped to
[0.7, 1.5]. Identifiers without votes are neutral.
"""

import asyncio
import math
from dataclasses import asdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from . import config
from .bounded import bounded_call
from .cache import SearchCache
from .pipeline_types import Candidate, FeedbackScore
from .stores import FeedbackStore


def compute_boost_factor(net_votes: int) -> float:
    if net_votes == 0:
        return 1.0
    scaled = math.copysign(math.log10(1 + abs(net_votes)), net_votes) * config.FEEDBACK_LOG_SCALE
    return max(config.FEEDBACK_MIN_FACTOR, min(config.FEEDBACK_MAX_FACTOR, 1.0 + scaled))


def neutral_score(identifier: str) -> FeedbackScore:
    return FeedbackScore(identifier=identifier, upvotes=0, downvotes=0, net_votes=0, boost_factor=1.0)


def score_from_totals(identifier: str, net_votes: int, total_votes: int) -> FeedbackScore:
    # up - down = net, up + down = total
    upvotes = int(round((total_votes + net_votes) / 2))
    return FeedbackScore(
        identifier=identifier,
        upvotes=upvotes,
        downvotes=total_votes - upvotes,
        net_votes=net_votes,
        boost_factor=compute_boost_factor(net_votes),
    )


def apply_feedback_boost(candidates: Sequence[Candidate], scores: Dict[str, FeedbackScore]) -> List[Candidate]:
    """Pure: multiply scores by each identifier's boost factor."""
    out: List[Candidate] = []
    for c in candidates:
        score = scores.get(c.key)
        factor = score.boost_factor if score else 1.0
        if factor == 1.0:
            out.append(c)
            continue
        confidence = None
        if c.confidence is not None:
            confidence = min(config.MAX_BOOSTED_CONFIDENCE, c.confidence * factor)
        out.append(
            c.with_scores(
                relevance_score=min(1.0, c.relevance_score * factor),
                confidence=confidence,
            )
        )
    return out


class FeedbackBooster:
    def __init__(
        self,
        store: FeedbackStore,
        cache: SearchCache,
        settings: Optional[config.SearchSettings] = None,
    ):
        self.store = store
        self.cache = cache
        self.settings = settings or config.SearchSettings()

    async def scores(self, identifiers: Iterable[str]) -> Dict[str, FeedbackScore]:
        """``{IDENTIFIER: FeedbackScore}`` for every requested identifier."""
        keys = list(dict.fromkeys(i.strip().upper() for i in identifiers if i and i.strip()))
        result: Dict[str, FeedbackScore] = {}
        misses: List[str] = []

        for key in keys:
            cached = await self.cache.aget(config.NS_FEEDBACK, key)
            if isinstance(cached, dict):
                result[key] = FeedbackScore(**cached)
            else:
                misses.append(key)

        if not misses:
            return result

        totals: Optional[Dict[str, Tuple[int, int]]] = await bounded_call(
            asyncio.to_thread(self.store.sum_votes_grouped_by_identifier, misses),
            self.settings.store_timeout,
            None,
            "feedback aggregation",
        )
        if totals is None:
            # neutral and not cached, so the next request retries the store
            for key in misses:
                result[key] = neutral_score(key)
            return result

        for key in misses:
            net, total = totals.get(key, (0, 0))
            score = score_from_totals(key, net, total) if total else neutral_score(key)
            result[key] = score
            await self.cache.aset(config.NS_FEEDBACK, key, asdict(score), ttl=config.TTL_FEEDBACK)
        return result

    async def boost(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        if not candidates:
            return list(candidates)
        scores = await self.scores(c.identifier for c in candidates)
        boosted = [k for k, s in scores.items() if s.boost_factor != 1.0]
        if boosted:
            logger.debug("Feedback boost applied to {}", boosted)
        return apply_feedback_boost(candidates, scores)

    async def record_vote(self, identifier: str, vote: int, query: Optional[str] = None) -> None:
        """Persist one vote; raises ValueError for anything other than +1/-1."""
        if vote not in (1, -1):
            raise ValueError("vote must be 1 or -1")
        identifier = (identifier or "").strip().upper()
        if not identifier:
            raise ValueError("identifier is required")
        await asyncio.to_thread(self.store.record_vote, identifier, vote, query)
        await self.cache.adelete(config.NS_FEEDBACK, identifier)
        logger.info("Recorded {} vote for {}", "up" if vote > 0 else "down", identifier)
