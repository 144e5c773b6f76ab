"""Candidate fusion across lexical and semantic generators."""

from __future__ import annotations

from typing import Dict, List, Sequence

from .pipeline_types import Candidate


def fuse_candidates(
    lexical: Sequence[Candidate],
    expanded_semantic: Sequence[Candidate] = (),
    direct_semantic: Sequence[Candidate] = (),
) -> List[Candidate]:
    """
    Deduplicate by case-folded identifier with a fixed priority:

      1) exact lexical hits
      2) semantic hits for the expanded query
      3) semantic hits for the raw query
      4) remaining lexical hits

    The first occurrence of an identifier wins. The result is stably sorted
    by relevance, and that order is the tie-break for every later sort.
    """
    exact = [c for c in lexical if c.match_type == "exact"]
    rest = [c for c in lexical if c.match_type != "exact"]

    fused: Dict[str, Candidate] = {}
    for group in (exact, expanded_semantic, direct_semantic, rest):
        for cand in group:
            fused.setdefault(cand.key, cand)

    out = list(fused.values())
    out.sort(key=lambda c: -c.relevance_score)
    return out


def cap_for_rerank(candidates: Sequence[Candidate], limit: int) -> List[Candidate]:
    """The re-ranker only sees the first ``2 * limit`` fused candidates."""
    return list(candidates[: max(1, 2 * limit)])
