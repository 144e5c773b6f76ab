"""Typed containers shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional

from .normalize import clamp

MATCH_TYPES = ("exact", "fuzzy", "fulltext", "semantic", "web", "knowledge")

SOURCE_CATALOG = "catalog"
SOURCE_KNOWLEDGE = "gpt-knowledge"
SOURCE_WEB = "web-validated"


@dataclass(frozen=True)
class CatalogEntry:
    """Read-only projection of one catalog row."""

    identifier: str
    description: Optional[str] = None
    category: Optional[str] = None
    deprecated: bool = False


@dataclass(frozen=True)
class Candidate:
    """One ranked identifier moving through the pipeline.

    Instances are immutable; stages produce new candidates with
    ``with_scores`` / ``dataclasses.replace``. Scores are clamped to [0, 1]
    on construction.
    """

    identifier: str
    description: Optional[str] = None
    category: Optional[str] = None
    relevance_score: float = 0.0
    confidence: Optional[float] = None
    match_type: str = "fuzzy"
    explanation: str = ""
    catalog_validated: bool = True
    source: str = SOURCE_CATALOG

    def __post_init__(self) -> None:
        if self.match_type not in MATCH_TYPES:
            raise ValueError(f"unknown match type: {self.match_type}")
        object.__setattr__(self, "relevance_score", clamp(self.relevance_score))
        if self.confidence is not None:
            object.__setattr__(self, "confidence", clamp(self.confidence))

    @property
    def key(self) -> str:
        """Case-folded identifier used for deduplication."""
        return self.identifier.upper()

    @property
    def score(self) -> float:
        """Confidence once assigned, relevance before that."""
        return self.confidence if self.confidence is not None else self.relevance_score

    def with_scores(
        self,
        relevance_score: Optional[float] = None,
        confidence: Optional[float] = None,
        explanation: Optional[str] = None,
    ) -> "Candidate":
        changes = {}
        if relevance_score is not None:
            changes["relevance_score"] = relevance_score
        if confidence is not None:
            changes["confidence"] = confidence
        if explanation is not None:
            changes["explanation"] = explanation
        return replace(self, **changes)

    @classmethod
    def from_entry(cls, entry: CatalogEntry, score: float, match_type: str) -> "Candidate":
        return cls(
            identifier=entry.identifier,
            description=entry.description,
            category=entry.category,
            relevance_score=score,
            match_type=match_type,
        )


@dataclass(frozen=True)
class LocaleEntry:
    code: int
    canonical_name: str
    iso_code: str = ""
    aliases: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LocaleMatch:
    code: int
    canonical_name: str
    pattern: str
    matched_term: str


@dataclass(frozen=True)
class FeedbackScore:
    identifier: str
    upvotes: int
    downvotes: int
    net_votes: int
    boost_factor: float


@dataclass(frozen=True)
class WebSnippet:
    title: str
    snippet: str
    provider: str = ""

    @property
    def text(self) -> str:
        return f"{self.title} {self.snippet}".strip()


@dataclass(frozen=True)
class DeepSuggestion:
    """One identifier proposed by the deep-reasoning model."""

    identifier: str
    description: str = ""
    category: str = ""
    explanation: str = ""
    confidence: float = 0.5
    source: str = SOURCE_KNOWLEDGE
