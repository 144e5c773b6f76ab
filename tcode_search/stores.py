"""Feedback and locale reference stores."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .constants import DEFAULT_LOCALE_TABLE
from .pipeline_types import LocaleEntry


# ---------------------------
# Feedback
# ---------------------------

@dataclass
class VoteRecord:
    timestamp: str
    identifier: str
    vote: int
    query: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(self.__dict__, ensure_ascii=False)


class FeedbackStore:
    """Aggregates up/down votes per identifier."""

    def record_vote(self, identifier: str, vote: int, query: Optional[str] = None) -> None:
        raise NotImplementedError

    def sum_votes_grouped_by_identifier(self, identifiers: Iterable[str]) -> Dict[str, Tuple[int, int]]:
        """``{IDENTIFIER: (net_votes, total_votes)}`` for identifiers with votes."""
        raise NotImplementedError


class InMemoryFeedbackStore(FeedbackStore):
    def __init__(self, votes: Optional[Sequence[Tuple[str, int]]] = None):
        self._lock = threading.Lock()
        self._totals: Dict[str, Tuple[int, int]] = {}
        for identifier, vote in votes or []:
            self._add(identifier, vote)

    def _add(self, identifier: str, vote: int) -> None:
        key = identifier.strip().upper()
        net, total = self._totals.get(key, (0, 0))
        self._totals[key] = (net + vote, total + 1)

    def record_vote(self, identifier: str, vote: int, query: Optional[str] = None) -> None:
        if vote not in (1, -1):
            raise ValueError("vote must be 1 or -1")
        with self._lock:
            self._add(identifier, vote)

    def sum_votes_grouped_by_identifier(self, identifiers):
        with self._lock:
            out = {}
            for ident in identifiers:
                key = ident.strip().upper()
                if key in self._totals:
                    out[key] = self._totals[key]
            return out


class JsonlFeedbackStore(InMemoryFeedbackStore):
    """Append-only JSONL vote log, replayed into memory at startup."""

    def __init__(self, log_path: Path):
        super().__init__()
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._replay()

    def _replay(self) -> None:
        if not self.log_path.exists():
            return
        n = 0
        with self.log_path.open("r", encoding="utf-8") as f:
            for line in f:
                try:
                    rec = json.loads(line)
                    vote = int(rec["vote"])
                    ident = str(rec["identifier"])
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    continue
                if vote in (1, -1) and ident.strip():
                    self._add(ident, vote)
                    n += 1
        logger.info("Replayed {} votes from {}", n, self.log_path)

    def record_vote(self, identifier: str, vote: int, query: Optional[str] = None) -> None:
        if vote not in (1, -1):
            raise ValueError("vote must be 1 or -1")
        rec = VoteRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            identifier=identifier.strip().upper(),
            vote=vote,
            query=query,
        )
        with self._lock:
            with self.log_path.open("a", encoding="utf-8") as f:
                f.write(rec.to_json() + "\n")
            self._add(identifier, vote)


# ---------------------------
# Locale reference
# ---------------------------

class LocaleStore:
    def list_all(self) -> List[LocaleEntry]:
        raise NotImplementedError


class StaticLocaleStore(LocaleStore):
    """Reference table shipped with the package (or any table passed in)."""

    def __init__(self, table=None):
        rows = DEFAULT_LOCALE_TABLE if table is None else table
        self._entries = [
            LocaleEntry(code=int(code), iso_code=iso, canonical_name=name, aliases=list(aliases))
            for code, iso, name, aliases in rows
        ]

    def list_all(self) -> List[LocaleEntry]:
        return list(self._entries)
