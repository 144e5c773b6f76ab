from __future__ import annotations

"""
Text normalisation helpers shared across catalog building, caching and
ranking.

Public helpers:

* basic_clean(text) -> str
    Light-weight clean for catalog fields and web snippets (HTML stripped,
    unicode and whitespace normalised, length capped).

* normalize_query(text) -> str
    Cache-key form of a query: trimmed, lower-cased, whitespace collapsed.
    Two queries that differ only in case or spacing share a cache slot.

* query_terms(text) -> List[str]
    The words of a query that carry signal for literal matching
    (length > 2), lower-cased, in order.

* clamp(value, lo, hi) -> float
    Score clamping used by every stage that produces a score.
"""

import math
import re
import unicodedata
from typing import List

from bs4 import BeautifulSoup

from . import config

MAX_INPUT_CHARS = 20_000

_WS_RE = re.compile(r"\s+")
_WORD_SPLIT_RE = re.compile(r"\s+")
_TAG_HINT_RE = re.compile(r"<[a-zA-Z/!][^>]*>")


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def _strip_html(text: str) -> str:
    if not text:
        return ""
    # Skip the parser for the common case of plain text.
    if not _TAG_HINT_RE.search(text):
        return text
    soup = BeautifulSoup(text, "html.parser")
    return soup.get_text(" ", strip=True)


def _normalise_unicode(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("\u2018", "'").replace("\u2019", "'")
    text = text.replace("\u201c", '"').replace("\u201d", '"')
    text = text.replace("\u2013", "-").replace("\u2014", "-")
    return text


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def basic_clean(text: str | None) -> str:
    """Light-weight clean for catalog fields and snippets.

    * strips HTML
    * normalises unicode and whitespace
    * truncates excessively long inputs
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    if len(text) > MAX_INPUT_CHARS:
        text = text[:MAX_INPUT_CHARS]

    text = _strip_html(text)
    text = _normalise_unicode(text)
    text = _WS_RE.sub(" ", text).strip()
    return text


def normalize_query(text: str | None) -> str:
    """Trim, lower-case and collapse whitespace."""
    if not text:
        return ""
    return _WS_RE.sub(" ", str(text).strip().lower())


def query_terms(text: str | None) -> List[str]:
    norm = normalize_query(text)
    if not norm:
        return []
    return [w for w in _WORD_SPLIT_RE.split(norm) if len(w) >= config.MIN_TERM_LENGTH]


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp into [lo, hi]; NaN becomes ``lo``."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return lo
    if math.isnan(v):
        return lo
    return max(lo, min(hi, v))
