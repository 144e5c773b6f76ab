from __future__ import annotations

"""
Catalog read interface and its in-process implementation.

``Catalog`` is the contract the pipeline consumes; every method is
synchronous (stages call them through ``asyncio.to_thread``) and excludes
deprecated entries unless ``include_deprecated`` is set.

``DataFrameCatalog`` serves the contract from a pandas snapshot, with a faiss
inner-product index over L2-normalised item embeddings for nearest-neighbour
lookups. Distances follow the cosine convention (``1 - similarity``).
"""

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import faiss
import numpy as np
import pandas as pd
from loguru import logger

from . import config
from .catalog_build import load_catalog_snapshot
from .errors import UpstreamUnavailable
from .pipeline_types import CatalogEntry


class Catalog:
    """Read-only catalog contract."""

    @property
    def has_vectors(self) -> bool:
        return True

    def find_by_identifier_exact(self, identifier: str, include_deprecated: bool = False, limit: int = config.EXACT_LIMIT) -> List[CatalogEntry]:
        raise NotImplementedError

    def find_by_identifier_prefix(self, prefix: str, include_deprecated: bool = False, limit: int = config.FUZZY_LIMIT) -> List[CatalogEntry]:
        raise NotImplementedError

    def find_by_identifier_substring(self, fragment: str, include_deprecated: bool = False, limit: int = config.FUZZY_LIMIT) -> List[CatalogEntry]:
        raise NotImplementedError

    def find_by_keywords(self, words: Sequence[str], include_deprecated: bool = False, limit: int = config.FULLTEXT_LIMIT) -> List[CatalogEntry]:
        """Entries whose identifier or description contains every word."""
        raise NotImplementedError

    def find_by_description_substring(self, fragment: str, include_deprecated: bool = False, limit: int = config.AUTOCOMPLETE_LIMIT) -> List[CatalogEntry]:
        raise NotImplementedError

    def find_by_embedding_nearest(
        self,
        vector: Sequence[float],
        category: Optional[str] = None,
        limit: int = config.SEMANTIC_LIMIT,
    ) -> List[Tuple[CatalogEntry, float]]:
        """``(entry, distance)`` pairs, ascending distance, non-deprecated only."""
        raise NotImplementedError

    def find_by_identifier_in(self, identifiers: Iterable[str], include_deprecated: bool = False) -> List[CatalogEntry]:
        raise NotImplementedError


def _text_or_none(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    text = str(value).strip()
    return text or None


def _read_saved_index(path: Path, shape: Tuple[int, ...]):
    """The faiss index at ``path`` if it matches ``shape``, else None."""
    try:
        index = faiss.read_index(str(path))
    except RuntimeError as e:
        logger.warning("Could not read faiss index {}: {}; rebuilding", path, e)
        return None
    if index.ntotal != shape[0] or index.d != shape[1]:
        logger.warning("Saved faiss index {} does not match the embeddings; rebuilding", path)
        return None
    logger.info("Loaded faiss index from {}", path)
    return index


class DataFrameCatalog(Catalog):
    def __init__(self, df: pd.DataFrame, embeddings: Optional[np.ndarray] = None, index=None):
        df = df.reset_index(drop=True)
        for col, default in (("description", None), ("category", None), ("deprecated", False)):
            if col not in df.columns:
                df[col] = default
        self.entries: List[CatalogEntry] = [
            CatalogEntry(
                identifier=str(row.identifier),
                description=_text_or_none(row.description),
                category=_text_or_none(row.category),
                deprecated=bool(row.deprecated) if not pd.isna(row.deprecated) else False,
            )
            for row in df[["identifier", "description", "category", "deprecated"]].itertuples(index=False)
        ]
        self._by_upper: Dict[str, int] = {e.identifier.upper(): i for i, e in enumerate(self.entries)}
        self._ids_upper: List[str] = [e.identifier.upper() for e in self.entries]
        self._desc_lower: List[str] = [(e.description or "").lower() for e in self.entries]
        self._n_deprecated = sum(1 for e in self.entries if e.deprecated)

        self.index = None
        if index is not None and index.ntotal == len(self.entries):
            self.index = index
        elif embeddings is not None:
            self.index = self._build_index(embeddings)
        logger.info(
            "Catalog ready: {} entries ({} deprecated), vector index: {}",
            len(self.entries),
            self._n_deprecated,
            "yes" if self.index is not None else "no",
        )

    def _build_index(self, embeddings: np.ndarray):
        emb = np.asarray(embeddings, dtype="float32")
        if emb.ndim != 2 or emb.shape[0] != len(self.entries):
            logger.warning(
                "Embedding matrix shape {} does not match catalog size {}; vector index disabled",
                emb.shape,
                len(self.entries),
            )
            return None
        emb = np.ascontiguousarray(emb)
        faiss.normalize_L2(emb)
        index = faiss.IndexFlatIP(emb.shape[1])
        index.add(emb)
        return index

    @classmethod
    def from_files(
        cls,
        snapshot_path: Path = config.CATALOG_SNAPSHOT_PATH,
        embeddings_path: Path = config.EMBEDDINGS_PATH,
        ids_mapping_path: Path = config.IDS_MAPPING_PATH,
        faiss_index_path: Optional[Path] = None,
    ) -> "DataFrameCatalog":
        """
        Load the snapshot and, when present and aligned, the item embeddings.

        ``ids.json`` lists the identifier of each embedding row; rows are
        re-ordered to match the snapshot so stale indices are detected. The
        saved faiss index (default: ``faiss.index`` beside the embeddings) is
        reused when its rows already follow snapshot order; otherwise the
        index is rebuilt from the embeddings.
        """
        try:
            df = load_catalog_snapshot(snapshot_path)
        except (OSError, ValueError) as e:
            raise UpstreamUnavailable(f"catalog snapshot unreadable: {e}") from e

        embeddings = None
        index = None
        if faiss_index_path is None:
            faiss_index_path = embeddings_path.parent / config.FAISS_INDEX_PATH.name
        if embeddings_path.exists() and ids_mapping_path.exists():
            emb = np.load(embeddings_path)
            with ids_mapping_path.open("r", encoding="utf-8") as f:
                meta = json.load(f)
            ids = meta.get("ids", []) if isinstance(meta, dict) else list(meta)
            row_of = {str(i).upper(): n for n, i in enumerate(ids)}
            order = [row_of.get(str(i).upper()) for i in df["identifier"]]
            if any(o is None for o in order) or len(ids) != emb.shape[0]:
                logger.warning("Item embeddings are stale (catalog changed); rebuild with embed_index")
            else:
                embeddings = emb[np.asarray(order, dtype="int64")]
                if order == list(range(len(order))) and faiss_index_path.exists():
                    index = _read_saved_index(faiss_index_path, emb.shape)
                if isinstance(meta, dict) and meta.get("model"):
                    logger.info("Loaded item embeddings built with {}", meta["model"])
        else:
            logger.warning("No item embeddings at {}; semantic search disabled", embeddings_path)
        return cls(df, embeddings, index=index)

    @property
    def has_vectors(self) -> bool:
        return self.index is not None

    # ---- helpers ----

    def _visible(self, i: int, include_deprecated: bool) -> bool:
        return include_deprecated or not self.entries[i].deprecated

    def _sorted_by_identifier(self, rows: Iterable[int], limit: int) -> List[CatalogEntry]:
        ordered = sorted(rows, key=lambda i: self._ids_upper[i])
        return [self.entries[i] for i in ordered[:limit]]

    # ---- Catalog contract ----

    def find_by_identifier_exact(self, identifier, include_deprecated=False, limit=config.EXACT_LIMIT):
        i = self._by_upper.get((identifier or "").strip().upper())
        if i is None or not self._visible(i, include_deprecated):
            return []
        return [self.entries[i]][:limit]

    def find_by_identifier_prefix(self, prefix, include_deprecated=False, limit=config.FUZZY_LIMIT):
        p = (prefix or "").strip().upper()
        if not p:
            return []
        rows = (i for i, ident in enumerate(self._ids_upper) if ident.startswith(p) and self._visible(i, include_deprecated))
        return self._sorted_by_identifier(rows, limit)

    def find_by_identifier_substring(self, fragment, include_deprecated=False, limit=config.FUZZY_LIMIT):
        f = (fragment or "").strip().upper()
        if not f:
            return []
        rows = (i for i, ident in enumerate(self._ids_upper) if f in ident and self._visible(i, include_deprecated))
        return self._sorted_by_identifier(rows, limit)

    def find_by_keywords(self, words, include_deprecated=False, limit=config.FULLTEXT_LIMIT):
        needles = [w.lower() for w in words if w]
        if not needles:
            return []
        out: List[CatalogEntry] = []
        for i, entry in enumerate(self.entries):
            if not self._visible(i, include_deprecated):
                continue
            haystack = f"{self._ids_upper[i].lower()} {self._desc_lower[i]}"
            if all(n in haystack for n in needles):
                out.append(entry)
                if len(out) >= limit:
                    break
        return out

    def find_by_description_substring(self, fragment, include_deprecated=False, limit=config.AUTOCOMPLETE_LIMIT):
        f = (fragment or "").strip().lower()
        if not f:
            return []
        rows = (i for i, d in enumerate(self._desc_lower) if f in d and self._visible(i, include_deprecated))
        return self._sorted_by_identifier(rows, limit)

    def find_by_embedding_nearest(self, vector, category=None, limit=config.SEMANTIC_LIMIT):
        if self.index is None:
            raise UpstreamUnavailable("catalog has no vector index")
        q = np.asarray(vector, dtype="float32").reshape(1, -1)
        if q.shape[1] != self.index.d:
            raise UpstreamUnavailable(
                f"query vector has dim {q.shape[1]}, index expects {self.index.d}"
            )
        q = np.ascontiguousarray(q)
        faiss.normalize_L2(q)

        # Over-fetch enough rows to survive the deprecated/category filters.
        k = self.index.ntotal if category else min(self.index.ntotal, limit + self._n_deprecated)
        if k <= 0:
            return []
        sims, rows = self.index.search(q, k)

        cat = category.upper() if category else None
        out: List[Tuple[CatalogEntry, float]] = []
        for sim, row in zip(sims[0], rows[0]):
            if row < 0:
                continue
            entry = self.entries[int(row)]
            if entry.deprecated:
                continue
            if cat and (entry.category or "").upper() != cat:
                continue
            out.append((entry, float(1.0 - sim)))
            if len(out) >= limit:
                break
        return out

    def find_by_identifier_in(self, identifiers, include_deprecated=False):
        out: List[CatalogEntry] = []
        seen = set()
        for ident in identifiers:
            key = (ident or "").strip().upper()
            if not key or key in seen:
                continue
            seen.add(key)
            i = self._by_upper.get(key)
            if i is not None and self._visible(i, include_deprecated):
                out.append(self.entries[i])
        return out
