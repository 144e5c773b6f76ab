from __future__ import annotations

"""
Item embedding builder.

Embeds ``"{identifier}: {description}"`` for every catalog row with the
configured embedding service and persists:

* ``item_embeddings.npy``: float32 matrix, one row per identifier
* ``ids.json``: ``{"model": ..., "ids": [...]}`` row order and encoder name
* ``faiss.index``: inner-product index over the L2-normalised rows

``DataFrameCatalog.from_files`` reads all three back, reusing the faiss file
while its rows still follow snapshot order.

The query-time embedding service must be the same model the items were
embedded with, otherwise the vector index is rejected on dimension mismatch.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import faiss
import numpy as np
import pandas as pd
from loguru import logger

from .catalog_build import load_catalog_snapshot
from .clients import EmbeddingService, build_embedding_service
from .config import (
    CATALOG_SNAPSHOT_PATH,
    EMBEDDINGS_PATH,
    FAISS_INDEX_PATH,
    IDS_MAPPING_PATH,
    SearchSettings,
)


def build_item_text(identifier: str, description: Optional[str]) -> str:
    desc = (description or "").strip()
    return f"{identifier}: {desc}" if desc else identifier


def item_texts(df: pd.DataFrame) -> List[str]:
    return [
        build_item_text(str(ident), None if pd.isna(desc) else str(desc))
        for ident, desc in zip(df["identifier"], df["description"])
    ]


async def embed_catalog(df: pd.DataFrame, embedder: EmbeddingService) -> np.ndarray:
    texts = item_texts(df)
    logger.info("Building dense embeddings for {} catalog items with {}", len(texts), embedder.name)
    if not texts:
        return np.zeros((0, 1), dtype="float32")
    emb = await embedder.embed_many(texts)
    return np.asarray(emb, dtype="float32")


def write_dense_index(
    embeddings: np.ndarray,
    identifiers: List[str],
    model_name: str,
    embeddings_path: Path = EMBEDDINGS_PATH,
    faiss_index_path: Path = FAISS_INDEX_PATH,
    ids_mapping_path: Path = IDS_MAPPING_PATH,
) -> None:
    embeddings = np.ascontiguousarray(embeddings, dtype="float32")

    embeddings_path.parent.mkdir(parents=True, exist_ok=True)
    np.save(embeddings_path, embeddings, allow_pickle=False)
    logger.info("Saved item embeddings to {}", embeddings_path)

    with ids_mapping_path.open("w", encoding="utf-8") as f:
        json.dump({"model": model_name, "ids": list(identifiers)}, f)
    logger.info("IDs mapping written to {}", ids_mapping_path)

    if embeddings.shape[0] == 0:
        logger.warning("Catalog is empty; skipping faiss index")
        return
    normed = embeddings.copy()
    faiss.normalize_L2(normed)
    index = faiss.IndexFlatIP(normed.shape[1])
    index.add(normed)
    faiss.write_index(index, str(faiss_index_path))
    logger.info("FAISS index written to {} (dim={})", faiss_index_path, normed.shape[1])


async def build_all_indices(
    catalog_path: Path = CATALOG_SNAPSHOT_PATH,
    embedder: Optional[EmbeddingService] = None,
) -> None:
    df = load_catalog_snapshot(catalog_path)
    if embedder is None:
        embedder = build_embedding_service(SearchSettings.from_env())
    if not embedder.enabled:
        raise RuntimeError("No embedding service configured; set OPENAI_API_KEY or EMBEDDING_BACKEND=local")

    emb = await embed_catalog(df, embedder)
    write_dense_index(emb, df["identifier"].astype(str).tolist(), embedder.name)
    logger.info("All indices built successfully.")


if __name__ == "__main__":
    # python -m tcode_search.embed_index
    asyncio.run(build_all_indices())
