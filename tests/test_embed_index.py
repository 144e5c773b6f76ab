import asyncio
import json

import faiss
import numpy as np

from tcode_search.catalog import DataFrameCatalog
from tcode_search.embed_index import build_item_text, embed_catalog, item_texts, write_dense_index

from fakes import FakeEmbedder, catalog_df


def test_item_text_joins_identifier_and_description():
    assert build_item_text("ME21N", " Create Purchase Order ") == "ME21N: Create Purchase Order"
    assert build_item_text("ZTEST", None) == "ZTEST"
    assert item_texts(catalog_df())[0] == "ME21N: Create Purchase Order"


def test_embed_catalog_uses_the_embedder():
    embedder = FakeEmbedder()
    df = catalog_df()
    emb = asyncio.run(embed_catalog(df, embedder))
    assert emb.shape == (len(df), 512)
    assert emb.dtype == np.float32
    assert embedder.calls[1] == "ME22N: Change Purchase Order"


def test_write_dense_index_round_trips_through_catalog(tmp_path):
    df = catalog_df()
    emb = asyncio.run(embed_catalog(df, FakeEmbedder()))
    emb_path, index_path, ids_path = tmp_path / "emb.npy", tmp_path / "faiss.index", tmp_path / "ids.json"

    write_dense_index(emb, df["identifier"].tolist(), "fake-bow", emb_path, index_path, ids_path)

    assert np.load(emb_path).shape == emb.shape
    meta = json.loads(ids_path.read_text(encoding="utf-8"))
    assert meta["model"] == "fake-bow"
    assert meta["ids"][0] == "ME21N"
    assert faiss.read_index(str(index_path)).ntotal == len(df)

    snapshot = tmp_path / "catalog.csv"
    df.to_csv(snapshot, index=False)
    catalog = DataFrameCatalog.from_files(snapshot, emb_path, ids_path)
    assert catalog.has_vectors


def test_write_dense_index_skips_faiss_for_empty_catalog(tmp_path):
    write_dense_index(
        np.zeros((0, 4), dtype="float32"),
        [],
        "fake",
        tmp_path / "emb.npy",
        tmp_path / "faiss.index",
        tmp_path / "ids.json",
    )
    assert (tmp_path / "emb.npy").exists()
    assert not (tmp_path / "faiss.index").exists()
