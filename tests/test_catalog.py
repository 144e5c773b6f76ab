import json

import numpy as np
import pytest

from tcode_search.catalog import DataFrameCatalog
from tcode_search.catalog_build import normalize_catalog_df
from tcode_search.embed_index import write_dense_index
from tcode_search.errors import UpstreamUnavailable

from fakes import bag_of_words, catalog_df, make_catalog


def _ids(entries):
    return [e.identifier for e in entries]


def test_exact_lookup_is_case_insensitive_and_skips_deprecated():
    catalog = make_catalog()
    assert _ids(catalog.find_by_identifier_exact("me21n")) == ["ME21N"]
    assert catalog.find_by_identifier_exact("ME21") == []
    assert _ids(catalog.find_by_identifier_exact("ME21", include_deprecated=True)) == ["ME21"]


def test_prefix_and_substring_are_sorted_by_identifier():
    catalog = make_catalog()
    assert _ids(catalog.find_by_identifier_prefix("me2")) == ["ME21N", "ME22N", "ME23N"]
    assert _ids(catalog.find_by_identifier_substring("_calc")) == ["PC00_M01_CALC", "PC00_M10_CALC"]


def test_keywords_require_every_word():
    catalog = make_catalog()
    assert _ids(catalog.find_by_keywords(["purchase", "order"])) == ["ME21N", "ME22N", "ME23N"]
    assert _ids(catalog.find_by_keywords(["create", "order"])) == ["ME21N", "VA01"]
    assert catalog.find_by_keywords([]) == []


def test_identifier_in_dedupes_and_filters():
    catalog = make_catalog()
    found = catalog.find_by_identifier_in(["va01", "VA01", "ME21", "NOPE", "FB50"])
    assert _ids(found) == ["VA01", "FB50"]


def test_nearest_neighbours_rank_by_similarity():
    catalog = make_catalog()
    rows = catalog.find_by_embedding_nearest(bag_of_words("create sales order"), None, 3)
    assert rows[0][0].identifier == "VA01"
    distances = [d for _, d in rows]
    assert distances == sorted(distances)
    assert all(e.identifier != "ME21" for e, _ in rows)


def test_nearest_neighbours_category_filter():
    catalog = make_catalog()
    rows = catalog.find_by_embedding_nearest(bag_of_words("create order"), "sd", 5)
    assert [e.identifier for e, _ in rows] == ["VA01"]


def test_nearest_without_index_raises():
    catalog = make_catalog(with_vectors=False)
    assert catalog.has_vectors is False
    with pytest.raises(UpstreamUnavailable):
        catalog.find_by_embedding_nearest([1.0, 0.0], None, 5)


def test_nearest_rejects_dimension_mismatch():
    catalog = make_catalog()
    with pytest.raises(UpstreamUnavailable):
        catalog.find_by_embedding_nearest([1.0, 0.0, 0.0], None, 5)


def test_from_files_reorders_embeddings_to_snapshot(tmp_path):
    df = normalize_catalog_df(catalog_df())
    snapshot = tmp_path / "catalog.parquet"
    df.to_parquet(snapshot, index=False)

    # embeddings written in reverse order
    ids = list(reversed(df["identifier"].tolist()))
    emb = np.asarray([bag_of_words(i) for i in ids], dtype="float32")
    np.save(tmp_path / "emb.npy", emb)
    (tmp_path / "ids.json").write_text(json.dumps({"model": "fake", "ids": ids}))

    catalog = DataFrameCatalog.from_files(snapshot, tmp_path / "emb.npy", tmp_path / "ids.json")
    assert catalog.has_vectors
    rows = catalog.find_by_embedding_nearest(bag_of_words("FB50"), None, 1)
    assert rows[0][0].identifier == "FB50"


def test_from_files_ignores_stale_embeddings(tmp_path):
    df = normalize_catalog_df(catalog_df())
    snapshot = tmp_path / "catalog.parquet"
    df.to_parquet(snapshot, index=False)
    np.save(tmp_path / "emb.npy", np.ones((2, 4), dtype="float32"))
    (tmp_path / "ids.json").write_text(json.dumps(["ME21N", "VA01"]))

    catalog = DataFrameCatalog.from_files(snapshot, tmp_path / "emb.npy", tmp_path / "ids.json")
    assert catalog.has_vectors is False
    assert _ids(catalog.find_by_identifier_exact("ME21N")) == ["ME21N"]


def _write_aligned_files(tmp_path):
    df = normalize_catalog_df(catalog_df())
    snapshot = tmp_path / "catalog.parquet"
    df.to_parquet(snapshot, index=False)
    ids = df["identifier"].tolist()
    emb = np.asarray([bag_of_words(i) for i in ids], dtype="float32")
    write_dense_index(emb, ids, "fake", tmp_path / "emb.npy", tmp_path / "faiss.index", tmp_path / "ids.json")
    return snapshot


def test_from_files_reuses_saved_faiss_index(tmp_path, monkeypatch):
    snapshot = _write_aligned_files(tmp_path)

    def rebuilt(self, embeddings):
        raise AssertionError("index was rebuilt")

    monkeypatch.setattr(DataFrameCatalog, "_build_index", rebuilt)
    catalog = DataFrameCatalog.from_files(snapshot, tmp_path / "emb.npy", tmp_path / "ids.json")
    assert catalog.has_vectors
    rows = catalog.find_by_embedding_nearest(bag_of_words("FB50"), None, 1)
    assert rows[0][0].identifier == "FB50"


def test_from_files_rebuilds_mismatched_faiss_index(tmp_path):
    snapshot = _write_aligned_files(tmp_path)
    # an index left over from a smaller catalog
    write_dense_index(np.ones((2, 4), dtype="float32"), ["A", "B"], "old", tmp_path / "old.npy",
                      tmp_path / "faiss.index", tmp_path / "old.json")

    catalog = DataFrameCatalog.from_files(snapshot, tmp_path / "emb.npy", tmp_path / "ids.json")
    assert catalog.index.ntotal == len(catalog.entries)
    rows = catalog.find_by_embedding_nearest(bag_of_words("FB50"), None, 1)
    assert rows[0][0].identifier == "FB50"


def test_from_files_missing_snapshot_is_upstream_unavailable(tmp_path):
    with pytest.raises(UpstreamUnavailable):
        DataFrameCatalog.from_files(tmp_path / "missing.parquet", tmp_path / "e.npy", tmp_path / "i.json")
