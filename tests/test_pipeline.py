import asyncio
import json

import pytest

from tcode_search.feedback import apply_feedback_boost, score_from_totals
from tcode_search.locale_boost import apply_locale_boost, detect_locales
from tcode_search.pipeline import CATALOG_UNAVAILABLE, SEARCH_FAILED, clamp_limit, final_sort
from tcode_search.pipeline_types import Candidate
from tcode_search.stores import InMemoryFeedbackStore, StaticLocaleStore

from fakes import DownCatalog, FakeEmbedder, FakeModel, make_pipeline, quiet_settings


def _search(pipeline, query, limit=5):
    return asyncio.run(pipeline.search(query, limit))


def test_exact_identifier_comes_first_and_is_pinned():
    response = _search(make_pipeline(), "ME21N")
    assert response.results[0].tcode == "ME21N"
    assert response.results[0].match_type == "exact"
    assert response.results[0].confidence == 1.0
    assert response.error is None


def test_descriptive_query_finds_the_right_identifier():
    response = _search(make_pipeline(embedder=FakeEmbedder()), "create purchase order")
    top = response.results[0]
    assert top.tcode == "ME21N"
    assert top.confidence >= 0.8
    assert top.explanation


def test_results_are_unique_bounded_and_sorted():
    response = _search(make_pipeline(embedder=FakeEmbedder()), "purchase order", limit=10)
    ids = [r.tcode.upper() for r in response.results]
    assert len(ids) == len(set(ids))
    assert 0 < len(ids) <= 10
    assert all(0.0 <= r.confidence <= 1.0 for r in response.results)
    assert all(0.0 <= r.relevance_score <= 1.0 for r in response.results)
    confidences = [r.confidence for r in response.results]
    assert confidences == sorted(confidences, reverse=True)
    # deprecated rows never surface
    assert "ME21" not in ids


def test_second_search_is_served_from_cache():
    embedder = FakeEmbedder()
    pipeline = make_pipeline(embedder=embedder)

    first = _search(pipeline, "purchase order")
    calls = len(embedder.calls)
    second = _search(pipeline, "purchase order")

    assert not first.cached
    assert second.cached
    assert [r.tcode for r in second.results] == [r.tcode for r in first.results]
    assert [r.confidence for r in second.results] == [r.confidence for r in first.results]
    assert len(embedder.calls) == calls
    # a different limit is a different cache entry
    assert not _search(pipeline, "purchase order", limit=3).cached


def test_locale_in_query_promotes_country_variant():
    response = _search(make_pipeline(embedder=FakeEmbedder()), "run payroll usa")
    ids = [r.tcode for r in response.results]
    assert ids[0] == "PC00_M10_CALC"
    if "PC00_M01_CALC" in ids:
        assert ids.index("PC00_M01_CALC") > ids.index("PC00_M10_CALC")


def test_nonsense_query_with_everything_off_is_empty_not_error():
    response = _search(make_pipeline(), "qzxv wplk")
    assert response.results == []
    assert response.error is None
    assert not response.timed_out


def test_nothing_found_falls_back_to_model_knowledge():
    reply = json.dumps(
        {
            "suggestedTCodes": [
                {"tcode": "ZQZX01", "description": "Custom report", "confidence": 0.7},
                {"tcode": "SE16N", "description": "model text", "confidence": 0.6},
            ]
        }
    )
    model = FakeModel({"comprehensive knowledge": reply})
    response = _search(make_pipeline(model=model), "qzxv wplk")

    by_id = {r.tcode: r for r in response.results}
    assert set(by_id) == {"ZQZX01", "SE16N"}
    assert by_id["SE16N"].catalog_validated
    assert by_id["SE16N"].description == "General Table Display"
    assert not by_id["ZQZX01"].catalog_validated
    assert all(r.match_type == "knowledge" for r in response.results)


def test_unreachable_catalog_is_reported():
    response = _search(make_pipeline(catalog=DownCatalog()), "ME21N")
    assert response.results == []
    assert response.error == CATALOG_UNAVAILABLE


def test_overall_deadline_returns_partial_results():
    settings = quiet_settings(overall_timeout=0.3, rerank_timeout=5.0, expansion_enabled=False)
    model = FakeModel({"explain why each T-code": '{"results": []}'}, delay=2.0)
    pipeline = make_pipeline(settings=settings, model=model)

    response = _search(pipeline, "ME21N")
    assert response.timed_out
    assert response.results[0].tcode == "ME21N"
    assert response.processing_time_ms < 2000
    # partial results are never cached
    assert not _search(pipeline, "ME21N").cached


def test_unexpected_stage_failure_keeps_partial_results():
    pipeline = make_pipeline()

    async def broken(candidates):
        raise RuntimeError("boom")

    pipeline.feedback.boost = broken
    response = _search(pipeline, "ME21N")
    assert response.error == SEARCH_FAILED
    assert response.results[0].tcode == "ME21N"


def test_feedback_votes_move_ranking():
    store = InMemoryFeedbackStore([("ME21N", -1)] * 50)
    pipeline = make_pipeline(feedback_store=store)
    response = _search(pipeline, "ME2", limit=10)
    ids = [r.tcode for r in response.results]
    assert ids[-1] == "ME21N"
    assert response.results[-1].confidence < response.results[0].confidence


def test_locale_and_feedback_boosts_commute_below_caps():
    active = detect_locales("usa", StaticLocaleStore().list_all())[0]
    cands = [
        Candidate(identifier="PC00_M10_CALC", relevance_score=0.4, confidence=0.4, match_type="semantic"),
        Candidate(identifier="PC00_M01_CALC", relevance_score=0.6, confidence=0.6, match_type="semantic"),
    ]
    scores = {"PC00_M10_CALC": score_from_totals("PC00_M10_CALC", 3, 3)}

    a = apply_feedback_boost(apply_locale_boost(cands, active), scores)
    b = apply_locale_boost(apply_feedback_boost(cands, scores), active)
    for x, y in zip(a, b):
        assert x.confidence == pytest.approx(y.confidence)
        assert x.relevance_score == pytest.approx(y.relevance_score)


def test_autocomplete_prefix_then_description():
    pipeline = make_pipeline()
    assert [e.identifier for e in asyncio.run(pipeline.autocomplete("ME2"))] == ["ME21N", "ME22N", "ME23N"]
    assert [e.identifier for e in asyncio.run(pipeline.autocomplete("payroll"))] == ["PC00_M01_CALC", "PC00_M10_CALC"]
    assert asyncio.run(make_pipeline(catalog=DownCatalog()).autocomplete("ME2")) == []


def test_final_sort_and_limit_helpers():
    cands = [
        Candidate(identifier="B", relevance_score=0.5, match_type="fuzzy"),
        Candidate(identifier="A", relevance_score=0.9, match_type="fuzzy"),
        Candidate(identifier="b", relevance_score=0.99, match_type="fuzzy"),
        Candidate(identifier="C", relevance_score=0.5, match_type="fuzzy"),
    ]
    assert [c.identifier for c in final_sort(cands, 5)] == ["A", "B", "C"]
    assert clamp_limit(None) == 5
    assert clamp_limit(0) == 1
    assert clamp_limit(50) == 10
