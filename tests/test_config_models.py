from pathlib import Path

import pytest
from pydantic import ValidationError

from tcode_search.config import HealthResponse, SearchResponse, SearchResultItem, SearchSettings


def test_settings_defaults():
    s = SearchSettings()
    assert s.openai_api_key is None
    assert s.web_fallback_threshold == 0.8
    assert s.judge_top_n == 5
    assert s.expansion_enabled and s.judge_enabled
    assert not s.deep_reasoning_on_web_miss


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENAI_API_KEY", " sk-test ")
    monkeypatch.setenv("BRAVE_API_KEY", "")
    monkeypatch.setenv("JUDGE_ENABLED", "false")
    monkeypatch.setenv("DEEP_REASONING_ON_WEB_MISS", "yes")
    monkeypatch.setenv("EMBEDDING_BACKEND", "LOCAL")
    monkeypatch.setenv("FEEDBACK_LOG_PATH", str(tmp_path / "votes.jsonl"))
    monkeypatch.delenv("REDIS_URL", raising=False)

    s = SearchSettings.from_env()
    assert s.openai_api_key == "sk-test"
    assert s.brave_api_key is None
    assert s.redis_url is None
    assert s.judge_enabled is False
    assert s.deep_reasoning_on_web_miss is True
    assert s.embedding_backend == "local"
    assert s.feedback_log_path == Path(tmp_path / "votes.jsonl")


def test_settings_reject_bad_limits():
    with pytest.raises(ValidationError):
        SearchSettings(rerank_timeout=0)
    with pytest.raises(ValidationError):
        SearchSettings(web_fallback_threshold=1.5)


def test_result_item_scores_are_bounded():
    item = SearchResultItem(tcode="ME21N", relevance_score=1.0, confidence=0.9, match_type="exact", explanation="x")
    assert item.source == "catalog"
    assert item.catalog_validated
    with pytest.raises(ValidationError):
        SearchResultItem(tcode="ME21N", relevance_score=1.2, confidence=0.9, match_type="exact", explanation="x")


def test_search_response_structure():
    resp = SearchResponse(query="q", results=[])
    assert resp.error is None
    assert not resp.cached and not resp.timed_out
    assert HealthResponse(status="healthy").status == "healthy"
