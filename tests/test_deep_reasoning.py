import asyncio
import json

import pytest

from tcode_search.deep_reasoning import DeepReasoner, build_user_prompt, parse_suggestions
from tcode_search.errors import MalformedResponse
from tcode_search.pipeline_types import SOURCE_KNOWLEDGE, SOURCE_WEB, Candidate

from fakes import FakeModel, make_cache, make_catalog, quiet_settings

MARKER = "comprehensive knowledge"


def _reply(*suggestions):
    return json.dumps(
        {"queryInterpretation": "payroll", "suggestedTCodes": list(suggestions), "ambiguityNotes": None}
    )


def test_confidence_is_clamped_and_defaults_to_half():
    parsed = parse_suggestions(
        _reply(
            {"tcode": "pc00_m10_calc", "confidence": 0.99},
            {"tcode": "ZZ99", "confidence": 0.05},
            {"tcode": "YY01", "confidence": "high"},
            {"tcode": "PC00_M10_CALC", "confidence": 0.6},
            {"description": "no id"},
        )
    )
    assert [s.identifier for s in parsed] == ["PC00_M10_CALC", "ZZ99", "YY01"]
    assert [s.confidence for s in parsed] == [0.85, 0.3, 0.5]
    assert all(s.source == SOURCE_KNOWLEDGE for s in parsed)


def test_parse_caps_suggestions_and_keeps_web_source():
    rows = [{"tcode": f"Z{i:03d}", "confidence": 0.6, "source": SOURCE_WEB} for i in range(8)]
    parsed = parse_suggestions(_reply(*rows))
    assert len(parsed) == 5
    assert parsed[0].source == SOURCE_WEB
    with pytest.raises(MalformedResponse):
        parse_suggestions('{"queryInterpretation": "x"}')


def test_prompt_mentions_existing_candidates_and_web_findings():
    existing = [Candidate(identifier="PA30", description="Maintain HR Master Data", relevance_score=0.4,
                          confidence=0.4, match_type="fulltext")]
    prompt = build_user_prompt("run payroll usa", existing, "x" * 3000)
    assert "best match: 40%" in prompt
    assert "- PA30: Maintain HR Master Data (confidence: 40%)" in prompt
    assert "x" * 1500 + "..." in prompt
    assert "x" * 1501 not in prompt
    assert "No candidates found" in build_user_prompt("q", [])


def test_suggestions_are_checked_against_catalog_and_cached():
    model = FakeModel(
        {
            MARKER: _reply(
                {"tcode": "PC00_M10_CALC", "description": "model text", "module": "HR",
                 "explanation": "US payroll driver", "confidence": 0.8},
                {"tcode": "ZPAY_US", "description": "Custom payroll", "module": "HR", "confidence": 0.7},
            )
        }
    )
    reasoner = DeepReasoner(model, make_catalog(), make_cache(), quiet_settings())

    async def run():
        first = await reasoner.suggest("run payroll usa")
        second = await reasoner.suggest("run payroll usa")
        return first, second

    first, second = asyncio.run(run())

    assert len(model.calls) == 1
    assert model.calls[0]["json_mode"] is True
    assert first == second
    known, unknown = first
    assert known.catalog_validated
    # catalog text wins over model text
    assert known.description == "Run Payroll USA"
    assert known.category == "PY"
    assert known.match_type == "knowledge"
    assert known.confidence == 0.8
    assert not unknown.catalog_validated
    assert unknown.description == "Custom payroll"



def test_context_variants_are_cached_separately():
    model = FakeModel({MARKER: _reply({"tcode": "SE16N", "confidence": 0.6})})
    reasoner = DeepReasoner(model, make_catalog(), make_cache(), quiet_settings())
    ranked = [Candidate(identifier="SE11", relevance_score=0.5, confidence=0.5, match_type="semantic")]
    web = "SE16N is the general table display"

    async def run():
        for _ in range(2):
            await reasoner.suggest("table browser")
            await reasoner.suggest("table browser", existing=ranked)
            await reasoner.suggest("table browser", existing=ranked, web_content=web)

    asyncio.run(run())
    assert len(model.calls) == 3
    assert web not in model.calls[1]["user"]
    assert web in model.calls[2]["user"]


def test_failures_yield_nothing_and_are_not_cached():
    settings = quiet_settings(deep_reasoning_timeout=0.05)
    cache = make_cache()
    for model in (
        FakeModel({MARKER: "not json"}),
        FakeModel({MARKER: _reply()}, delay=1.0),
        FakeModel({}),
    ):
        assert asyncio.run(DeepReasoner(model, make_catalog(), cache, settings).suggest("payroll")) == []

    good = FakeModel({MARKER: _reply({"tcode": "PA30", "confidence": 0.6})})
    out = asyncio.run(DeepReasoner(good, make_catalog(), cache, settings).suggest("payroll"))
    assert [c.identifier for c in out] == ["PA30"]


def test_disabled_reasoner_skips_model():
    model = FakeModel({MARKER: _reply({"tcode": "PA30"})})
    reasoner = DeepReasoner(model, make_catalog(), make_cache(), quiet_settings(deep_reasoning_enabled=False))
    assert asyncio.run(reasoner.suggest("payroll")) == []
    assert model.calls == []
