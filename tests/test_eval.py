import asyncio

import pandas as pd

from tcode_search.eval import build_gold_sets, evaluate, hit_at_k, main, mean_latency, run_cases

from fakes import make_pipeline


def test_hit_at_k_basic():
    gold = {"ME21N", "ME21"}
    preds = ["VA01", "me21n", "FB50"]
    assert hit_at_k(gold, preds, k=1) == 0.0
    assert hit_at_k(gold, preds, k=2) == 1.0
    assert hit_at_k(set(), preds, k=3) == 0.0


def test_evaluate_multiple_queries():
    gold = {"q1": {"A"}, "q2": {"X"}}
    preds = {"q1": ["A", "Z"], "q2": ["Y", "X"], "unlabelled": ["A"]}
    scores = evaluate(preds, gold, ks=(1, 2))
    assert abs(scores[1] - 0.5) < 1e-6
    assert abs(scores[2] - 1.0) < 1e-6


def test_build_gold_sets_merges_alternatives(tmp_path):
    path = tmp_path / "cases.csv"
    pd.DataFrame(
        {
            "Query": ["create  purchase order", "create purchase order", "sales order"],
            "Expected": ["ME21N|ME21", "me25", None],
        }
    ).to_csv(path, index=False)

    gold = build_gold_sets(path)
    assert gold == {"create purchase order": {"ME21N", "ME21", "ME25"}}


def test_run_cases_and_cli(tmp_path, capsys):
    pipeline = make_pipeline()
    run = asyncio.run(run_cases(pipeline, ["ME21N", "VA01"], limit=3))
    assert run["preds"]["ME21N"][0] == "ME21N"
    assert len(run["latencies_ms"]) == 2
    assert mean_latency([]) == 0.0

    path = tmp_path / "cases.csv"
    pd.DataFrame({"query": ["ME21N", "FB50"], "expected": ["ME21N", "FB50;FB01"]}).to_csv(path, index=False)
    scores = main(["--cases", str(path), "--k", "1", "3"], pipeline=pipeline)

    assert scores == {1: 1.0, 3: 1.0}
    out = capsys.readouterr().out
    assert "Hit@1: 1.0000" in out
    assert "Mean latency" in out
