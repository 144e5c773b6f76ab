from __future__ import annotations

"""
Offline accuracy check: run the pipeline over ``query,expected`` pairs and
report hit@k and mean latency.

    python -m tcode_search.eval --cases cases.csv --k 1 3 5
"""

import argparse
import asyncio
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

import pandas as pd
from loguru import logger

from . import config
from .pipeline import SearchPipeline, build_pipeline

# ---------- IO helpers ----------

def _read_any(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    ext = path.suffix.lower()
    if ext in [".xlsx", ".xls"]:
        df = pd.read_excel(path)
    else:
        df = pd.read_csv(path, encoding="utf-8")
    cols = {c.lower(): c for c in df.columns}
    qcol, ecol = cols.get("query"), cols.get("expected")
    if not qcol or not ecol:
        raise ValueError(f"Expected columns 'query' and 'expected'. Found: {list(df.columns)}")
    return df.rename(columns={qcol: "query", ecol: "expected"})


def _normalize_query_key(q: str) -> str:
    q = str(q or "").strip()
    return re.sub(r"\s+", " ", q)


def _split_expected(value) -> Set[str]:
    """``expected`` may list alternatives separated by ``|`` or ``;``."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return set()
    parts = re.split(r"[|;]", str(value))
    return {p.strip().upper() for p in parts if p.strip()}


# ---------- gold sets ----------

def build_gold_sets(cases_file: Path) -> Dict[str, Set[str]]:
    """normalized query -> {acceptable identifiers}"""
    df = _read_any(cases_file)
    gold: Dict[str, Set[str]] = {}
    for _, row in df.iterrows():
        q_key = _normalize_query_key(row["query"])
        expected = _split_expected(row["expected"])
        if q_key and expected:
            gold.setdefault(q_key, set()).update(expected)
    return gold


# ---------- metrics ----------

def hit_at_k(gold: Set[str], predicted: Sequence[str], k: int) -> float:
    """1.0 if any acceptable identifier is in the top ``k``."""
    if not gold:
        return 0.0
    top = {p.upper() for p in predicted[:k]}
    return 1.0 if gold & top else 0.0


def evaluate(
    preds: Dict[str, List[str]],
    gold: Dict[str, Set[str]],
    ks=(1, 3, 5),
) -> Dict[int, float]:
    scores = {k: 0.0 for k in ks}
    n = 0
    for q_key, predicted in preds.items():
        if q_key not in gold:
            continue
        for k in ks:
            scores[k] += hit_at_k(gold[q_key], predicted, k)
        n += 1
    if n == 0:
        return {k: 0.0 for k in ks}
    return {k: scores[k] / n for k in ks}


# ---------- runner ----------

async def run_cases(
    pipeline: SearchPipeline,
    queries: Sequence[str],
    limit: int = config.RESULT_MAX,
) -> Dict[str, object]:
    """Returns ``{"preds": {query: [ids]}, "latencies_ms": [...]}``."""
    preds: Dict[str, List[str]] = {}
    latencies: List[float] = []
    for q in queries:
        started = time.perf_counter()
        response = await pipeline.search(q, limit)
        latencies.append((time.perf_counter() - started) * 1000)
        if response.error:
            logger.warning("Query '{}' failed: {}", q, response.error)
        preds[q] = [r.tcode for r in response.results]
    return {"preds": preds, "latencies_ms": latencies}


def mean_latency(latencies: Sequence[float]) -> float:
    return sum(latencies) / len(latencies) if latencies else 0.0


# ---------- CLI ----------

def main(argv: Optional[Sequence[str]] = None, pipeline: Optional[SearchPipeline] = None) -> Dict[int, float]:
    ap = argparse.ArgumentParser()
    ap.add_argument("--cases", type=Path, required=True, help="CSV/XLSX with 'query' and 'expected' columns")
    ap.add_argument("--k", type=int, nargs="+", default=[1, 3, 5])
    ap.add_argument("--limit", type=int, default=config.RESULT_MAX)
    args = ap.parse_args(argv)

    gold = build_gold_sets(args.cases)
    pipeline = pipeline or build_pipeline()
    run = asyncio.run(run_cases(pipeline, list(gold), limit=args.limit))

    scores = evaluate(run["preds"], gold, ks=args.k)
    for k in args.k:
        print(f"Hit@{k}: {scores[k]:.4f}")
    print(f"Mean latency: {mean_latency(run['latencies_ms']):.0f} ms over {len(gold)} queries")
    return scores


if __name__ == "__main__":
    main()
