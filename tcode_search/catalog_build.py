from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger

from .config import CATALOG_RAW_DIR, CATALOG_SNAPSHOT_PATH
from .normalize import basic_clean


# ---------------------------
# Column detection / standardization
# ---------------------------

# Exports come from different tools, so we support multiple header variants.
COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "identifier": [
        "identifier",
        "tcode",
        "T-Code",
        "Transaction Code",
        "Transaction",
        "code",
    ],
    "description": [
        "description",
        "Description",
        "desc",
        "Short Text",
        "Transaction Text",
        "text",
    ],
    "category": [
        "category",
        "module",
        "Module",
        "Application Component",
        "component",
    ],
    "deprecated_raw": [
        "deprecated",
        "is_deprecated",
        "isDeprecated",
        "Obsolete",
    ],
}

SNAPSHOT_COLUMNS = ["identifier", "description", "category", "deprecated"]

_IDENTIFIER_RE = re.compile(r"^[A-Z0-9_/\-]{1,40}$")


def _standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename columns from a raw export to the canonical internal schema:
    identifier, description, category, deprecated_raw.
    """
    col_map: Dict[str, str] = {}
    lower_to_original = {str(c).lower(): c for c in df.columns}

    for canon, candidates in COLUMN_CANDIDATES.items():
        for candidate in candidates:
            if candidate in df.columns:
                col_map[candidate] = canon
                break
            cand_lower = candidate.lower()
            if cand_lower in lower_to_original:
                col_map[lower_to_original[cand_lower]] = canon
                break

    logger.info("Standardizing columns with map: {}", col_map)
    df_std = df.rename(columns=col_map)

    if "identifier" not in df_std.columns:
        logger.warning("Raw catalog has no identifier column; found {}", list(df.columns))
    return df_std


# ---------------------------
# Field parsing helpers
# ---------------------------

def canonical_identifier(value) -> str:
    """Upper-case, strip surrounding whitespace. Empty string if unusable."""
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    ident = str(value).strip().upper()
    if not _IDENTIFIER_RE.match(ident):
        return ""
    return ident


def parse_deprecated(value) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return False if pd.isna(value) else bool(value)
    return str(value).strip().lower() in {"true", "yes", "y", "1", "x", "obsolete"}


def _optional_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    text = basic_clean(value)
    return text or None


def normalize_catalog_df(df_raw: pd.DataFrame) -> pd.DataFrame:
    """
    Turn a raw export into the snapshot schema.

    Rows without a usable identifier are dropped; duplicate identifiers keep
    the first row that has a description.
    """
    logger.info("Normalizing catalog dataframe with {} raw rows", len(df_raw))
    df = _standardize_columns(df_raw)

    if "identifier" not in df.columns:
        logger.error("No identifier column found after standardization; resulting catalog will be empty.")
        return pd.DataFrame(columns=SNAPSHOT_COLUMNS)

    out = pd.DataFrame()
    out["identifier"] = df["identifier"].map(canonical_identifier)
    out["description"] = df["description"].map(_optional_text) if "description" in df.columns else None
    out["category"] = (
        df["category"].map(_optional_text).map(lambda v: v.upper() if v else None)
        if "category" in df.columns
        else None
    )
    out["deprecated"] = (
        df["deprecated_raw"].map(parse_deprecated) if "deprecated_raw" in df.columns else False
    )

    before = len(out)
    out = out[out["identifier"] != ""]
    if len(out) < before:
        logger.warning("Dropped {} rows without a usable identifier", before - len(out))

    # Prefer rows that carry a description when an identifier repeats.
    out = out.assign(_has_desc=out["description"].notna())
    out = out.sort_values("_has_desc", ascending=False, kind="stable")
    out = out.drop_duplicates(subset="identifier", keep="first").drop(columns="_has_desc")
    out = out.sort_values("identifier", kind="stable").reset_index(drop=True)

    logger.info("Catalog normalization complete. Final rows: {}", len(out))
    return out[SNAPSHOT_COLUMNS]


# ---------------------------
# IO helpers
# ---------------------------

def read_table(path: Path) -> pd.DataFrame:
    ext = path.suffix.lower()
    if ext == ".parquet":
        return pd.read_parquet(path)
    if ext in (".xlsx", ".xls"):
        return pd.read_excel(path)
    return pd.read_csv(path, encoding="utf-8")


def load_raw_catalog(path: Optional[Path] = None) -> pd.DataFrame:
    """
    Load a raw catalog export.

    If no path is provided, we take the first .csv found under data/catalog_raw.
    """
    if path is None:
        candidates = sorted(CATALOG_RAW_DIR.glob("*.csv"))
        if not candidates:
            raise FileNotFoundError(
                f"No .csv files found under {CATALOG_RAW_DIR}. "
                f"Place the catalog export there and re-run."
            )
        path = candidates[0]

    logger.info("Loading raw catalog from {}", path)
    df = read_table(path)
    logger.info("Loaded {} rows from raw catalog", len(df))
    return df


def build_catalog_snapshot(
    raw_path: Optional[Path] = None,
    output_path: Path = CATALOG_SNAPSHOT_PATH,
) -> Path:
    """
    End-to-end: load raw export -> normalize -> write Parquet snapshot.
    """
    df_raw = load_raw_catalog(raw_path)
    df_norm = normalize_catalog_df(df_raw)

    logger.info("Writing catalog snapshot to {}", output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df_norm.to_parquet(output_path, index=False)
    logger.info("Catalog snapshot written with {} rows", len(df_norm))
    return output_path


def load_catalog_snapshot(path: Path = CATALOG_SNAPSHOT_PATH) -> pd.DataFrame:
    """
    Load a normalized snapshot. CSV snapshots are normalized on the fly.
    """
    logger.info("Loading catalog snapshot from {}", path)
    df = read_table(path)
    if path.suffix.lower() != ".parquet" or list(df.columns) != SNAPSHOT_COLUMNS:
        df = normalize_catalog_df(df)
    logger.info("Loaded catalog snapshot with {} rows", len(df))
    return df


# ---------------------------
# CLI entrypoint
# ---------------------------

if __name__ == "__main__":
    # python -m tcode_search.catalog_build
    build_catalog_snapshot()
