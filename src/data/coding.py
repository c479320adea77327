from __future__ import annotations

import re
from typing import Dict, Optional

import numpy as np
import pandas as pd


_NORMALIZE_RE = re.compile(r"[^0-9a-zA-Z]+")
_FLOAT_SUFFIX_RE = re.compile(r"\.0+$")


def _normalize_name(name: str) -> str:
    return _NORMALIZE_RE.sub("_", name).strip("_").lower()


def normalize_column_names(df: pd.DataFrame) -> Dict[str, str]:
    """Return a normalized-name -> exact-name mapping for df columns.

    This does not modify the DataFrame. It supports resilient lookups across
    extracts where column casing/spacing differs between survey waves.
    """

    mapping: Dict[str, str] = {}
    collisions: Dict[str, list[str]] = {}

    for col in df.columns.astype(str).tolist():
        norm = _normalize_name(col)
        if norm in mapping and mapping[norm] != col:
            collisions.setdefault(norm, sorted({mapping[norm], col}))
        mapping[norm] = col

    if collisions:
        raise ValueError(f"Normalized column name collisions: {collisions}")

    return mapping


def standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename columns to their normalized snake_case form."""

    mapping = normalize_column_names(df)
    return df.rename(columns={exact: norm for norm, exact in mapping.items()})


def normalize_id(series: pd.Series, width: Optional[int] = None) -> pd.Series:
    """Return identifiers as strings, zero-padded to `width` when given.

    Census identifiers often arrive as floats after a CSV round trip
    (6037101110.0) and lose their leading zero; both are repaired here.
    Missing values stay missing.
    """

    def _one(v):
        if pd.isna(v):
            return pd.NA
        if isinstance(v, (float, np.floating)) and float(v).is_integer():
            s = str(int(v))
        else:
            s = _FLOAT_SUFFIX_RE.sub("", str(v).strip())
        if width is not None and s.isdigit():
            s = s.zfill(width)
        return s

    return series.map(_one).astype("string")


def coerce_categorical(series: pd.Series, *, numeric_to_string: bool = True, prefix: str = "cat_") -> pd.Series:
    """Convert a Series to pandas categorical dtype.

    If numeric_to_string=True and the series is numeric, non-missing codes are
    mapped to labels like 'cat_3' so income brackets are not read as ordinal.
    """

    s = series.copy()

    if numeric_to_string and pd.api.types.is_numeric_dtype(s):

        def _to_cat(v):
            if pd.isna(v):
                return np.nan
            fv = float(v)
            if fv.is_integer():
                return f"{prefix}{int(fv)}"
            return f"{prefix}{fv}"

        s = s.map(_to_cat)
    else:
        s = s.astype("string")

    return s.astype("category")


def summarize_missingness(df: pd.DataFrame) -> pd.DataFrame:
    """Return per-column missingness summary in stable column order."""

    n = len(df)
    rows = []
    for col in df.columns.astype(str).tolist():
        n_missing = int(df[col].isna().sum())
        missing_rate = round(n_missing / n, 6) if n else np.nan
        rows.append({"column": col, "n": n, "n_missing": n_missing, "missing_rate": missing_rate})
    return pd.DataFrame(rows)
