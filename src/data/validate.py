from typing import Dict, Iterable, List, Sequence, Union

import pandas as pd


def assert_required_columns(df, required: Iterable[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def assert_unique_key(df: pd.DataFrame, keys: Union[str, Sequence[str]]) -> None:
    keys = [keys] if isinstance(keys, str) else list(keys)
    dup = df.duplicated(subset=keys, keep=False)
    if dup.any():
        examples = df.loc[dup, keys].drop_duplicates().head(5).to_dict(orient="records")
        raise ValueError(f"Duplicate rows for key {keys}: {int(dup.sum())} rows, e.g. {examples}")


def join_audit(left: pd.DataFrame, right: pd.DataFrame, on: Union[str, Sequence[str]]) -> Dict[str, int]:
    """Count key matches between two tables before a join."""

    on = [on] if isinstance(on, str) else list(on)
    lk = pd.MultiIndex.from_frame(left[on].astype("string"))
    rk = pd.MultiIndex.from_frame(right[on].drop_duplicates().astype("string"))
    in_right = lk.isin(rk)
    in_left = rk.isin(lk.unique())
    return {
        "on": on,
        "left_rows": int(len(left)),
        "right_keys": int(len(rk)),
        "left_matched": int(in_right.sum()),
        "left_unmatched": int((~in_right).sum()),
        "right_unmatched": int((~in_left).sum()),
    }


def assert_balanced_panel(df: pd.DataFrame, unit: str, time: str) -> None:
    assert_unique_key(df, [unit, time])
    counts = df.groupby(unit)[time].nunique()
    n_periods = df[time].nunique()
    short = counts[counts != n_periods]
    if len(short) > 0:
        raise ValueError(
            f"Unbalanced panel: {len(short)} of {len(counts)} units are not observed in all "
            f"{n_periods} periods (e.g. {short.index[:5].tolist()})"
        )


def varying_columns(df: pd.DataFrame, cols: Iterable[str]) -> List[str]:
    """Columns that take more than one non-missing value in `df`."""

    return [c for c in cols if df[c].nunique(dropna=True) > 1]
