from __future__ import annotations

import numpy as np
import pandas as pd

from src.config import GEOID_COL, HOUSEHOLD_WEIGHT_COL


def _weighted_mean(values: np.ndarray, weights: np.ndarray) -> float:
    w_sum = float(weights.sum())
    if w_sum <= 0:
        return np.nan
    return float(np.sum(values * weights) / w_sum)


def bootstrap_tract_rate_draws(
    household_table: pd.DataFrame,
    *,
    group_col: str = GEOID_COL,
    value_col: str = "trip_rate",
    weight_col: str = HOUSEHOLD_WEIGHT_COL,
    n_boot: int,
    seed: int,
) -> pd.DataFrame:
    """Resample households within each group and recompute the weighted mean.

    Returns long draws: one row per (group, iter).
    """

    if n_boot <= 0:
        return pd.DataFrame(columns=[group_col, "iter", value_col])

    rng = np.random.default_rng(seed)
    rows = []
    for key, grp in household_table.groupby(group_col, sort=True):
        v = grp[value_col].to_numpy(dtype=float)
        w = grp[weight_col].to_numpy(dtype=float)
        n = v.size
        idx = rng.integers(0, n, size=(n_boot, n), endpoint=False)
        for i in range(n_boot):
            rows.append({group_col: key, "iter": i, value_col: _weighted_mean(v[idx[i]], w[idx[i]])})
    return pd.DataFrame(rows)


def summarize_bootstrap_ci(
    draws: pd.DataFrame,
    *,
    group_col: str = GEOID_COL,
    value_col: str = "trip_rate",
    alpha: float = 0.05,
) -> pd.DataFrame:
    if draws.empty:
        return pd.DataFrame(columns=[group_col, "ci_low", "ci_high", "boot_se"])
    lo = float(100.0 * (alpha / 2.0))
    hi = float(100.0 * (1.0 - alpha / 2.0))
    rows = []
    for key, grp in draws.groupby(group_col, sort=True):
        vals = grp[value_col].dropna().to_numpy(dtype=float)
        if vals.size == 0:
            rows.append({group_col: key, "ci_low": np.nan, "ci_high": np.nan, "boot_se": np.nan})
            continue
        rows.append(
            {
                group_col: key,
                "ci_low": float(np.percentile(vals, lo)),
                "ci_high": float(np.percentile(vals, hi)),
                "boot_se": float(np.std(vals, ddof=1)) if vals.size > 1 else np.nan,
            }
        )
    return pd.DataFrame(rows)

