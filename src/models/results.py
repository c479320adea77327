from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

COEFFICIENT_COLUMNS = ["term", "coef", "std_err", "stat", "p_value"]


@dataclass
class FitResult:
    name: str
    kind: str
    nobs: int
    coefficients: pd.DataFrame
    stats: Dict[str, float] = field(default_factory=dict)
    residuals: Optional[np.ndarray] = None
    raw: Any = None

    def coef(self, term: str) -> float:
        row = self.coefficients.loc[self.coefficients["term"] == term, "coef"]
        if row.empty:
            raise KeyError(term)
        return float(row.iloc[0])

    def to_frame(self) -> pd.DataFrame:
        out = self.coefficients.copy()
        out.insert(0, "model", self.name)
        out.insert(1, "kind", self.kind)
        return out


def coefficients_from_series(params, std_errors, stats, pvalues) -> pd.DataFrame:
    """Coefficient table from aligned pandas Series (statsmodels, linearmodels)."""

    return pd.DataFrame(
        {
            "term": [str(t) for t in params.index],
            "coef": np.asarray(params, dtype=float),
            "std_err": np.asarray(std_errors.reindex(params.index), dtype=float),
            "stat": np.asarray(stats.reindex(params.index), dtype=float),
            "p_value": np.asarray(pvalues.reindex(params.index), dtype=float),
        }
    )[COEFFICIENT_COLUMNS]


def _pad(values, n: int) -> np.ndarray:
    arr = np.full(n, np.nan)
    vals = np.asarray(values, dtype=float).ravel()[:n]
    arr[: vals.size] = vals
    return arr


def spreg_terms(model) -> List[str]:
    """Names of the rows of `model.betas`.

    Estimators with endogenous regressors (GM_Lag, GM_Combo) keep the spatial
    lag and lambda in `name_z`; the others append them to `name_x`.
    """

    n = np.asarray(model.betas).size
    names: List[str] = [str(t) for t in (getattr(model, "name_z", None) or getattr(model, "name_x", []))][:n]
    return names + [f"x{i}" for i in range(len(names), n)]


def coefficients_from_spreg(model) -> pd.DataFrame:
    """Coefficient table from a fitted spreg model.

    spreg keeps betas, standard errors and (z|t, p) tuples as separate arrays
    whose lengths differ across estimators: some report no standard error for
    the spatial error parameter. Missing entries are left as NaN.
    """

    betas = np.asarray(model.betas, dtype=float).ravel()
    n = betas.size
    names = spreg_terms(model)

    tests: Sequence = getattr(model, "z_stat", None)
    if tests is None:
        tests = getattr(model, "t_stat", None)
    tests = [] if tests is None else list(tests)
    stat = _pad([t[0] for t in tests], n)
    p_value = _pad([t[1] for t in tests], n)
    std_err = _pad(getattr(model, "std_err", []), n)

    return pd.DataFrame(
        {"term": names, "coef": betas, "std_err": std_err, "stat": stat, "p_value": p_value}
    )[COEFFICIENT_COLUMNS]


def spreg_stats(model) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key, attr in [
        ("r2", "r2"),
        ("adj_r2", "ar2"),
        ("pseudo_r2", "pr2"),
        ("log_likelihood", "logll"),
        ("aic", "aic"),
        ("schwarz", "schwarz"),
        ("rho", "rho"),
        ("lambda", "lam"),
    ]:
        value = getattr(model, attr, None)
        if value is None:
            continue
        try:
            out[key] = float(np.asarray(value, dtype=float).ravel()[0])
        except (TypeError, ValueError, IndexError):
            continue
    if "lambda" not in out:
        names = spreg_terms(model)
        if "lambda" in names:
            out["lambda"] = float(np.asarray(model.betas, dtype=float).ravel()[names.index("lambda")])
    return out


def stack_coefficients(results: Sequence[FitResult]) -> pd.DataFrame:
    if not results:
        return pd.DataFrame(columns=["model", "kind"] + COEFFICIENT_COLUMNS)
    return pd.concat([r.to_frame() for r in results], ignore_index=True)


def stack_stats(results: Sequence[FitResult]) -> pd.DataFrame:
    rows = [{"model": r.name, "kind": r.kind, "nobs": r.nobs, **r.stats} for r in results]
    return pd.DataFrame(rows)
