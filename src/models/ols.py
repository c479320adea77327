from __future__ import annotations

import re
from typing import Iterable, Optional

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from .results import FitResult, coefficients_from_series

COV_TYPES = ("nonrobust", "HC1", "cluster")
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def formula_variables(formula: str, data: pd.DataFrame) -> list[str]:
    """Columns of `data` referenced by a formula, in data order."""

    names = set(_NAME_RE.findall(formula))
    return [c for c in data.columns if c in names]


def fit_ols(
    df: pd.DataFrame,
    formula: str,
    *,
    name: str = "OLS",
    weights_col: Optional[str] = None,
    cluster_col: Optional[str] = None,
    cov_type: str = "HC1",
    extra_cols: Iterable[str] = (),
) -> FitResult:
    """OLS (or WLS when `weights_col` is set) through the statsmodels formula API.

    Rows with missing values in any model column are dropped up front so that
    cluster groups stay aligned with the estimation sample.
    """

    if cov_type not in COV_TYPES:
        raise ValueError(f"Unknown cov_type {cov_type!r}; expected one of {COV_TYPES}")
    if cov_type == "cluster" and cluster_col is None:
        raise ValueError("cov_type='cluster' needs cluster_col")

    used = formula_variables(formula, df) + [c for c in [weights_col, cluster_col, *extra_cols] if c]
    data = df[list(dict.fromkeys(used))].dropna().copy()
    if data.empty:
        raise ValueError(f"No complete rows for formula: {formula}")

    if weights_col:
        model = smf.wls(formula, data=data, weights=data[weights_col].astype(float))
    else:
        model = smf.ols(formula, data=data)

    if cov_type == "cluster":
        groups = pd.factorize(data[cluster_col])[0]
        res = model.fit(cov_type="cluster", cov_kwds={"groups": groups})
    else:
        res = model.fit(cov_type=cov_type)

    stats = {
        "r2": float(res.rsquared),
        "adj_r2": float(res.rsquared_adj),
        "log_likelihood": float(res.llf),
        "aic": float(res.aic),
    }
    if cov_type == "cluster":
        stats["n_clusters"] = float(np.unique(groups).size)

    return FitResult(
        name=name,
        kind="ols" if not weights_col else "wls",
        nobs=int(res.nobs),
        coefficients=coefficients_from_series(res.params, res.bse, res.tvalues, res.pvalues),
        stats=stats,
        residuals=np.asarray(res.resid, dtype=float),
        raw=res,
    )
