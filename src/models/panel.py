from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from linearmodels.panel import PanelOLS

from src.config import SECTION_ID_COL, YEAR_COL
from src.data.validate import assert_required_columns, assert_unique_key
from .results import FitResult, coefficients_from_series


def fit_panel_fe(
    df: pd.DataFrame,
    dependent: str,
    regressors: Sequence[str],
    *,
    name: str = "TWFE",
    entity_col: str = SECTION_ID_COL,
    time_col: str = YEAR_COL,
    entity_effects: bool = True,
    time_effects: bool = True,
    cluster: str = "entity",
) -> FitResult:
    """Fixed-effects panel regression with linearmodels' PanelOLS.

    With both effects on this is the two-way fixed-effects difference-in-
    differences estimator; `cluster` is "entity", "time", "both" or "none".
    """

    regressors = list(regressors)
    if not regressors:
        raise ValueError("PanelOLS needs at least one regressor")
    assert_required_columns(df, [dependent, entity_col, time_col] + regressors)
    assert_unique_key(df, [entity_col, time_col])

    data = df[[entity_col, time_col, dependent] + regressors].dropna().copy()
    data[entity_col] = data[entity_col].astype(str)
    data[time_col] = data[time_col].astype(int)
    data = data.set_index([entity_col, time_col]).sort_index()

    rhs = " + ".join(regressors)
    if entity_effects:
        rhs += " + EntityEffects"
    if time_effects:
        rhs += " + TimeEffects"
    if not (entity_effects or time_effects):
        rhs = "1 + " + rhs
    model = PanelOLS.from_formula(f"{dependent} ~ {rhs}", data=data, drop_absorbed=True)

    if cluster == "none":
        res = model.fit(cov_type="robust")
    elif cluster in {"entity", "time", "both"}:
        res = model.fit(
            cov_type="clustered",
            cluster_entity=cluster in {"entity", "both"},
            cluster_time=cluster in {"time", "both"},
        )
    else:
        raise ValueError(f"Unknown cluster option: {cluster!r}")

    stats = {
        "r2": float(res.rsquared_within),
        "r2_overall": float(res.rsquared_overall),
        "log_likelihood": float(res.loglik),
        "n_entities": float(res.entity_info["total"]),
    }
    return FitResult(
        name=name,
        kind="panel_fe",
        nobs=int(res.nobs),
        coefficients=coefficients_from_series(res.params, res.std_errors, res.tstats, res.pvalues),
        stats=stats,
        residuals=np.asarray(res.resids, dtype=float),
        raw=res,
    )
