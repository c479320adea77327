from __future__ import annotations

from typing import Dict, Sequence, Tuple

import numpy as np
import pandas as pd
import spreg
from libpysal.weights import W
from sklearn.preprocessing import StandardScaler

from src.config import SECTION_ID_COL, SPATIAL_METHOD, YEAR_COL
from src.data.validate import assert_balanced_panel, assert_required_columns
from .results import FitResult, coefficients_from_spreg, spreg_stats

SPATIAL_KINDS = ("lag", "error", "sarar")
SPATIAL_METHODS = ("ml", "gm")
PANEL_KINDS = ("lag", "error")


def standardize_columns(df: pd.DataFrame, cols: Sequence[str]) -> pd.DataFrame:
    out = df.copy()
    cols = list(cols)
    out[cols] = StandardScaler().fit_transform(out[cols].to_numpy(dtype=float))
    return out


def _arrays(df: pd.DataFrame, dependent: str, regressors: Sequence[str], w: W) -> Tuple[np.ndarray, np.ndarray]:
    regressors = list(regressors)
    assert_required_columns(df, [dependent] + regressors)
    if len(df) != w.n:
        raise ValueError(f"Data has {len(df)} rows but weights cover {w.n} units")
    if list(df.index) != list(w.id_order):
        raise ValueError("Data index does not follow the weights id order")
    data = df[[dependent] + regressors]
    if data.isna().any().any():
        raise ValueError("Spatial models need complete data; subset rows and align weights first")
    y = data[dependent].to_numpy(dtype=float).reshape(-1, 1)
    x = data[regressors].to_numpy(dtype=float)
    return y, x


def spatial_diagnostics(df: pd.DataFrame, dependent: str, regressors: Sequence[str], w: W) -> Dict[str, float]:
    """Lagrange-multiplier tests and residual Moran's I from a spreg OLS fit."""

    y, x = _arrays(df, dependent, regressors, w)
    ols = spreg.OLS(y, x, w=w, spat_diag=True, moran=True, name_y=dependent, name_x=list(regressors))
    out: Dict[str, float] = {}
    for key in ["lm_lag", "lm_error", "rlm_lag", "rlm_error", "lm_sarma"]:
        test = getattr(ols, key, None)
        if test is not None:
            out[f"{key}_stat"] = float(test[0])
            out[f"{key}_p"] = float(test[1])
    moran = getattr(ols, "moran_res", None)
    if moran is not None:
        out["moran_res_I"] = float(moran[0])
        out["moran_res_z"] = float(moran[1])
        out["moran_res_p"] = float(moran[2])
    return out


def fit_spatial(
    df: pd.DataFrame,
    dependent: str,
    regressors: Sequence[str],
    w: W,
    *,
    kind: str = "lag",
    method: str = SPATIAL_METHOD,
    name: str = "",
) -> FitResult:
    """Cross-sectional spatial autoregressive models from spreg.

    lag is the SAR model (rho on Wy), error the SEM model (lambda on Wu), and
    sarar carries both; sarar is only available through GMM (GM_Combo).
    """

    if kind not in SPATIAL_KINDS:
        raise ValueError(f"Unknown spatial model kind {kind!r}; expected one of {SPATIAL_KINDS}")
    if method not in SPATIAL_METHODS:
        raise ValueError(f"Unknown estimation method {method!r}; expected one of {SPATIAL_METHODS}")

    y, x = _arrays(df, dependent, regressors, w)
    names = dict(name_y=dependent, name_x=list(regressors))
    if kind == "lag":
        model = spreg.ML_Lag(y, x, w=w, **names) if method == "ml" else spreg.GM_Lag(y, x, w=w, w_lags=1, **names)
    elif kind == "error":
        model = spreg.ML_Error(y, x, w=w, **names) if method == "ml" else spreg.GM_Error(y, x, w=w, **names)
    else:
        model = spreg.GM_Combo(y, x, w=w, w_lags=1, **names)
        method = "gm"

    residuals = getattr(model, "u", None)
    return FitResult(
        name=name or f"{kind.upper()} ({method.upper()})",
        kind=f"spatial_{kind}",
        nobs=int(model.n),
        coefficients=coefficients_from_spreg(model),
        stats=spreg_stats(model),
        residuals=None if residuals is None else np.asarray(residuals, dtype=float).ravel(),
        raw=model,
    )


def stack_panel(
    df: pd.DataFrame,
    w: W,
    *,
    unit_col: str = SECTION_ID_COL,
    time_col: str = YEAR_COL,
) -> pd.DataFrame:
    """Order a balanced panel time-major, units in the id order of `w`."""

    assert_balanced_panel(df, unit_col, time_col)
    units = df[unit_col].astype(str)
    order = {str(u): i for i, u in enumerate(w.id_order)}
    unknown = sorted(set(units) - set(order))
    if unknown or units.nunique() != w.n:
        raise ValueError(
            f"Panel units do not match the weights: {units.nunique()} units vs {w.n} ids"
            + (f", e.g. {unknown[:5]} not in weights" if unknown else "")
        )
    out = df.assign(_pos=units.map(order)).sort_values([time_col, "_pos"], kind="mergesort")
    return out.drop(columns="_pos").reset_index(drop=True)


def fit_spatial_panel(
    df: pd.DataFrame,
    dependent: str,
    regressors: Sequence[str],
    w: W,
    *,
    kind: str = "lag",
    unit_col: str = SECTION_ID_COL,
    time_col: str = YEAR_COL,
    name: str = "",
) -> FitResult:
    """Fixed-effects spatial panel models (spreg Panel_FE_Lag / Panel_FE_Error)."""

    if kind not in PANEL_KINDS:
        raise ValueError(f"Unknown spatial panel kind {kind!r}; expected one of {PANEL_KINDS}")
    regressors = list(regressors)
    assert_required_columns(df, [unit_col, time_col, dependent] + regressors)
    if df[[dependent] + regressors].isna().any().any():
        raise ValueError("Spatial panel models need complete data")

    stacked = stack_panel(df, w, unit_col=unit_col, time_col=time_col)
    y = stacked[dependent].to_numpy(dtype=float).reshape(-1, 1)
    x = stacked[regressors].to_numpy(dtype=float)
    names = dict(name_y=dependent, name_x=regressors)
    if kind == "lag":
        model = spreg.Panel_FE_Lag(y, x, w, **names)
    else:
        model = spreg.Panel_FE_Error(y, x, w, **names)

    residuals = getattr(model, "u", None)
    return FitResult(
        name=name or f"Panel FE {kind}",
        kind=f"spatial_panel_{kind}",
        nobs=len(stacked),
        coefficients=coefficients_from_spreg(model),
        stats=spreg_stats(model),
        residuals=None if residuals is None else np.asarray(residuals, dtype=float).ravel(),
        raw=model,
    )
