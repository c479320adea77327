import numpy as np
import pandas as pd
import pytest

from src.models.ols import fit_ols, formula_variables
from src.models.panel import fit_panel_fe
from src.models.results import coefficients_from_spreg, stack_coefficients, stack_stats
from src.models.spatial import (
    fit_spatial,
    fit_spatial_panel,
    spatial_diagnostics,
    stack_panel,
    standardize_columns,
)
from src.spatial.weights import build_weights
from tests.conftest import make_grid


def _linear_data(n=400, seed=0):
    rng = np.random.default_rng(seed)
    df = pd.DataFrame(
        {
            "x1": rng.normal(size=n),
            "x2": rng.normal(size=n),
            "cat": rng.integers(1, 4, n),
            "g": rng.integers(0, 20, n),
            "wt": rng.uniform(0.5, 2.0, n),
        }
    )
    df["y"] = 1.0 + 2.0 * df["x1"] - 0.5 * df["x2"] + 0.3 * df["cat"] + rng.normal(0, 0.5, n)
    return df


def test_formula_variables_in_data_order():
    df = _linear_data(10)
    assert formula_variables("y ~ x2 + C(cat) + np.log(wt)", df) == ["x2", "cat", "wt", "y"]


def test_fit_ols_recovers_coefficients_and_drops_missing_rows():
    df = _linear_data()
    df.loc[:9, "x2"] = np.nan
    res = fit_ols(df, "y ~ x1 + x2 + C(cat)", cov_type="HC1")
    assert res.nobs == len(df) - 10
    assert res.coef("x1") == pytest.approx(2.0, abs=0.1)
    assert res.coef("x2") == pytest.approx(-0.5, abs=0.1)
    assert res.kind == "ols"
    assert {"r2", "adj_r2", "log_likelihood", "aic"} <= set(res.stats)
    with pytest.raises(KeyError):
        res.coef("x3")


def test_fit_ols_weighted_and_clustered():
    df = _linear_data()
    res = fit_ols(df, "y ~ x1 + x2", weights_col="wt", cluster_col="g", cov_type="cluster", name="WLS")
    assert res.kind == "wls"
    assert res.stats["n_clusters"] == df["g"].nunique()
    assert res.coef("x1") == pytest.approx(2.0, abs=0.1)

    with pytest.raises(ValueError, match="cluster_col"):
        fit_ols(df, "y ~ x1", cov_type="cluster")
    with pytest.raises(ValueError, match="Unknown cov_type"):
        fit_ols(df, "y ~ x1", cov_type="HC9")


def _did_panel(n_units=60, years=(2011, 2015, 2019, 2023), effect=0.05, seed=4):
    rng = np.random.default_rng(seed)
    rows = []
    for u in range(n_units):
        alpha = rng.normal(0.3, 0.05)
        adoption = 2017 if u < n_units // 3 else None
        for t, year in enumerate(years):
            treat_post = int(adoption is not None and year >= adoption)
            y = alpha + 0.01 * t + effect * treat_post + rng.normal(0, 0.005)
            rows.append({"section_id": f"s{u:03d}", "year": year, "treat_post": treat_post, "y": y})
    return pd.DataFrame(rows)


def test_fit_panel_fe_recovers_did_effect():
    panel = _did_panel()
    res = fit_panel_fe(panel, "y", ["treat_post"])
    assert res.kind == "panel_fe"
    assert res.nobs == len(panel)
    assert res.coef("treat_post") == pytest.approx(0.05, abs=0.005)
    assert res.stats["n_entities"] == panel["section_id"].nunique()

    for cluster in ["time", "both", "none"]:
        assert fit_panel_fe(panel, "y", ["treat_post"], cluster=cluster).coef("treat_post") == pytest.approx(
            res.coef("treat_post")
        )
    with pytest.raises(ValueError, match="Unknown cluster"):
        fit_panel_fe(panel, "y", ["treat_post"], cluster="bogus")
    with pytest.raises(ValueError, match="Duplicate rows"):
        fit_panel_fe(pd.concat([panel, panel.iloc[:1]]), "y", ["treat_post"])


def _spatial_frame(rho=0.5, seed=8):
    rng = np.random.default_rng(seed)
    gdf = make_grid(8, 8, 100.0, "geoid", lambda i: f"t{i:03d}")
    gdf = gdf.set_index("geoid", drop=False).rename_axis(None)
    w = build_weights(gdf, "queen")
    n = len(gdf)
    x = rng.normal(size=(n, 2))
    eps = rng.normal(0, 0.5, n)
    y = np.linalg.solve(np.eye(n) - rho * w.full()[0], 1.0 + x @ np.array([1.5, -1.0]) + eps)
    df = pd.DataFrame({"y": y, "x1": x[:, 0], "x2": x[:, 1]}, index=gdf.index)
    return df, w


def test_spatial_cross_section_models():
    df, w = _spatial_frame()
    diag = spatial_diagnostics(df, "y", ["x1", "x2"], w)
    assert {"lm_lag_stat", "lm_lag_p", "lm_error_p", "moran_res_I"} <= set(diag)
    assert diag["lm_lag_p"] < 0.05

    sar = fit_spatial(df, "y", ["x1", "x2"], w, kind="lag", method="ml")
    assert sar.kind == "spatial_lag"
    assert sar.nobs == len(df)
    assert sar.coef("x1") == pytest.approx(1.5, abs=0.3)
    assert 0.1 < sar.stats["rho"] < 0.9

    for kind, method in [("lag", "gm"), ("error", "ml"), ("error", "gm"), ("sarar", "gm")]:
        res = fit_spatial(df, "y", ["x1", "x2"], w, kind=kind, method=method)
        assert res.coef("x1") == pytest.approx(1.5, abs=0.5)
        assert len(res.residuals) == len(df)

    with pytest.raises(ValueError, match="Unknown spatial model kind"):
        fit_spatial(df, "y", ["x1"], w, kind="durbin")
    with pytest.raises(ValueError, match="Unknown estimation method"):
        fit_spatial(df, "y", ["x1"], w, kind="lag", method="gmm")
    with pytest.raises(ValueError, match="id order"):
        fit_spatial(df.iloc[::-1], "y", ["x1"], w)


def test_coefficients_from_spreg_names_terms():
    df, w = _spatial_frame()
    sar = fit_spatial(df, "y", ["x1", "x2"], w, kind="lag", method="ml")
    table = coefficients_from_spreg(sar.raw)
    assert table["term"].tolist() == ["CONSTANT", "x1", "x2", "W_y"]
    assert table["std_err"].notna().all()

    gm_lag = fit_spatial(df, "y", ["x1", "x2"], w, kind="lag", method="gm")
    assert gm_lag.coefficients["term"].tolist() == ["CONSTANT", "x1", "x2", "W_y"]
    assert "rho" in gm_lag.stats

    gm_error = fit_spatial(df, "y", ["x1", "x2"], w, kind="error", method="gm")
    assert gm_error.coefficients["term"].tolist() == ["CONSTANT", "x1", "x2", "lambda"]
    assert gm_error.stats["lambda"] == pytest.approx(gm_error.coef("lambda"))

    sarar = fit_spatial(df, "y", ["x1", "x2"], w, kind="sarar")
    assert sarar.coefficients["term"].tolist() == ["CONSTANT", "x1", "x2", "W_y", "lambda"]
    assert {"rho", "lambda"} <= set(sarar.stats)
    assert sarar.stats["rho"] == pytest.approx(sarar.coef("W_y"))
    assert sarar.stats["lambda"] == pytest.approx(sarar.coef("lambda"))


def test_standardize_columns():
    df = pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [10.0, 10.0, 40.0], "keep": [1, 2, 3]})
    out = standardize_columns(df, ["a", "b"])
    assert np.allclose(out[["a", "b"]].mean(), 0.0)
    assert out["keep"].tolist() == [1, 2, 3]


def test_stack_panel_is_time_major_in_weights_order():
    df, w = _spatial_frame()
    ids = list(w.id_order)
    panel = pd.DataFrame(
        {"section_id": ids[::-1] * 2, "year": [2019] * len(ids) + [2015] * len(ids), "y": 0.0}
    )
    stacked = stack_panel(panel, w)
    assert stacked["year"].tolist() == [2015] * len(ids) + [2019] * len(ids)
    assert stacked["section_id"].tolist()[: len(ids)] == ids

    with pytest.raises(ValueError, match="Unbalanced"):
        stack_panel(panel.iloc[1:], w)


def test_fit_spatial_panel():
    rng = np.random.default_rng(2)
    _, w = _spatial_frame()
    ids = list(w.id_order)
    rows = []
    for year in [2011, 2015, 2019]:
        x = rng.normal(size=len(ids))
        for sid, xi in zip(ids, x):
            rows.append({"section_id": sid, "year": year, "x": xi, "y": 2.0 * xi + rng.normal(0, 0.3)})
    panel = pd.DataFrame(rows)

    lag = fit_spatial_panel(panel, "y", ["x"], w, kind="lag", name="Panel SAR")
    err = fit_spatial_panel(panel, "y", ["x"], w, kind="error")
    assert lag.nobs == len(panel)
    assert lag.coef("x") == pytest.approx(2.0, abs=0.2)
    assert err.coef("x") == pytest.approx(2.0, abs=0.2)
    assert err.kind == "spatial_panel_error"

    results = [lag, err]
    assert stack_coefficients(results)["model"].unique().tolist() == ["Panel SAR", "Panel FE error"]
    assert stack_stats(results)["nobs"].tolist() == [len(panel)] * 2

    with pytest.raises(ValueError, match="complete data"):
        fit_spatial_panel(panel.assign(x=np.nan), "y", ["x"], w)
