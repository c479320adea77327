from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.config import (  # noqa: E402
    BOOTSTRAP_ALPHA,
    BOOTSTRAP_N,
    FIGURES_DIR,
    GEOID_COL,
    GEOID_WIDTH,
    HOUSEHOLD_RHS,
    HOUSEHOLD_TABLE_FILE,
    HOUSEHOLD_WEIGHT_COL,
    LOGS_DIR,
    MAXP_ATTRS,
    MAXP_ITERATIONS_SA,
    MAXP_THRESHOLD,
    MAXP_TOP_N,
    MORAN_PERMUTATIONS,
    RANDOM_SEED,
    SPATIAL_METHOD,
    TABLES_DIR,
    TRACT_GEOMETRY_FILE,
    TRACT_RHS,
    TRACT_TABLE_FILE,
    TRACT_WEIGHTS_FILE,
    TRIP_RATE_COL,
)
from src.data.ingest import read_geometries  # noqa: E402
from src.evaluation.bootstrap import bootstrap_tract_rate_draws, summarize_bootstrap_ci  # noqa: E402
from src.evaluation.metrics import regression_fit_metrics  # noqa: E402
from src.models.ols import fit_ols  # noqa: E402
from src.models.results import FitResult, stack_coefficients, stack_stats  # noqa: E402
from src.models.spatial import fit_spatial, spatial_diagnostics, standardize_columns  # noqa: E402
from src.reporting.figures import plot_regions  # noqa: E402
from src.reporting.tables import STARS_NOTE, coefficient_table, write_table  # noqa: E402
from src.spatial.autocorrelation import moran_table  # noqa: E402
from src.spatial.regionalization import region_membership, run_maxp, summarize_regions  # noqa: E402
from src.spatial.weights import align_weights, load_weights, weights_summary  # noqa: E402
from src.utils.logging import input_fingerprints, runtime_metadata, write_json  # noqa: E402


def rhs_formula(dependent: str, terms: List[str]) -> str:
    return f"{dependent} ~ " + " + ".join(terms)


def fitted_values(result: FitResult) -> np.ndarray:
    raw = result.raw
    if hasattr(raw, "fittedvalues"):
        return np.asarray(raw.fittedvalues, dtype=float)
    return np.asarray(raw.predy, dtype=float).ravel()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Trip-rate regressions, spatial models and max-p regionalization over census tracts."
    )
    parser.add_argument("--household-table", type=Path, default=HOUSEHOLD_TABLE_FILE)
    parser.add_argument("--tract-table", type=Path, default=TRACT_TABLE_FILE)
    parser.add_argument("--tract-geometry", type=Path, default=TRACT_GEOMETRY_FILE)
    parser.add_argument("--weights", type=Path, default=TRACT_WEIGHTS_FILE)
    parser.add_argument("--tables-dir", type=Path, default=TABLES_DIR)
    parser.add_argument("--figures-dir", type=Path, default=FIGURES_DIR)
    parser.add_argument("--logs-dir", type=Path, default=LOGS_DIR)
    parser.add_argument("--method", choices=["ml", "gm"], default=SPATIAL_METHOD)
    parser.add_argument("--maxp-threshold", type=float, default=MAXP_THRESHOLD)
    parser.add_argument("--maxp-top-n", type=int, default=MAXP_TOP_N)
    parser.add_argument("--n-boot", type=int, default=BOOTSTRAP_N)
    parser.add_argument("--permutations", type=int, default=MORAN_PERMUTATIONS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    args = parser.parse_args()

    for path in [args.household_table, args.tract_table, args.tract_geometry, args.weights]:
        if not path.exists():
            raise SystemExit(f"Input not found: {path}. Run scripts/01_build_trip_rates.py first.")
    if args.n_boot < 0:
        raise SystemExit("--n-boot must be >= 0.")
    if args.maxp_threshold <= 0:
        raise SystemExit("--maxp-threshold must be positive.")

    households = pd.read_parquet(args.household_table)
    tracts = pd.read_parquet(args.tract_table)
    geometry = read_geometries(args.tract_geometry, GEOID_COL, GEOID_WIDTH)
    w_all = load_weights(args.weights)

    tables = args.tables_dir
    outputs: Dict[str, str] = {}

    def _write(df: pd.DataFrame, stem: str, title: str, note: str = "") -> None:
        for path in write_table(df, tables / stem, title, note):
            outputs[path.name] = str(path)

    # Household-level models: survey attributes plus home-tract accessibility.
    hh = households.merge(tracts[[GEOID_COL] + TRACT_RHS], on=GEOID_COL, how="left", validate="many_to_one")
    hh_formula = rhs_formula(TRIP_RATE_COL, HOUSEHOLD_RHS + TRACT_RHS)
    hh_models = [
        fit_ols(hh, hh_formula, name="Household OLS", cluster_col=GEOID_COL, cov_type="cluster"),
        fit_ols(
            hh,
            hh_formula,
            name="Household WLS",
            weights_col=HOUSEHOLD_WEIGHT_COL,
            cluster_col=GEOID_COL,
            cov_type="cluster",
        ),
    ]
    _write(
        coefficient_table(hh_models),
        "trip_rate_household_models",
        "Household trip rate: OLS and survey-weighted WLS",
        STARS_NOTE + " Standard errors clustered by home tract.",
    )

    # Tract-level models on adequately sampled tracts with complete accessibility data.
    model_cols = [TRIP_RATE_COL] + TRACT_RHS
    sample = tracts.loc[tracts["adequate"]].dropna(subset=model_cols).set_index(GEOID_COL)
    in_sample = set(sample.index)
    ids = [g for g in w_all.id_order if g in in_sample]
    if len(ids) < len(in_sample):
        raise SystemExit(
            f"{len(in_sample) - len(ids)} adequate tracts are missing from {args.weights}. "
            "Rebuild the weights with scripts/01_build_trip_rates.py."
        )
    if len(ids) < len(TRACT_RHS) + 3:
        raise SystemExit(f"Only {len(ids)} adequate tracts with complete data; too few for tract-level models.")
    sample = standardize_columns(sample.loc[ids], TRACT_RHS)
    w_tract = align_weights(w_all, ids)

    tract_ols = fit_ols(sample, rhs_formula(TRIP_RATE_COL, TRACT_RHS), name="OLS", cov_type="HC1")
    diagnostics = spatial_diagnostics(sample, TRIP_RATE_COL, TRACT_RHS, w_tract)
    tract_models = [
        tract_ols,
        fit_spatial(sample, TRIP_RATE_COL, TRACT_RHS, w_tract, kind="lag", method=args.method, name="SAR"),
        fit_spatial(sample, TRIP_RATE_COL, TRACT_RHS, w_tract, kind="error", method=args.method, name="SEM"),
        fit_spatial(sample, TRIP_RATE_COL, TRACT_RHS, w_tract, kind="sarar", method="gm", name="SARAR"),
    ]
    _write(
        coefficient_table(tract_models),
        "trip_rate_tract_models",
        "Tract trip rate: OLS and spatial autoregressive models",
        STARS_NOTE + " Regressors standardized.",
    )
    _write(stack_coefficients(tract_models), "trip_rate_tract_coefficients_long", "Tract model coefficients")
    _write(pd.DataFrame([diagnostics]), "trip_rate_spatial_diagnostics", "Spatial diagnostics of the tract OLS")

    moran = moran_table(
        {TRIP_RATE_COL: sample[TRIP_RATE_COL], "ols_residual": tract_ols.residuals},
        w_tract,
        permutations=args.permutations,
        seed=args.seed,
    )
    _write(moran, "trip_rate_morans_i", "Moran's I of tract trip rates and OLS residuals")

    # Sampling uncertainty of tract rates.
    draws = bootstrap_tract_rate_draws(households, n_boot=args.n_boot, seed=args.seed)
    ci = summarize_bootstrap_ci(draws, alpha=BOOTSTRAP_ALPHA)
    ci[GEOID_COL] = ci[GEOID_COL].astype("string")
    rate_cols = [GEOID_COL, "n_households", "n_trips", TRIP_RATE_COL, "adequate"]
    tract_ci = tracts.loc[tracts["n_households"] > 0, rate_cols].merge(ci, on=GEOID_COL, how="left")
    _write(tract_ci, "trip_rate_tract_bootstrap_ci", "Tract trip rates with household bootstrap intervals")

    # Max-p regions over every tract with geometry, pooling thinly sampled tracts.
    gdf = geometry.loc[list(w_all.id_order), ["geometry"]].join(tracts.set_index(GEOID_COL))
    labels, n_regions = run_maxp(
        gdf,
        w_all,
        MAXP_ATTRS,
        "n_households",
        args.maxp_threshold,
        top_n=args.maxp_top_n,
        seed=args.seed,
    )
    regions = summarize_regions(gdf, labels, mean_cols=TRACT_RHS)
    plot_regions(gdf, labels, args.figures_dir / "maxp_regions.png")
    outputs["maxp_regions.png"] = str(args.figures_dir / "maxp_regions.png")
    _write(region_membership(labels), "maxp_region_membership", "Tract membership in max-p regions")
    _write(
        pd.DataFrame(regions.drop(columns="geometry", errors="ignore")),
        "maxp_region_summary",
        f"Max-p regions (threshold {args.maxp_threshold:g} households)",
    )

    fit_rows = [
        {"model": r.name, "level": "tract", **regression_fit_metrics(sample[TRIP_RATE_COL], fitted_values(r))}
        for r in tract_models
    ]
    region_models: List[FitResult] = []
    region_sample = pd.DataFrame(regions.drop(columns="geometry", errors="ignore")).dropna(subset=model_cols)
    if len(region_sample) >= len(TRACT_RHS) + 3:
        region_ols = fit_ols(region_sample, rhs_formula(TRIP_RATE_COL, TRACT_RHS), name="Region OLS", cov_type="nonrobust")
        region_models.append(region_ols)
        fit_rows.append(
            {
                "model": region_ols.name,
                "level": "region",
                **regression_fit_metrics(region_sample[TRIP_RATE_COL], fitted_values(region_ols)),
            }
        )
        unscaled = tracts.set_index(GEOID_COL).loc[ids]
        fit_rows.append(
            {
                "model": region_ols.name,
                "level": "tract (out of level)",
                **regression_fit_metrics(unscaled[TRIP_RATE_COL], region_ols.raw.predict(unscaled)),
            }
        )
        _write(coefficient_table(region_models), "trip_rate_region_models", "Region trip rate: OLS", STARS_NOTE)
    else:
        print(f"Skipping region-level OLS: {len(region_sample)} regions with complete data.")
    _write(pd.DataFrame(fit_rows), "trip_rate_fit_metrics", "Fit of tract- and region-level models")
    _write(stack_stats(hh_models + tract_models + region_models), "trip_rate_model_stats", "Model statistics")

    meta = {
        "inputs": input_fingerprints(
            {
                "household_table": args.household_table,
                "tract_table": args.tract_table,
                "tract_geometry": args.tract_geometry,
                "weights": args.weights,
            }
        ),
        "samples": {
            "households": len(hh),
            "tract_model_tracts": len(ids),
            "maxp_tracts": int(w_all.n),
            "regions": n_regions,
        },
        "settings": {
            "household_formula": hh_formula,
            "tract_regressors": TRACT_RHS,
            "spatial_method": args.method,
            "maxp_iterations_sa": MAXP_ITERATIONS_SA,
            "tract_weights": weights_summary(w_tract),
            "maxp_attrs": MAXP_ATTRS,
            "maxp_threshold": args.maxp_threshold,
            "maxp_top_n": args.maxp_top_n,
            "n_boot": args.n_boot,
            "permutations": args.permutations,
            "seed": args.seed,
        },
        "spatial_diagnostics": diagnostics,
        "outputs": outputs,
        "runtime": runtime_metadata(PROJECT_ROOT),
    }
    meta_path = args.logs_dir / "run_trip_rate_models.json"
    write_json(meta_path, meta)

    print(f"Wrote trip-rate model tables to {tables}/")
    print(f"Wrote {meta_path}")


if __name__ == "__main__":
    main()
