from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Sequence

import pandas as pd


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.config import (  # noqa: E402
    ELECTION_PANEL_FILE,
    EVENT_WINDOW,
    FIGURES_DIR,
    LOGS_DIR,
    OUTCOME_COLS,
    SECTION_CONTROL_COLS,
    SECTION_ID_COL,
    SECTION_WEIGHTS_FILE,
    SPATIAL_METHOD,
    TABLES_DIR,
    YEAR_COL,
)
from src.data.elections import event_time_dummies, event_time_label, long_difference  # noqa: E402
from src.data.validate import assert_required_columns, varying_columns  # noqa: E402
from src.models.ols import fit_ols  # noqa: E402
from src.models.panel import fit_panel_fe  # noqa: E402
from src.models.results import FitResult, stack_coefficients, stack_stats  # noqa: E402
from src.models.spatial import fit_spatial, fit_spatial_panel, spatial_diagnostics  # noqa: E402
from src.reporting.figures import plot_event_study  # noqa: E402
from src.reporting.tables import STARS_NOTE, coefficient_table, write_table  # noqa: E402
from src.spatial.weights import align_weights, load_weights, weights_summary  # noqa: E402
from src.utils.logging import input_fingerprints, runtime_metadata, write_json  # noqa: E402


def display_terms(results: Sequence[FitResult], hidden_prefixes=("C(", "yr_", "Intercept", "CONSTANT")) -> List[str]:
    terms: List[str] = []
    for r in results:
        for t in r.coefficients["term"]:
            if t not in terms and not t.startswith(hidden_prefixes):
                terms.append(t)
    return terms


def balanced_complete(panel: pd.DataFrame, cols: Sequence[str]) -> pd.DataFrame:
    """Sections observed with complete `cols` in every election."""

    complete = panel.dropna(subset=list(cols))
    n_years = panel[YEAR_COL].nunique()
    counts = complete.groupby(SECTION_ID_COL)[YEAR_COL].nunique()
    keep = counts.index[counts == n_years]
    return complete.loc[complete[SECTION_ID_COL].isin(keep)].copy()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Superblock electoral effects: pooled OLS, two-way FE, event study, spatial and spatial-panel models."
    )
    parser.add_argument("--panel", type=Path, default=ELECTION_PANEL_FILE)
    parser.add_argument("--weights", type=Path, default=SECTION_WEIGHTS_FILE)
    parser.add_argument("--outcomes", nargs="+", default=OUTCOME_COLS)
    parser.add_argument("--no-controls", action="store_true", help="Exclude section-year controls.")
    parser.add_argument("--method", choices=["ml", "gm"], default=SPATIAL_METHOD)
    parser.add_argument("--event-window", nargs=2, type=int, default=list(EVENT_WINDOW), metavar=("LO", "HI"))
    parser.add_argument("--tables-dir", type=Path, default=TABLES_DIR)
    parser.add_argument("--figures-dir", type=Path, default=FIGURES_DIR)
    parser.add_argument("--logs-dir", type=Path, default=LOGS_DIR)
    args = parser.parse_args()

    for path in [args.panel, args.weights]:
        if not path.exists():
            raise SystemExit(f"Input not found: {path}. Run scripts/03_build_election_panel.py first.")
    lo, hi = args.event_window
    if not lo <= -1 <= hi:
        raise SystemExit("--event-window must satisfy LO <= -1 <= HI; -1 is the reference election.")

    panel = pd.read_parquet(args.panel)
    assert_required_columns(panel, [SECTION_ID_COL, YEAR_COL, "treated", "treat_post", "spill_post", "event_time"])
    panel[SECTION_ID_COL] = panel[SECTION_ID_COL].astype(str)
    missing_outcomes = [c for c in args.outcomes if c not in panel.columns]
    if missing_outcomes:
        raise SystemExit(f"Outcomes not in panel: {missing_outcomes}")
    if panel["treat_post"].sum() == 0:
        raise SystemExit("No section is treated in any post-adoption election; nothing to estimate.")

    w = load_weights(args.weights)
    controls = [] if args.no_controls else [c for c in SECTION_CONTROL_COLS if c in panel.columns]
    controls = varying_columns(panel, controls)
    treatment = varying_columns(panel, ["treat_post", "spill_post"])

    last_year = panel[YEAR_COL].max()
    year_dummies = pd.get_dummies(panel[YEAR_COL], prefix="yr", dtype=int).iloc[:, 1:]
    panel = pd.concat([panel, year_dummies], axis=1)

    outputs: Dict[str, str] = {}
    samples: Dict[str, dict] = {}
    all_results: List[FitResult] = []

    def _write(df: pd.DataFrame, stem: str, title: str, note: str = "") -> None:
        for path in write_table(df, args.tables_dir / stem, title, note):
            outputs[path.name] = str(path)

    for outcome in args.outcomes:
        # Panel estimators on the full section-by-election panel.
        pooled = fit_ols(
            panel,
            f"{outcome} ~ " + " + ".join(varying_columns(panel, ["treated"]) + treatment + controls + ["C(year)"]),
            name="Pooled OLS",
            cluster_col=SECTION_ID_COL,
            cov_type="cluster",
        )
        twfe = fit_panel_fe(panel, outcome, treatment + controls, name="TWFE")

        balanced = balanced_complete(panel, [outcome] + treatment + controls)
        balanced_ids = set(balanced[SECTION_ID_COL])
        ids = [i for i in w.id_order if i in balanced_ids]
        balanced = balanced.loc[balanced[SECTION_ID_COL].isin(ids)]
        w_panel = align_weights(w, ids)
        panel_regs = varying_columns(balanced, treatment + controls + list(year_dummies.columns))
        spatial_panel = [
            fit_spatial_panel(balanced, outcome, panel_regs, w_panel, kind="lag", name="Panel FE SAR"),
            fit_spatial_panel(balanced, outcome, panel_regs, w_panel, kind="error", name="Panel FE SEM"),
        ]
        panel_models = [pooled, twfe] + spatial_panel
        _write(
            coefficient_table(panel_models, display_terms(panel_models)),
            f"superblock_{outcome}_panel_models",
            f"Superblocks and {outcome}: panel models",
            STARS_NOTE + " Pooled OLS and TWFE clustered by section; spatial panels include unit and election effects.",
        )

        # Event study in elections relative to adoption.
        es_panel, evt_cols = event_time_dummies(panel, (lo, hi))
        evt_cols = varying_columns(es_panel, evt_cols)
        event = fit_panel_fe(es_panel, outcome, evt_cols + controls, name="Event study")
        evt = event.coefficients.loc[event.coefficients["term"].isin(evt_cols)].copy()
        evt.insert(0, "event_time", evt["term"].map(event_time_label))
        evt = evt.sort_values("event_time")
        _write(evt, f"superblock_{outcome}_event_study", f"Event study: {outcome}", "Reference period: -1.")
        figure = args.figures_dir / f"superblock_{outcome}_event_study.png"
        plot_event_study(evt, figure, f"Superblock adoption and {outcome}")
        outputs[figure.name] = str(figure)

        # Cross-section: change between first and last election.
        diff = long_difference(panel, [outcome] + controls)
        exposure_last = panel.loc[panel[YEAR_COL] == last_year, [SECTION_ID_COL, "treat_post", "spill_post"]]
        exposure_last = exposure_last.rename(columns={"treat_post": "treat_last", "spill_post": "spill_last"})
        cs = diff.merge(exposure_last, on=SECTION_ID_COL, how="inner", validate="one_to_one")
        dependent = f"d_{outcome}"
        cs_regs = varying_columns(cs, ["treat_last", "spill_last"] + [f"d_{c}" for c in controls])
        cs = cs.dropna(subset=[dependent] + cs_regs).set_index(SECTION_ID_COL)
        cs_index = set(cs.index)
        cs_ids = [i for i in w.id_order if i in cs_index]
        cs = cs.loc[cs_ids]
        w_cs = align_weights(w, cs_ids)
        diagnostics = spatial_diagnostics(cs, dependent, cs_regs, w_cs)
        cs_models = [
            fit_ols(cs, f"{dependent} ~ " + " + ".join(cs_regs), name="OLS", cov_type="HC1"),
            fit_spatial(cs, dependent, cs_regs, w_cs, kind="lag", method=args.method, name="SAR"),
            fit_spatial(cs, dependent, cs_regs, w_cs, kind="error", method=args.method, name="SEM"),
            fit_spatial(cs, dependent, cs_regs, w_cs, kind="sarar", method="gm", name="SARAR"),
        ]
        _write(
            coefficient_table(cs_models, display_terms(cs_models)),
            f"superblock_{outcome}_cross_section_models",
            f"Change in {outcome} between first and last election",
            STARS_NOTE,
        )
        _write(
            pd.DataFrame([diagnostics]),
            f"superblock_{outcome}_spatial_diagnostics",
            f"Spatial diagnostics: change in {outcome}",
        )

        for r in panel_models + [event] + cs_models:
            r.name = f"{outcome}: {r.name}"
        all_results.extend(panel_models + [event] + cs_models)
        samples[outcome] = {
            "panel_rows": pooled.nobs,
            "balanced_sections": len(ids),
            "cross_section_sections": len(cs_ids),
            "event_terms": evt_cols,
            "panel_weights": weights_summary(w_panel),
            "spatial_diagnostics": diagnostics,
        }

    _write(stack_coefficients(all_results), "superblock_coefficients_long", "All superblock model coefficients")
    _write(stack_stats(all_results), "superblock_model_stats", "Superblock model statistics")

    meta = {
        "inputs": input_fingerprints({"panel": args.panel, "weights": args.weights}),
        "settings": {
            "outcomes": args.outcomes,
            "treatment": treatment,
            "controls": controls,
            "spatial_method": args.method,
            "event_window": [lo, hi],
        },
        "samples": samples,
        "outputs": outputs,
        "runtime": runtime_metadata(PROJECT_ROOT),
    }
    meta_path = args.logs_dir / "run_superblock_models.json"
    write_json(meta_path, meta)

    print(f"Wrote superblock model tables to {args.tables_dir}/")
    print(f"Wrote {meta_path}")


if __name__ == "__main__":
    main()
