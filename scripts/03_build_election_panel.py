import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import argparse  # noqa: E402

import geopandas as gpd  # noqa: E402
import pandas as pd  # noqa: E402

from src.config import (  # noqa: E402
    ELECTION_PANEL_FILE,
    ELECTION_RESULTS_FILE,
    LOGS_DIR,
    PROJECTED_CRS,
    SECTION_CONTROL_COLS,
    SECTION_CONTROLS_FILE,
    SECTION_GEOMETRY_FILE,
    SECTION_ID_COL,
    SECTION_ID_WIDTH,
    SECTION_WEIGHTS_FILE,
    SUPERBLOCK_BUFFER_M,
    SUPERBLOCK_SPILLOVER_M,
    SUPERBLOCKS_FILE,
    TABLES_DIR,
    WEIGHTS_KIND,
    WEIGHTS_KNN_K,
    YEAR_COL,
)
from src.data.coding import normalize_id, summarize_missingness  # noqa: E402
from src.data.elections import (  # noqa: E402
    add_treatment_timing,
    assign_superblock_exposure,
    build_election_panel,
)
from src.data.ingest import load_election_results, load_section_controls, read_geometries  # noqa: E402
from src.data.validate import assert_required_columns, assert_unique_key, join_audit  # noqa: E402
from src.reporting.tables import write_table  # noqa: E402
from src.spatial.weights import WEIGHT_KINDS, build_weights, save_weights, weights_summary  # noqa: E402
from src.utils.logging import input_fingerprints, runtime_metadata, write_json  # noqa: E402


def exposure_summary(panel: pd.DataFrame) -> pd.DataFrame:
    sections = panel.drop_duplicates(SECTION_ID_COL)
    status = pd.Series("control", index=sections.index)
    status[sections["spillover"] == 1] = "spillover"
    status[sections["treated"] == 1] = "treated"
    out = (
        sections.assign(status=status, adoption_year=sections["adoption_year"].fillna(-1).astype(int))
        .groupby(["status", "adoption_year"])
        .size()
        .rename("n_sections")
        .reset_index()
    )
    out["adoption_year"] = out["adoption_year"].replace(-1, pd.NA)
    return out


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the section-by-election panel with superblock exposure.")
    parser.add_argument("--results", type=Path, default=ELECTION_RESULTS_FILE)
    parser.add_argument("--sections", type=Path, default=SECTION_GEOMETRY_FILE)
    parser.add_argument("--superblocks", type=Path, default=SUPERBLOCKS_FILE)
    parser.add_argument(
        "--controls",
        type=Path,
        default=SECTION_CONTROLS_FILE,
        help="Optional section-year controls; skipped when the file does not exist.",
    )
    parser.add_argument("--panel-out", type=Path, default=ELECTION_PANEL_FILE)
    parser.add_argument("--weights-out", type=Path, default=SECTION_WEIGHTS_FILE)
    parser.add_argument("--tables-dir", type=Path, default=TABLES_DIR)
    parser.add_argument("--logs-dir", type=Path, default=LOGS_DIR)
    parser.add_argument("--buffer-m", type=float, default=SUPERBLOCK_BUFFER_M)
    parser.add_argument("--spillover-m", type=float, default=SUPERBLOCK_SPILLOVER_M)
    parser.add_argument("--crs", type=str, default=PROJECTED_CRS)
    parser.add_argument("--weights-kind", choices=list(WEIGHT_KINDS), default=WEIGHTS_KIND)
    parser.add_argument("--knn-k", type=int, default=WEIGHTS_KNN_K)
    parser.add_argument("--distance-threshold", type=float, default=None)
    args = parser.parse_args()

    inputs = {"results": args.results, "sections": args.sections, "superblocks": args.superblocks}
    for name, path in inputs.items():
        if not path.exists():
            raise SystemExit(f"Input file not found ({name}): {path}")
    if args.buffer_m < 0 or args.spillover_m < 0:
        raise SystemExit("--buffer-m and --spillover-m must be non-negative.")
    if args.weights_kind == "distance" and args.distance_threshold is None:
        raise SystemExit("--distance-threshold is required with --weights-kind distance.")

    results = load_election_results(args.results)
    panel = build_election_panel(results)

    sections = read_geometries(args.sections, SECTION_ID_COL, SECTION_ID_WIDTH)
    superblocks = gpd.read_file(args.superblocks)
    exposure = assign_superblock_exposure(
        sections, superblocks, buffer_m=args.buffer_m, spillover_m=args.spillover_m, crs=args.crs
    )

    joins = {"panel_to_sections": join_audit(panel, sections, SECTION_ID_COL)}
    panel = add_treatment_timing(panel, exposure)

    controls_used = []
    if args.controls.exists():
        inputs["controls"] = args.controls
        controls = load_section_controls(args.controls)
        assert_required_columns(controls, [SECTION_ID_COL, YEAR_COL])
        controls[SECTION_ID_COL] = normalize_id(controls[SECTION_ID_COL], width=SECTION_ID_WIDTH)
        controls[YEAR_COL] = controls[YEAR_COL].astype(int)
        assert_unique_key(controls, [SECTION_ID_COL, YEAR_COL])
        controls_used = [c for c in SECTION_CONTROL_COLS if c in controls.columns]
        joins["panel_to_controls"] = join_audit(panel, controls, [SECTION_ID_COL, YEAR_COL])
        panel = panel.merge(
            controls[[SECTION_ID_COL, YEAR_COL] + controls_used],
            on=[SECTION_ID_COL, YEAR_COL],
            how="left",
            validate="one_to_one",
        )

    in_panel = set(panel[SECTION_ID_COL])
    ids = [s for s in sections.index if s in in_panel]
    if len(ids) < 2:
        raise SystemExit(f"Only {len(ids)} panel sections have geometry; cannot build weights.")
    w = build_weights(sections.loc[ids], args.weights_kind, k=args.knn_k, threshold=args.distance_threshold)
    save_weights(w, args.weights_out)

    args.panel_out.parent.mkdir(parents=True, exist_ok=True)
    panel.to_parquet(args.panel_out, index=False)

    summary_paths = write_table(
        exposure_summary(panel), args.tables_dir / "superblock_exposure_summary", "Sections by superblock exposure"
    )
    missingness_csv = args.tables_dir / "missingness_election_panel.csv"
    summarize_missingness(panel).to_csv(missingness_csv, index=False)

    decisions = {
        "inputs": input_fingerprints(inputs),
        "joins": joins,
        "counts": {
            "raw_result_rows": len(results),
            "panel_rows": len(panel),
            "sections": int(panel[SECTION_ID_COL].nunique()),
            "elections": sorted(int(y) for y in panel[YEAR_COL].unique()),
            "treated_sections": int(panel.drop_duplicates(SECTION_ID_COL)["treated"].sum()),
            "spillover_sections": int(panel.drop_duplicates(SECTION_ID_COL)["spillover"].sum()),
            "superblocks": len(superblocks),
        },
        "exposure": {"buffer_m": args.buffer_m, "spillover_m": args.spillover_m, "crs": args.crs},
        "controls": controls_used,
        "weights": {"kind": args.weights_kind, "path": str(args.weights_out), **weights_summary(w)},
        "outputs": {
            "panel": str(args.panel_out),
            "exposure_summary": [str(p) for p in summary_paths],
            "missingness_csv": str(missingness_csv),
        },
        "runtime": runtime_metadata(PROJECT_ROOT),
    }
    decisions_json = args.logs_dir / "decisions_election_panel.json"
    write_json(decisions_json, decisions)

    print(f"Wrote {args.panel_out}")
    print(f"Wrote {args.weights_out}")
    print(f"Wrote {missingness_csv}")
    print(f"Wrote {decisions_json}")


if __name__ == "__main__":
    main()
