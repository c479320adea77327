import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import argparse  # noqa: E402

from src.config import (  # noqa: E402
    GEOID_COL,
    GEOID_WIDTH,
    HOUSEHOLD_TABLE_FILE,
    HOUSEHOLDS_FILE,
    LOGS_DIR,
    MIN_TRACT_HOUSEHOLDS,
    MIN_TRACT_TRIPS,
    TABLES_DIR,
    TRACT_ATTRIBUTES_FILE,
    TRACT_GEOMETRY_FILE,
    TRACT_TABLE_FILE,
    TRACT_WEIGHTS_FILE,
    TRIPS_FILE,
    WEIGHTS_KIND,
    WEIGHTS_KNN_K,
)
from src.data.build import build_household_trip_table, build_tract_table  # noqa: E402
from src.data.coding import summarize_missingness  # noqa: E402
from src.data.ingest import load_households, load_tract_attributes, load_trips, read_geometries  # noqa: E402
from src.data.validate import join_audit  # noqa: E402
from src.evaluation.adequacy import flag_adequate_tracts  # noqa: E402
from src.spatial.weights import WEIGHT_KINDS, build_weights, save_weights, weights_summary  # noqa: E402
from src.utils.logging import input_fingerprints, runtime_metadata, write_json  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Build household and tract trip-rate tables joined with census/accessibility measures."
    )
    parser.add_argument("--households", type=Path, default=HOUSEHOLDS_FILE)
    parser.add_argument("--trips", type=Path, default=TRIPS_FILE)
    parser.add_argument("--tract-attributes", type=Path, default=TRACT_ATTRIBUTES_FILE)
    parser.add_argument("--tract-geometry", type=Path, default=TRACT_GEOMETRY_FILE)
    parser.add_argument("--household-out", type=Path, default=HOUSEHOLD_TABLE_FILE)
    parser.add_argument("--tract-out", type=Path, default=TRACT_TABLE_FILE)
    parser.add_argument("--weights-out", type=Path, default=TRACT_WEIGHTS_FILE)
    parser.add_argument("--tables-dir", type=Path, default=TABLES_DIR)
    parser.add_argument("--logs-dir", type=Path, default=LOGS_DIR)
    parser.add_argument("--weights-kind", choices=list(WEIGHT_KINDS), default=WEIGHTS_KIND)
    parser.add_argument("--knn-k", type=int, default=WEIGHTS_KNN_K)
    parser.add_argument("--distance-threshold", type=float, default=None)
    parser.add_argument("--min-households", type=int, default=MIN_TRACT_HOUSEHOLDS)
    parser.add_argument("--min-trips", type=int, default=MIN_TRACT_TRIPS)
    args = parser.parse_args()

    inputs = {
        "households": args.households,
        "trips": args.trips,
        "tract_attributes": args.tract_attributes,
        "tract_geometry": args.tract_geometry,
    }
    for name, path in inputs.items():
        if not path.exists():
            raise SystemExit(f"Input file not found ({name}): {path}")
    if args.weights_kind == "distance" and args.distance_threshold is None:
        raise SystemExit("--distance-threshold is required with --weights-kind distance.")

    households = load_households(args.households)
    trips = load_trips(args.trips)
    attributes = load_tract_attributes(args.tract_attributes)

    household_table, hh_decisions = build_household_trip_table(households, trips)
    tract_table, tract_decisions = build_tract_table(household_table, attributes)
    tract_table = flag_adequate_tracts(tract_table, min_households=args.min_households, min_trips=args.min_trips)

    geometry = read_geometries(args.tract_geometry, GEOID_COL, GEOID_WIDTH)
    geometry_audit = join_audit(tract_table, geometry, GEOID_COL)
    known = set(tract_table[GEOID_COL])
    ids = [g for g in geometry.index if g in known]
    if len(ids) < 2:
        raise SystemExit(f"Only {len(ids)} tracts have both attributes and geometry; cannot build weights.")
    w = build_weights(
        geometry.loc[ids], args.weights_kind, k=args.knn_k, threshold=args.distance_threshold
    )
    save_weights(w, args.weights_out)

    args.household_out.parent.mkdir(parents=True, exist_ok=True)
    household_table.to_parquet(args.household_out, index=False)
    args.tract_out.parent.mkdir(parents=True, exist_ok=True)
    tract_table.to_parquet(args.tract_out, index=False)

    args.tables_dir.mkdir(parents=True, exist_ok=True)
    missingness_csv = args.tables_dir / "missingness_tract_table.csv"
    summarize_missingness(tract_table).to_csv(missingness_csv, index=False)

    decisions = {
        "inputs": input_fingerprints(inputs),
        "row_filters": hh_decisions["row_filters"],
        "joins": {
            **hh_decisions["joins"],
            **tract_decisions["joins"],
            "tract_table_to_geometry": geometry_audit,
        },
        "counts": {
            "raw_households": len(households),
            "raw_trips": len(trips),
            "household_rows": len(household_table),
            "tract_rows": len(tract_table),
            "tracts_with_households": int((tract_table["n_households"] > 0).sum()),
            "adequate_tracts": int(tract_table["adequate"].sum()),
        },
        "adequacy": {"min_households": args.min_households, "min_trips": args.min_trips},
        "weights": {"kind": args.weights_kind, "path": str(args.weights_out), **weights_summary(w)},
        "outputs": {
            "household_table": str(args.household_out),
            "tract_table": str(args.tract_out),
            "missingness_csv": str(missingness_csv),
        },
        "runtime": runtime_metadata(PROJECT_ROOT),
    }
    decisions_json = args.logs_dir / "decisions_trip_rates.json"
    write_json(decisions_json, decisions)

    print(f"Wrote {args.household_out}")
    print(f"Wrote {args.tract_out}")
    print(f"Wrote {args.weights_out}")
    print(f"Wrote {missingness_csv}")
    print(f"Wrote {decisions_json}")


if __name__ == "__main__":
    main()
