import argparse
import importlib
import platform
import sys

from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.config import (  # noqa: E402
    ELECTION_RESULTS_FILE,
    HOUSEHOLDS_FILE,
    LOGS_DIR,
    SECTION_CONTROLS_FILE,
    SECTION_GEOMETRY_FILE,
    SUPERBLOCKS_FILE,
    TRACT_ATTRIBUTES_FILE,
    TRACT_GEOMETRY_FILE,
    TRIPS_FILE,
)
from src.utils.logging import package_versions, write_json  # noqa: E402


MODULES = [
    "numpy",
    "pandas",
    "pyarrow",
    "geopandas",
    "shapely",
    "libpysal",
    "esda",
    "spreg",
    "spopt",
    "statsmodels",
    "linearmodels",
    "sklearn",
    "joblib",
    "matplotlib",
]


def _importable(name: str) -> bool:
    try:
        importlib.import_module(name)
    except ImportError:
        return False
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Record interpreter, packages and raw-input availability.")
    parser.add_argument("--out", type=Path, default=LOGS_DIR / "environment_check.json")
    args = parser.parse_args()

    inputs = {
        "households": HOUSEHOLDS_FILE,
        "trips": TRIPS_FILE,
        "tract_attributes": TRACT_ATTRIBUTES_FILE,
        "tract_geometry": TRACT_GEOMETRY_FILE,
        "election_results": ELECTION_RESULTS_FILE,
        "section_geometry": SECTION_GEOMETRY_FILE,
        "superblocks": SUPERBLOCKS_FILE,
        "section_controls": SECTION_CONTROLS_FILE,
    }
    info = {
        "python_version": sys.version,
        "platform": platform.platform(),
        "inputs_exist": {name: path.exists() for name, path in inputs.items()},
        "modules_importable": {name: _importable(name) for name in MODULES},
        "packages": package_versions(),
    }
    write_json(args.out, info)
    print(f"Wrote {args.out}")


if __name__ == "__main__":
    main()
