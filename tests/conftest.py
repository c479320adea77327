from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

CRS = "EPSG:25831"
X0, Y0 = 430000.0, 4580000.0
ELECTION_YEARS = [2011, 2015, 2019, 2023]
PARTIES_WITH_OTHER = ["bcomu", "psc", "erc", "jxcat", "cs", "pp", "vox", "cup", "pacma"]
MODES = ["auto_driver", "bus", "walk", "bike", "subway", "ferry"]

# Tracts with no surveyed households, and tracts with too few to be adequate.
EMPTY_TRACTS = (0, 35)
THIN_TRACTS = (5, 12, 30)


def make_grid(n_rows: int, n_cols: int, size: float, id_col: str, make_id) -> gpd.GeoDataFrame:
    cells = []
    for r in range(n_rows):
        for c in range(n_cols):
            x = X0 + c * size
            y = Y0 + r * size
            cells.append(
                {id_col: make_id(r * n_cols + c), "row": r, "col": c, "geometry": box(x, y, x + size, y + size)}
            )
    return gpd.GeoDataFrame(cells, geometry="geometry", crs=CRS)


def make_travel_data(seed: int = 7) -> dict:
    rng = np.random.default_rng(seed)
    tracts = make_grid(6, 6, 500.0, "geoid", lambda i: f"06037{i + 1:06d}")
    n = len(tracts)

    # Identifiers arrive as integers after a CSV export and lose the leading zero.
    attributes = pd.DataFrame(
        {
            "geoid": [int(g) for g in tracts["geoid"]],
            "population": rng.integers(1500, 6000, n),
            "land_area_km2": 0.25,
            "median_income": rng.uniform(25000, 90000, n).round(0),
            "jobs_transit_45": rng.integers(5000, 200000, n),
            "jobs_auto_45": rng.integers(100000, 600000, n),
            "transit_stops": rng.integers(0, 15, n),
        }
    )

    households = []
    trips = []
    k = 0
    for i, geoid in enumerate(attributes["geoid"]):
        if i in EMPTY_TRACTS:
            continue
        n_hh = 3 if i in THIN_TRACTS else int(rng.integers(12, 17))
        access = attributes.loc[i, "jobs_transit_45"] / 200000.0
        for _ in range(n_hh):
            size = int(rng.integers(1, 6))
            hid = f"H{k:05d}"
            k += 1
            households.append(
                {
                    "household_id": hid,
                    "geoid": geoid,
                    "hh_size": size,
                    "hh_weight": float(rng.uniform(50, 150)),
                    "hh_vehicles": int(rng.integers(0, 3)),
                    "hh_workers": int(rng.integers(0, 3)),
                    "income_cat": int(rng.integers(1, 6)),
                }
            )
            n_trips = int(rng.poisson(size * (2.0 + access)))
            for mode in rng.choice(MODES, size=n_trips):
                trips.append({"household_id": hid, "mode": str(mode)})

    return {
        "tracts": tracts,
        "attributes": attributes,
        "households": pd.DataFrame(households),
        "trips": pd.DataFrame(trips),
    }


def make_election_data(seed: int = 11) -> dict:
    rng = np.random.default_rng(seed)
    sections = make_grid(6, 6, 200.0, "section_id", lambda i: f"08019{i + 1:05d}")

    # Each superblock sits on the shared corner of four sections.
    superblocks = gpd.GeoDataFrame(
        {"name": ["A", "B"], "implementation_year": [2017, 2020]},
        geometry=[
            box(X0 + 150, Y0 + 150, X0 + 250, Y0 + 250),
            box(X0 + 750, Y0 + 750, X0 + 850, Y0 + 850),
        ],
        crs=CRS,
    )
    adoption = {}
    for sid, geom in zip(sections["section_id"], sections.geometry):
        years = [y for y, sb in zip(superblocks["implementation_year"], superblocks.geometry) if geom.intersects(sb)]
        if years:
            adoption[sid] = min(years)

    results = []
    controls = []
    for sid in sections["section_id"]:
        base = rng.dirichlet(np.full(len(PARTIES_WITH_OTHER), 4.0))
        for year in ELECTION_YEARS:
            registered = int(rng.integers(800, 1500))
            valid = int(registered * rng.uniform(0.55, 0.75))
            probs = base + rng.normal(0, 0.005, base.size).clip(-0.5 * base, None)
            if sid in adoption and year >= adoption[sid]:
                probs[0] += 0.05
            probs = probs / probs.sum()
            votes = rng.multinomial(valid, probs)
            for party, v in zip(PARTIES_WITH_OTHER, votes):
                results.append(
                    {
                        "section_id": int(sid),
                        "year": year,
                        "party": party.upper(),
                        "votes": int(v),
                        "registered": registered,
                    }
                )
            controls.append(
                {
                    "section_id": int(sid),
                    "year": year,
                    "pct_foreign": float(rng.uniform(5, 35)),
                    "pct_university": float(rng.uniform(10, 60)),
                    "mean_age": float(rng.uniform(35, 50)),
                    "log_income": float(rng.normal(10.3, 0.2)),
                }
            )

    return {
        "sections": sections,
        "superblocks": superblocks,
        "results": pd.DataFrame(results),
        "controls": pd.DataFrame(controls),
        "adoption": adoption,
    }


@pytest.fixture
def travel_data() -> dict:
    return make_travel_data()


@pytest.fixture
def election_data() -> dict:
    return make_election_data()


@pytest.fixture
def travel_inputs(tmp_path: Path, travel_data: dict) -> dict:
    raw = tmp_path / "raw"
    raw.mkdir()
    paths = {
        "households": raw / "survey_households.csv",
        "trips": raw / "survey_trips.csv",
        "tract_attributes": raw / "tract_accessibility.csv",
        "tract_geometry": raw / "tracts.gpkg",
    }
    travel_data["households"].to_csv(paths["households"], index=False)
    travel_data["trips"].to_csv(paths["trips"], index=False)
    travel_data["attributes"].to_csv(paths["tract_attributes"], index=False)
    travel_data["tracts"].to_file(paths["tract_geometry"], driver="GPKG")
    return paths


@pytest.fixture
def election_inputs(tmp_path: Path, election_data: dict) -> dict:
    raw = tmp_path / "raw"
    raw.mkdir(exist_ok=True)
    paths = {
        "results": raw / "election_results_long.csv",
        "sections": raw / "census_sections.gpkg",
        "superblocks": raw / "superblocks.gpkg",
        "controls": raw / "section_controls.csv",
    }
    election_data["results"].to_csv(paths["results"], index=False)
    election_data["controls"].to_csv(paths["controls"], index=False)
    election_data["sections"].to_file(paths["sections"], driver="GPKG")
    election_data["superblocks"].to_file(paths["superblocks"], driver="GPKG")
    return paths
