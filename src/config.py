from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
FIGURES_DIR = OUTPUTS_DIR / "figures"
TABLES_DIR = OUTPUTS_DIR / "tables"
LOGS_DIR = OUTPUTS_DIR / "logs"
WEIGHTS_DIR = OUTPUTS_DIR / "weights"

# Raw inputs (produced upstream, outside this repository)
HOUSEHOLDS_FILE = RAW_DIR / "survey_households.csv"
TRIPS_FILE = RAW_DIR / "survey_trips.csv"
TRACT_ATTRIBUTES_FILE = RAW_DIR / "tract_accessibility.csv"
TRACT_GEOMETRY_FILE = RAW_DIR / "tracts.gpkg"

ELECTION_RESULTS_FILE = RAW_DIR / "election_results_long.csv"
SECTION_GEOMETRY_FILE = RAW_DIR / "census_sections.gpkg"
SUPERBLOCKS_FILE = RAW_DIR / "superblocks.gpkg"
SECTION_CONTROLS_FILE = RAW_DIR / "section_controls.csv"

# Processed artifacts
HOUSEHOLD_TABLE_FILE = PROCESSED_DIR / "household_trip_rates.parquet"
TRACT_TABLE_FILE = PROCESSED_DIR / "tract_trip_rates.parquet"
TRACT_WEIGHTS_FILE = WEIGHTS_DIR / "tracts_w.joblib"
ELECTION_PANEL_FILE = PROCESSED_DIR / "election_panel.parquet"
SECTION_WEIGHTS_FILE = WEIGHTS_DIR / "sections_w.joblib"

# Identifiers
GEOID_COL = "geoid"
GEOID_WIDTH = 11
HOUSEHOLD_ID_COL = "household_id"
SECTION_ID_COL = "section_id"
SECTION_ID_WIDTH = 10
YEAR_COL = "year"

# Travel survey (analysis a)
HOUSEHOLD_SIZE_COL = "hh_size"
HOUSEHOLD_WEIGHT_COL = "hh_weight"
HOUSEHOLD_COVARIATES = ["hh_size", "hh_vehicles", "hh_workers", "income_cat"]
CATEGORICAL_COVARIATES = ["income_cat"]
TRIP_MODE_COL = "mode"

# Survey mode codes grouped into analysis mode groups; anything unmapped is "other".
MODE_GROUPS = {
    "car": ["auto_driver", "auto_passenger", "car", "taxi", "rideshare"],
    "transit": ["bus", "rail", "subway", "light_rail", "commuter_rail", "transit"],
    "walk": ["walk"],
    "bike": ["bike", "bikeshare", "scooter"],
}

TRIP_RATE_COL = "trip_rate"
TRACT_RHS = ["log_pop_density", "log_jobs_transit", "log_jobs_auto", "log_median_income"]
HOUSEHOLD_RHS = ["hh_size", "hh_vehicles", "hh_workers", "C(income_cat)"]

MIN_TRACT_HOUSEHOLDS = 10
MIN_TRACT_TRIPS = 20

# Max-p regionalization: each region must hold at least this many surveyed households.
MAXP_THRESHOLD = 50
MAXP_TOP_N = 2
MAXP_ITERATIONS_SA = 10
MAXP_ATTRS = ["log_pop_density", "log_jobs_transit"]

# Election panel (analysis b)
PARTIES = ["bcomu", "psc", "erc", "jxcat", "cs", "pp", "vox", "cup"]
OUTCOME_COLS = ["turnout", "share_bcomu"]
SECTION_CONTROL_COLS = ["pct_foreign", "pct_university", "mean_age", "log_income"]

SUPERBLOCK_BUFFER_M = 0.0
SUPERBLOCK_SPILLOVER_M = 300.0
PROJECTED_CRS = "EPSG:25831"
EVENT_WINDOW = (-3, 2)

# Spatial weights
WEIGHTS_KIND = "queen"
WEIGHTS_KNN_K = 6
SPATIAL_METHOD = "ml"

# Inference
BOOTSTRAP_N = 500
BOOTSTRAP_ALPHA = 0.05
MORAN_PERMUTATIONS = 999
RANDOM_SEED = 2026
