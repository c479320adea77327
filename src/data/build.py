from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from src.config import (
    CATEGORICAL_COVARIATES,
    GEOID_COL,
    GEOID_WIDTH,
    HOUSEHOLD_COVARIATES,
    HOUSEHOLD_ID_COL,
    HOUSEHOLD_SIZE_COL,
    HOUSEHOLD_WEIGHT_COL,
    MODE_GROUPS,
    TRIP_MODE_COL,
)
from .coding import coerce_categorical, normalize_id
from .validate import assert_required_columns, assert_unique_key, join_audit


def mode_group_names(mode_groups: Dict[str, List[str]]) -> List[str]:
    return list(mode_groups) + ["other"]


def map_mode_groups(modes: pd.Series, mode_groups: Dict[str, List[str]]) -> pd.Series:
    lookup = {str(code).strip().lower(): group for group, codes in mode_groups.items() for code in codes}
    normalized = modes.astype("string").str.strip().str.lower()
    return normalized.map(lookup).fillna("other").astype(str)


def _safe_log(values: pd.Series) -> pd.Series:
    v = pd.to_numeric(values, errors="coerce").astype(float)
    return np.log(v.where(v > 0))


def build_household_trip_table(
    households: pd.DataFrame,
    trips: pd.DataFrame,
    *,
    household_id: str = HOUSEHOLD_ID_COL,
    geoid_col: str = GEOID_COL,
    size_col: str = HOUSEHOLD_SIZE_COL,
    weight_col: str = HOUSEHOLD_WEIGHT_COL,
    mode_col: str = TRIP_MODE_COL,
    covariates: Iterable[str] = HOUSEHOLD_COVARIATES,
    categorical: Iterable[str] = CATEGORICAL_COVARIATES,
    mode_groups: Optional[Dict[str, List[str]]] = None,
    geoid_width: Optional[int] = GEOID_WIDTH,
) -> Tuple[pd.DataFrame, dict]:
    """One row per surveyed household with trip counts and the household trip rate.

    Households that reported no trips are kept with zero trips. The trip rate is
    person-trips per household member for the survey day.
    """

    mode_groups = MODE_GROUPS if mode_groups is None else mode_groups
    groups = mode_group_names(mode_groups)
    covariates = [c for c in covariates if c != size_col]

    assert_required_columns(households, [household_id, geoid_col, size_col, weight_col] + covariates)
    assert_required_columns(trips, [household_id, mode_col])

    hh = households.copy()
    hh[household_id] = normalize_id(hh[household_id])
    hh[geoid_col] = normalize_id(hh[geoid_col], width=geoid_width)
    assert_unique_key(hh, household_id)

    tr = trips.copy()
    tr[household_id] = normalize_id(tr[household_id])

    decisions: dict = {"row_filters": [], "joins": {}}
    decisions["joins"]["trips_to_households"] = join_audit(tr, hh, household_id)

    tr["mode_group"] = map_mode_groups(tr[mode_col], mode_groups)
    counts = pd.crosstab(tr[household_id], tr["mode_group"])
    counts = counts.reindex(columns=groups, fill_value=0).add_prefix("trips_")
    counts["n_trips"] = counts.sum(axis=1)

    keep = [household_id, geoid_col, size_col, weight_col] + covariates
    table = hh[keep].merge(counts, left_on=household_id, right_index=True, how="left")
    count_cols = [f"trips_{g}" for g in groups] + ["n_trips"]
    table[count_cols] = table[count_cols].fillna(0).astype(int)

    table[size_col] = pd.to_numeric(table[size_col], errors="coerce")
    table[weight_col] = pd.to_numeric(table[weight_col], errors="coerce")
    for col in categorical:
        if col in table.columns:
            table[col] = coerce_categorical(table[col], prefix=f"{col}_")

    filters = [
        ("drop_missing_geoid", table[geoid_col].notna()),
        ("drop_nonpositive_household_size", table[size_col].fillna(0) > 0),
        ("drop_nonpositive_weight", table[weight_col].fillna(0) > 0),
    ]
    for rule, mask in filters:
        n_before = len(table)
        table = table.loc[mask.reindex(table.index, fill_value=False)]
        decisions["row_filters"].append({"rule": rule, "dropped_rows": n_before - len(table)})

    table = table.reset_index(drop=True)
    table["trip_rate"] = table["n_trips"] / table[size_col]
    return table, decisions


def aggregate_tracts(
    household_table: pd.DataFrame,
    *,
    geoid_col: str = GEOID_COL,
    weight_col: str = HOUSEHOLD_WEIGHT_COL,
    mode_groups: Optional[Dict[str, List[str]]] = None,
) -> pd.DataFrame:
    """Survey-weighted trip rate and mode shares per tract."""

    mode_groups = MODE_GROUPS if mode_groups is None else mode_groups
    groups = mode_group_names(mode_groups)
    assert_required_columns(household_table, [geoid_col, weight_col, "trip_rate", "n_trips"])

    hh = household_table
    w = hh[weight_col].astype(float)
    work = pd.DataFrame(
        {
            geoid_col: hh[geoid_col],
            "n_households": 1,
            "n_trips": hh["n_trips"],
            "weight_sum": w,
            "_wr": w * hh["trip_rate"],
            "_r": hh["trip_rate"],
            "_wt": w * hh["n_trips"],
        }
    )
    for g in groups:
        work[f"_wm_{g}"] = w * hh[f"trips_{g}"]

    sums = work.groupby(geoid_col, sort=True).sum(numeric_only=True)
    out = pd.DataFrame(index=sums.index)
    out["n_households"] = sums["n_households"].astype(int)
    out["n_trips"] = sums["n_trips"].astype(int)
    out["weight_sum"] = sums["weight_sum"]
    out["trip_rate"] = sums["_wr"] / sums["weight_sum"]
    out["trip_rate_unweighted"] = sums["_r"] / sums["n_households"]
    denom = sums["_wt"].replace(0, np.nan)
    for g in groups:
        out[f"share_{g}"] = sums[f"_wm_{g}"] / denom
    return out.reset_index()


def add_accessibility_measures(tracts: pd.DataFrame) -> pd.DataFrame:
    out = tracts.copy()
    area = pd.to_numeric(out["land_area_km2"], errors="coerce")
    out["pop_density"] = pd.to_numeric(out["population"], errors="coerce") / area.where(area > 0)
    out["log_pop_density"] = _safe_log(out["pop_density"])
    out["log_jobs_transit"] = np.log1p(pd.to_numeric(out["jobs_transit_45"], errors="coerce"))
    out["log_jobs_auto"] = np.log1p(pd.to_numeric(out["jobs_auto_45"], errors="coerce"))
    out["log_median_income"] = _safe_log(out["median_income"])
    return out


def build_tract_table(
    household_table: pd.DataFrame,
    tract_attributes: pd.DataFrame,
    *,
    geoid_col: str = GEOID_COL,
    weight_col: str = HOUSEHOLD_WEIGHT_COL,
    geoid_width: Optional[int] = GEOID_WIDTH,
    mode_groups: Optional[Dict[str, List[str]]] = None,
) -> Tuple[pd.DataFrame, dict]:
    """Join tract trip-rate aggregates onto the census/accessibility universe.

    Every tract in the attribute file is kept; tracts without surveyed
    households carry n_households == 0 and a missing trip rate, which is what
    the max-p step needs to pool them into regions.
    """

    assert_required_columns(
        tract_attributes,
        [geoid_col, "population", "land_area_km2", "median_income", "jobs_transit_45", "jobs_auto_45"],
    )
    attrs = tract_attributes.copy()
    attrs[geoid_col] = normalize_id(attrs[geoid_col], width=geoid_width)
    assert_unique_key(attrs, geoid_col)

    rates = aggregate_tracts(household_table, geoid_col=geoid_col, weight_col=weight_col, mode_groups=mode_groups)
    decisions = {"joins": {"tract_rates_to_attributes": join_audit(rates, attrs, geoid_col)}}

    table = attrs.merge(rates, on=geoid_col, how="left", validate="one_to_one")
    for col in ["n_households", "n_trips"]:
        table[col] = table[col].fillna(0).astype(int)
    table["weight_sum"] = table["weight_sum"].fillna(0.0)

    table = add_accessibility_measures(table)
    table = table.sort_values(geoid_col, kind="mergesort").reset_index(drop=True)
    return table, decisions
