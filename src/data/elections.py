from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from src.config import (
    EVENT_WINDOW,
    PARTIES,
    PROJECTED_CRS,
    SECTION_ID_COL,
    SECTION_ID_WIDTH,
    SUPERBLOCK_BUFFER_M,
    SUPERBLOCK_SPILLOVER_M,
    YEAR_COL,
)
from .coding import normalize_id
from .validate import assert_required_columns


def build_election_panel(
    results: pd.DataFrame,
    *,
    section_col: str = SECTION_ID_COL,
    year_col: str = YEAR_COL,
    party_col: str = "party",
    votes_col: str = "votes",
    registered_col: str = "registered",
    parties: Iterable[str] = PARTIES,
    id_width: Optional[int] = SECTION_ID_WIDTH,
) -> pd.DataFrame:
    """Pivot long section results into one row per section and election year.

    Shares are over valid votes cast for parties; turnout is valid votes over the
    registered electorate. Parties outside `parties` are pooled in share_other.
    """

    assert_required_columns(results, [section_col, year_col, party_col, votes_col, registered_col])
    parties = [str(p).lower() for p in parties]

    df = results.copy()
    df[section_col] = normalize_id(df[section_col], width=id_width)
    df[party_col] = df[party_col].astype("string").str.strip().str.lower()
    df[year_col] = pd.to_numeric(df[year_col], errors="raise").astype(int)
    keys = [section_col, year_col]

    n_registered = df.groupby(keys)[registered_col].nunique()
    if (n_registered > 1).any():
        bad = n_registered[n_registered > 1].index[:5].tolist()
        raise ValueError(f"'{registered_col}' varies within section-year, e.g. {bad}")

    votes = df.pivot_table(index=keys, columns=party_col, values=votes_col, aggfunc="sum", fill_value=0)
    panel = pd.DataFrame(index=votes.index)
    panel["registered"] = df.groupby(keys)[registered_col].first().astype(float)
    panel["valid_votes"] = votes.sum(axis=1).astype(float)
    panel["turnout"] = panel["valid_votes"] / panel["registered"].replace(0, np.nan)

    valid = panel["valid_votes"].replace(0, np.nan)
    known = 0.0
    for party in parties:
        party_votes = votes[party] if party in votes.columns else 0
        panel[f"votes_{party}"] = party_votes
        panel[f"share_{party}"] = panel[f"votes_{party}"] / valid
        known = known + panel[f"votes_{party}"]
    panel["share_other"] = (panel["valid_votes"] - known) / valid

    return panel.reset_index().sort_values(keys, kind="mergesort").reset_index(drop=True)


def assign_superblock_exposure(
    sections: gpd.GeoDataFrame,
    superblocks: gpd.GeoDataFrame,
    *,
    section_col: str = SECTION_ID_COL,
    year_col: str = "implementation_year",
    buffer_m: float = SUPERBLOCK_BUFFER_M,
    spillover_m: float = SUPERBLOCK_SPILLOVER_M,
    crs: str = PROJECTED_CRS,
) -> pd.DataFrame:
    """Classify each section as treated, spillover, or untouched by superblocks.

    A section is treated when it intersects a superblock (grown by `buffer_m`);
    its adoption year is the earliest implementation year among the superblocks
    it touches. Untreated sections within `spillover_m` of a superblock are
    spillover sections, timed by the earliest such superblock.
    """

    assert_required_columns(sections, [section_col, "geometry"])
    assert_required_columns(superblocks, [year_col, "geometry"])

    sec = sections[[section_col, "geometry"]].to_crs(crs).reset_index(drop=True)
    sb = superblocks[[year_col, "geometry"]].to_crs(crs).reset_index(drop=True)

    zone = sb.copy()
    if buffer_m > 0:
        zone["geometry"] = zone.geometry.buffer(buffer_m)
    hits = gpd.sjoin(sec, zone, how="inner", predicate="intersects")
    adoption = hits.groupby(section_col)[year_col].min()

    ring = sb.copy()
    ring["geometry"] = ring.geometry.buffer(max(spillover_m, buffer_m))
    near_hits = gpd.sjoin(sec, ring, how="inner", predicate="intersects")
    spill_year = near_hits.groupby(section_col)[year_col].min()

    nearest = gpd.sjoin_nearest(sec, sb[["geometry"]], how="left", distance_col="dist_superblock_m")
    dist = nearest.groupby(section_col)["dist_superblock_m"].min()

    out = pd.DataFrame({section_col: sec[section_col].astype("string").array})
    out["adoption_year"] = out[section_col].map(adoption).astype(float)
    out["treated"] = out["adoption_year"].notna().astype(int)
    out["spillover"] = ((out["treated"] == 0) & out[section_col].isin(spill_year.index)).astype(int)
    out["spill_year"] = np.where(out["spillover"] == 1, out[section_col].map(spill_year).astype(float), np.nan)
    out["dist_superblock_m"] = out[section_col].map(dist).astype(float)
    return out


def add_treatment_timing(
    panel: pd.DataFrame,
    exposure: pd.DataFrame,
    *,
    section_col: str = SECTION_ID_COL,
    year_col: str = YEAR_COL,
) -> pd.DataFrame:
    """Attach exposure to the panel and derive post, treat_post and event time.

    Event time counts elections, not calendar years: 0 is the first election at
    or after adoption, -1 the last one before it. Never-treated sections have a
    missing event time. Sections absent from the exposure table are untreated.
    """

    df = panel.merge(exposure, on=section_col, how="left", validate="many_to_one")
    for col in ["treated", "spillover"]:
        df[col] = df[col].fillna(0).astype(int)

    years = np.sort(df[year_col].unique())
    year_index = {int(y): i for i, y in enumerate(years)}

    df["post"] = (df[year_col] >= df["adoption_year"]).astype(int)
    df["treat_post"] = df["treated"] * df["post"]
    df["spill_post"] = ((df[year_col] >= df["spill_year"]) & (df["spillover"] == 1)).astype(int)

    first_post = df["adoption_year"].map(
        lambda a: float(np.searchsorted(years, a, side="left")) if pd.notna(a) else np.nan
    )
    df["event_time"] = df[year_col].map(year_index).astype(float) - first_post
    return df


def event_time_dummies(
    df: pd.DataFrame, window: Tuple[int, int] = EVENT_WINDOW, reference: int = -1
) -> Tuple[pd.DataFrame, List[str]]:
    """Add binned relative-time indicators; the window endpoints absorb the tails."""

    lo, hi = window
    if not lo <= reference <= hi:
        raise ValueError(f"Reference period {reference} outside event window {window}")
    out = df.copy()
    et = out["event_time"].clip(lower=lo, upper=hi)
    cols = []
    for k in range(lo, hi + 1):
        if k == reference:
            continue
        name = f"evt_m{-k}" if k < 0 else f"evt_p{k}"
        out[name] = (et == k).astype(int)
        cols.append(name)
    return out, cols


def event_time_label(col: str) -> int:
    sign = -1 if col.startswith("evt_m") else 1
    return sign * int(col[len("evt_m"):])


def long_difference(
    panel: pd.DataFrame,
    columns: Sequence[str],
    *,
    section_col: str = SECTION_ID_COL,
    year_col: str = YEAR_COL,
) -> pd.DataFrame:
    """Change between the first and last election for each section."""

    years = np.sort(panel[year_col].unique())
    first, last = years[0], years[-1]
    if first == last:
        raise ValueError("Long difference needs at least two election years")
    a = panel.loc[panel[year_col] == first].set_index(section_col)[list(columns)]
    b = panel.loc[panel[year_col] == last].set_index(section_col)[list(columns)]
    diff = (b - a).dropna(how="all")
    diff.columns = [f"d_{c}" for c in diff.columns]
    return diff.reset_index()
