from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from libpysal.weights import WSP, W
from sklearn.preprocessing import StandardScaler
from spopt.region import MaxPHeuristic

from src.config import GEOID_COL, MAXP_ITERATIONS_SA, MAXP_TOP_N, RANDOM_SEED
from src.spatial.weights import align_weights


def _attach_unsolved(labels: pd.Series, w: W, z: pd.DataFrame, threshold_col: str) -> pd.Series:
    """Give each unlabelled unit the region of its most similar labelled neighbour.

    Units are attached in passes so chains of unlabelled neighbours resolve
    outward from the solved regions.
    """

    labels = labels.copy()
    pending = list(labels.index[labels.isna()])
    while pending:
        remaining = []
        for unit in pending:
            donors = [n for n in w.neighbors[unit] if pd.notna(labels[n])]
            if not donors:
                remaining.append(unit)
                continue
            dist = (z.loc[donors] - z.loc[unit]).abs().sum(axis=1)
            labels[unit] = labels[dist.idxmin()]
        if len(remaining) == len(pending):
            raise ValueError(
                f"{len(remaining)} units with zero {threshold_col} have no path to a region, e.g. {remaining[:5]}"
            )
        pending = remaining
    return labels.astype(int)


def run_maxp(
    gdf: gpd.GeoDataFrame,
    w: W,
    attrs: Sequence[str],
    threshold_col: str,
    threshold: float,
    *,
    top_n: int = MAXP_TOP_N,
    seed: int = RANDOM_SEED,
    max_iterations_construction: int = 99,
    max_iterations_sa: int = MAXP_ITERATIONS_SA,
) -> Tuple[pd.Series, int]:
    """Greedy max-p regionalization of the rows of `gdf`.

    Attributes are median-filled and standardized on the solved units before
    clustering. `w` must follow the row order of `gdf`. Units with a zero
    threshold value can never help a region reach the floor, so the solver only
    sees the units that carry some of it; the rest join the region of their
    most similar neighbour afterwards. Returns region labels indexed like `gdf`
    and the number of regions.
    """

    if list(w.id_order) != list(gdf.index):
        raise ValueError("Weights id order does not match the GeoDataFrame index")
    size = pd.to_numeric(gdf[threshold_col], errors="coerce").fillna(0.0)
    total = float(size.sum())
    if total < threshold:
        raise ValueError(f"Threshold {threshold} exceeds the total {threshold_col} ({total})")

    solved = list(size.index[size > 0])
    attrs = list(attrs)
    x = gdf[attrs].apply(pd.to_numeric, errors="coerce")
    x = x.fillna(x.loc[solved].median())
    z_cols = [f"z_{a}" for a in attrs]
    scaler = StandardScaler().fit(x.loc[solved].to_numpy(dtype=float))
    z = pd.DataFrame(scaler.transform(x.to_numpy(dtype=float)), columns=z_cols, index=gdf.index)

    work = gpd.GeoDataFrame(
        z.loc[solved].to_numpy(),
        columns=z_cols,
        geometry=gdf.geometry.loc[solved].to_numpy(),
        crs=gdf.crs,
    )
    work[threshold_col] = size.loc[solved].to_numpy()

    # Positional ids so the solver's neighbour lookups index the attribute rows.
    w_pos = WSP(align_weights(w, solved).sparse).to_W(silence_warnings=True)

    np.random.seed(seed)
    model = MaxPHeuristic(
        work,
        w_pos,
        z_cols,
        threshold_col,
        threshold,
        top_n,
        max_iterations_construction=max_iterations_construction,
        max_iterations_sa=max_iterations_sa,
    )
    model.solve()

    labels = pd.Series(np.asarray(model.labels_, dtype=float), index=solved).reindex(gdf.index)
    labels = _attach_unsolved(labels, w, z, threshold_col).rename("region")
    return labels, int(model.p)


def summarize_regions(
    df: pd.DataFrame,
    labels: pd.Series,
    *,
    count_cols: Iterable[str] = ("n_households", "n_trips", "population"),
    weight_col: str = "weight_sum",
    rate_col: str = "trip_rate",
    mean_cols: Optional[Iterable[str]] = None,
    mean_weight_col: str = "population",
) -> pd.DataFrame:
    """Aggregate units to max-p regions.

    Counts are summed; the trip rate is pooled with the survey weight mass of
    each unit; other attributes are population-weighted means. When `df` is a
    GeoDataFrame the region geometries are dissolved as well.
    """

    data = df.copy()
    data["region"] = labels.reindex(data.index).to_numpy()
    count_cols = [c for c in count_cols if c in data.columns]
    mean_cols = [c for c in (mean_cols or []) if c in data.columns]

    w_rate = data[weight_col].fillna(0.0)
    data["_wr"] = (w_rate * data[rate_col]).fillna(0.0)
    data["_w"] = w_rate.where(data[rate_col].notna(), 0.0)
    pop = data[mean_weight_col].astype(float).fillna(0.0)
    agg: Dict[str, str] = {c: "sum" for c in count_cols + ["_wr", "_w"]}
    for c in mean_cols:
        data[f"_p_{c}"] = pop * data[c]
        data[f"_pw_{c}"] = pop.where(data[c].notna(), 0.0)
        agg[f"_p_{c}"] = "sum"
        agg[f"_pw_{c}"] = "sum"

    grouped = data.groupby("region")
    out = grouped.agg(agg)
    out.insert(0, "n_units", grouped.size())
    out[rate_col] = out["_wr"] / out["_w"].replace(0, np.nan)
    for c in mean_cols:
        out[c] = out[f"_p_{c}"] / out[f"_pw_{c}"].replace(0, np.nan)
    out = out.drop(columns=[c for c in out.columns if c.startswith("_")])

    if isinstance(df, gpd.GeoDataFrame):
        shapes = gpd.GeoDataFrame({"region": data["region"]}, geometry=df.geometry, crs=df.crs).dissolve(by="region")
        out = gpd.GeoDataFrame(out, geometry=shapes.geometry.reindex(out.index), crs=df.crs)
    return out.reset_index()


def region_membership(labels: pd.Series, id_col: str = GEOID_COL) -> pd.DataFrame:
    return labels.rename_axis(id_col).reset_index()
