from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import geopandas as gpd
import joblib
from libpysal.weights import KNN, DistanceBand, Queen, Rook, W, attach_islands, w_subset

from src.config import WEIGHTS_KIND, WEIGHTS_KNN_K

WEIGHT_KINDS = ("queen", "rook", "knn", "distance")


def _centroids(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(geometry=gdf.geometry.centroid, index=gdf.index, crs=gdf.crs)


def build_weights(
    gdf: gpd.GeoDataFrame,
    kind: str = WEIGHTS_KIND,
    *,
    k: int = WEIGHTS_KNN_K,
    threshold: Optional[float] = None,
    fix_islands: bool = True,
    transform: str = "r",
) -> W:
    """Spatial weights over the rows of `gdf`, with ids taken from its index.

    Contiguity weights leave islands when a unit shares no border with any
    other; with `fix_islands` those are linked to their nearest neighbour so
    the autoregressive models and max-p see a connected-enough graph.
    """

    if kind == "queen":
        w = Queen.from_dataframe(gdf, use_index=True)
    elif kind == "rook":
        w = Rook.from_dataframe(gdf, use_index=True)
    elif kind == "knn":
        w = KNN.from_dataframe(_centroids(gdf), k=k, use_index=True)
    elif kind == "distance":
        if threshold is None:
            raise ValueError("Distance-band weights need a threshold")
        w = DistanceBand.from_dataframe(_centroids(gdf), threshold=threshold, binary=True, use_index=True)
    else:
        raise ValueError(f"Unknown weights kind: {kind!r}; expected one of {WEIGHT_KINDS}")

    if fix_islands and w.islands:
        knn1 = KNN.from_dataframe(_centroids(gdf), k=1, use_index=True)
        w = attach_islands(w, knn1)
        w.id_order = list(gdf.index)

    w.transform = transform
    return w


def align_weights(w: W, ids: Sequence, transform: str = "r") -> W:
    """Subset and reorder weights to `ids`, re-standardizing the result."""

    ids = list(ids)
    known = set(w.id_order)
    missing = [i for i in ids if i not in known]
    if missing:
        raise ValueError(f"{len(missing)} ids are not in the weights, e.g. {missing[:5]}")
    if ids == list(w.id_order):
        out = w
    else:
        out = w_subset(w, ids)
    out.transform = transform
    return out


def save_weights(w: W, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(w, path)


def load_weights(path: Path) -> W:
    return joblib.load(Path(path))


def weights_summary(w: W) -> dict:
    return {
        "n": int(w.n),
        "mean_neighbors": float(w.mean_neighbors),
        "islands": len(w.islands),
        "transform": w.transform,
    }
