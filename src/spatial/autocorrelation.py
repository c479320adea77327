from __future__ import annotations

from typing import Dict, Iterable, Mapping

import numpy as np
import pandas as pd
from esda.moran import Moran
from libpysal.weights import W

from src.config import MORAN_PERMUTATIONS, RANDOM_SEED


def morans_i(
    values,
    w: W,
    *,
    permutations: int = MORAN_PERMUTATIONS,
    seed: int = RANDOM_SEED,
) -> Dict[str, float]:
    """Global Moran's I; `values` must follow the id order of `w`."""

    y = np.asarray(values, dtype=float).ravel()
    if y.size != w.n:
        raise ValueError(f"Got {y.size} values for weights over {w.n} units")
    if np.isnan(y).any():
        raise ValueError("Moran's I is undefined with missing values; align the weights first")

    np.random.seed(seed)
    mi = Moran(y, w, permutations=permutations)
    out = {
        "I": float(mi.I),
        "expected_I": float(mi.EI),
        "z_norm": float(mi.z_norm),
        "p_norm": float(mi.p_norm),
        "p_sim": float(mi.p_sim) if permutations else np.nan,
    }
    return out


def moran_table(
    series: Mapping[str, Iterable[float]],
    w: W,
    *,
    permutations: int = MORAN_PERMUTATIONS,
    seed: int = RANDOM_SEED,
) -> pd.DataFrame:
    rows = []
    for name, values in series.items():
        rows.append({"variable": name, **morans_i(values, w, permutations=permutations, seed=seed)})
    return pd.DataFrame(rows)
