from pathlib import Path
from typing import Optional

import geopandas as gpd
import pandas as pd

from .coding import normalize_id, standardize_columns


def read_table(path: Path) -> pd.DataFrame:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, low_memory=False)
    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix == ".xlsx":
        return pd.read_excel(path, engine="openpyxl")
    if suffix == ".pkl":
        return pd.read_pickle(path)
    raise ValueError(f"Unsupported table format: {path.name}")


def load_households(path: Path) -> pd.DataFrame:
    return standardize_columns(read_table(path))


def load_trips(path: Path) -> pd.DataFrame:
    return standardize_columns(read_table(path))


def load_tract_attributes(path: Path) -> pd.DataFrame:
    return standardize_columns(read_table(path))


def load_election_results(path: Path) -> pd.DataFrame:
    return standardize_columns(read_table(path))


def load_section_controls(path: Path) -> pd.DataFrame:
    return standardize_columns(read_table(path))


def read_geometries(path: Path, id_col: str, id_width: Optional[int] = None) -> gpd.GeoDataFrame:
    """Read a geometry file and normalize its identifier column.

    The returned frame is indexed by the normalized identifier, which is the id
    order used when building spatial weights from it.
    """

    gdf = gpd.read_file(path)
    if id_col not in gdf.columns:
        raise ValueError(f"Geometry file {Path(path).name} has no '{id_col}' column")
    gdf[id_col] = normalize_id(gdf[id_col], width=id_width)
    if gdf[id_col].isna().any():
        raise ValueError(f"Missing identifiers in geometry file {Path(path).name}")
    if gdf[id_col].duplicated().any():
        raise ValueError(f"Duplicate identifiers in geometry file {Path(path).name}")
    return gdf.set_index(id_col, drop=False).rename_axis(None)
