import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from src.data.ingest import load_households, read_geometries, read_table
from tests.conftest import CRS, make_grid


@pytest.fixture
def frame():
    return pd.DataFrame({"household_id": ["H1", "H2"], "hh_size": [2, 3]})


@pytest.mark.parametrize("suffix", [".csv", ".parquet", ".pkl", ".xlsx"])
def test_read_table_dispatches_on_suffix(tmp_path, frame, suffix):
    path = tmp_path / f"households{suffix}"
    if suffix == ".csv":
        frame.to_csv(path, index=False)
    elif suffix == ".parquet":
        frame.to_parquet(path, index=False)
    elif suffix == ".pkl":
        frame.to_pickle(path)
    else:
        frame.to_excel(path, index=False, engine="openpyxl")

    out = read_table(path)
    assert out["household_id"].tolist() == ["H1", "H2"]
    assert out["hh_size"].tolist() == [2, 3]


@pytest.mark.parametrize("name", ["households.xls", "households.json", "households"])
def test_read_table_rejects_unknown_formats(tmp_path, name):
    path = tmp_path / name
    path.write_text("household_id\nH1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported table format"):
        read_table(path)


def test_named_loaders_standardize_column_names(tmp_path):
    path = tmp_path / "households.csv"
    pd.DataFrame({"Household ID": ["H1"], "HH Size": [2]}).to_csv(path, index=False)
    assert load_households(path).columns.tolist() == ["household_id", "hh_size"]


def _write_tracts(tmp_path, ids):
    gdf = make_grid(1, len(ids), 100.0, "geoid", lambda i: ids[i])
    path = tmp_path / "tracts.gpkg"
    gdf.to_file(path, driver="GPKG")
    return path


def test_read_geometries_pads_ids_and_indexes_by_them(tmp_path):
    path = _write_tracts(tmp_path, [6037000001, 6037000002])
    gdf = read_geometries(path, "geoid", 11)
    assert list(gdf.index) == ["06037000001", "06037000002"]
    assert gdf["geoid"].tolist() == list(gdf.index)


def test_read_geometries_rejects_duplicate_ids(tmp_path):
    path = _write_tracts(tmp_path, ["6037000001", "06037000001"])
    with pytest.raises(ValueError, match="Duplicate identifiers"):
        read_geometries(path, "geoid", 11)


def test_read_geometries_rejects_missing_ids(tmp_path):
    gdf = gpd.GeoDataFrame(
        {"geoid": ["06037000001", None]}, geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)], crs=CRS
    )
    path = tmp_path / "tracts.gpkg"
    gdf.to_file(path, driver="GPKG")
    with pytest.raises(ValueError, match="Missing identifiers"):
        read_geometries(path, "geoid", 11)


def test_read_geometries_requires_the_id_column(tmp_path):
    path = _write_tracts(tmp_path, ["a", "b"])
    with pytest.raises(ValueError, match="has no 'tract' column"):
        read_geometries(path, "tract")
