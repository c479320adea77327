import numpy as np
import pandas as pd
import pytest

from src.data.coding import coerce_categorical, normalize_id, standardize_columns, summarize_missingness
from src.data.validate import (
    assert_balanced_panel,
    assert_required_columns,
    assert_unique_key,
    join_audit,
    varying_columns,
)


def test_normalize_id_restores_leading_zeros_and_float_suffix():
    s = pd.Series([6037101110, 6037101110.0, "06037101110", " 6037101110.0 ", None, "H001"])
    out = normalize_id(s, width=11)
    assert out.tolist()[:4] == ["06037101110"] * 4
    assert pd.isna(out.iloc[4])
    assert out.iloc[5] == "H001"
    assert out.dtype == "string"


def test_standardize_columns_snake_cases_and_detects_collisions():
    df = pd.DataFrame(columns=["HH Size", "Median-Income"])
    assert standardize_columns(df).columns.tolist() == ["hh_size", "median_income"]

    with pytest.raises(ValueError, match="collisions"):
        standardize_columns(pd.DataFrame(columns=["HH Size", "hh_size"]))


def test_coerce_categorical_labels_numeric_codes():
    out = coerce_categorical(pd.Series([1, 2.0, np.nan]), prefix="inc_")
    assert out.dtype == "category"
    assert out.tolist()[:2] == ["inc_1", "inc_2"]
    assert pd.isna(out.iloc[2])


def test_summarize_missingness():
    df = pd.DataFrame({"a": [1, None, 3, None], "b": [1, 2, 3, 4]})
    out = summarize_missingness(df).set_index("column")
    assert out.loc["a", "n_missing"] == 2
    assert out.loc["a", "missing_rate"] == 0.5
    assert out.loc["b", "n_missing"] == 0


def test_assert_required_columns_and_unique_key():
    df = pd.DataFrame({"k": [1, 1, 2], "t": [1, 2, 1]})
    assert_required_columns(df, ["k", "t"])
    with pytest.raises(ValueError, match="Missing required columns"):
        assert_required_columns(df, ["k", "missing"])

    assert_unique_key(df, ["k", "t"])
    with pytest.raises(ValueError, match="Duplicate rows"):
        assert_unique_key(df, "k")


def test_join_audit_counts_both_sides():
    left = pd.DataFrame({"geoid": ["a", "a", "b", "c"]})
    right = pd.DataFrame({"geoid": ["a", "b", "d", "e"]})
    audit = join_audit(left, right, "geoid")
    assert audit["left_rows"] == 4
    assert audit["left_matched"] == 3
    assert audit["left_unmatched"] == 1
    assert audit["right_keys"] == 4
    assert audit["right_unmatched"] == 2


def test_assert_balanced_panel():
    panel = pd.DataFrame({"unit": ["a", "a", "b", "b"], "year": [1, 2, 1, 2]})
    assert_balanced_panel(panel, "unit", "year")
    with pytest.raises(ValueError, match="Unbalanced panel"):
        assert_balanced_panel(panel.iloc[:3], "unit", "year")


def test_varying_columns_ignores_constants_and_missing():
    df = pd.DataFrame({"x": [1, 2, 3], "c": [0, 0, 0], "m": [np.nan, 1.0, np.nan]})
    assert varying_columns(df, ["x", "c", "m"]) == ["x"]
