import numpy as np
import pandas as pd
import pytest

from src.data.elections import (
    add_treatment_timing,
    assign_superblock_exposure,
    build_election_panel,
    event_time_dummies,
    event_time_label,
    long_difference,
)


def test_build_election_panel_shares_and_turnout():
    results = pd.DataFrame(
        {
            "section_id": [801900001] * 4,
            "year": [2019] * 4,
            "party": ["BComu", "PSC", "PSC", "Pacma"],
            "votes": [30, 40, 10, 20],
            "registered": [200] * 4,
        }
    )
    panel = build_election_panel(results)
    row = panel.iloc[0]
    assert row["section_id"] == "0801900001"
    assert row["valid_votes"] == 100
    assert row["turnout"] == pytest.approx(0.5)
    assert row["share_bcomu"] == pytest.approx(0.3)
    assert row["share_psc"] == pytest.approx(0.5)
    assert row["share_vox"] == 0
    assert row["share_other"] == pytest.approx(0.2)


def test_build_election_panel_rejects_inconsistent_electorate():
    results = pd.DataFrame(
        {
            "section_id": [1, 1],
            "year": [2019, 2019],
            "party": ["psc", "erc"],
            "votes": [10, 20],
            "registered": [100, 120],
        }
    )
    with pytest.raises(ValueError, match="varies within section-year"):
        build_election_panel(results)


def test_panel_one_row_per_section_year(election_data):
    panel = build_election_panel(election_data["results"])
    assert len(panel) == 36 * 4
    assert not panel.duplicated(["section_id", "year"]).any()
    share_cols = [c for c in panel.columns if c.startswith("share_")]
    assert np.allclose(panel[share_cols].sum(axis=1), 1.0)


def test_superblock_exposure_classifies_sections(election_data):
    exposure = assign_superblock_exposure(election_data["sections"], election_data["superblocks"])
    exposure = exposure.set_index("section_id")

    treated = exposure.index[exposure["treated"] == 1]
    assert set(treated) == set(election_data["adoption"])
    for sid, year in election_data["adoption"].items():
        assert exposure.loc[sid, "adoption_year"] == year
        assert exposure.loc[sid, "dist_superblock_m"] == pytest.approx(0.0)

    assert ((exposure["spillover"] == 1) & (exposure["treated"] == 1)).sum() == 0
    assert exposure["spillover"].sum() > 0
    spill = exposure.loc[exposure["spillover"] == 1]
    assert (spill["dist_superblock_m"] <= 300.0).all()
    assert spill["spill_year"].notna().all()

    # Bottom-right corner section, far from both superblocks.
    far = exposure.loc["0801900006"]
    assert far["treated"] == 0 and far["spillover"] == 0
    assert far["dist_superblock_m"] > 300.0


def test_exposure_buffer_widens_treatment(election_data):
    plain = assign_superblock_exposure(election_data["sections"], election_data["superblocks"])
    wide = assign_superblock_exposure(
        election_data["sections"], election_data["superblocks"], buffer_m=250.0, spillover_m=100.0
    )
    assert wide["treated"].sum() > plain["treated"].sum()


def _timed_panel():
    panel = pd.DataFrame(
        {
            "section_id": ["a"] * 4 + ["b"] * 4 + ["c"] * 4,
            "year": [2011, 2015, 2019, 2023] * 3,
            "y": np.arange(12, dtype=float),
        }
    )
    exposure = pd.DataFrame(
        {
            "section_id": ["a", "b"],
            "adoption_year": [2017.0, np.nan],
            "treated": [1, 0],
            "spillover": [0, 1],
            "spill_year": [np.nan, 2017.0],
            "dist_superblock_m": [0.0, 120.0],
        }
    )
    return add_treatment_timing(panel, exposure)


def test_treatment_timing_counts_elections():
    df = _timed_panel()
    a = df.loc[df["section_id"] == "a"]
    assert a["post"].tolist() == [0, 0, 1, 1]
    assert a["treat_post"].tolist() == [0, 0, 1, 1]
    assert a["event_time"].tolist() == [-2.0, -1.0, 0.0, 1.0]

    b = df.loc[df["section_id"] == "b"]
    assert b["treat_post"].sum() == 0
    assert b["spill_post"].tolist() == [0, 0, 1, 1]
    assert b["event_time"].isna().all()

    c = df.loc[df["section_id"] == "c"]
    assert (c[["treated", "spillover", "treat_post", "spill_post"]] == 0).all().all()


def test_event_time_dummies_bin_endpoints_and_skip_reference():
    df = _timed_panel()
    out, cols = event_time_dummies(df, window=(-1, 0))
    assert cols == ["evt_p0"]
    a = out.loc[out["section_id"] == "a"]
    assert a["evt_p0"].tolist() == [0, 0, 1, 1]
    assert out.loc[out["section_id"] != "a", "evt_p0"].sum() == 0

    _, cols = event_time_dummies(df, window=(-3, 2))
    assert cols == ["evt_m3", "evt_m2", "evt_p0", "evt_p1", "evt_p2"]
    assert [event_time_label(c) for c in cols] == [-3, -2, 0, 1, 2]

    with pytest.raises(ValueError, match="outside event window"):
        event_time_dummies(df, window=(0, 2))


def test_long_difference():
    df = _timed_panel()
    diff = long_difference(df, ["y"]).set_index("section_id")
    assert diff["d_y"].tolist() == [3.0, 3.0, 3.0]

    with pytest.raises(ValueError, match="at least two"):
        long_difference(df.loc[df["year"] == 2011], ["y"])
