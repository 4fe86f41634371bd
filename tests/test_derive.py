"""Tests for per-person derived variables"""

import polars as pl
import pytest

from rental_need.config import PipelineSettings
from rental_need.derive import (
    add_categoricals,
    add_employment_fields,
    add_renter_fields,
    clean_income,
    derive_variables,
)


def test_wage_sentinels_become_null_zero_stays_zero():
    df = pl.DataFrame({"incwage": [999999, 999998, 0, 5000], "hhincome": [1, 1, 1, 1]})
    out = clean_income(df)
    assert out["incwage"].to_list() == [None, None, 0.0, 5000.0]


def test_hhincome_floor_and_topcode():
    df = pl.DataFrame({"incwage": [0, 0, 0, 0], "hhincome": [9999999, -500, 0, 42000]})
    out = clean_income(df)
    assert out["hhincome"].to_list() == [None, 0.0, 0.0, 42000.0]


def test_custom_sentinels_from_settings():
    df = pl.DataFrame({"incwage": [999999, 777], "hhincome": [1, 1]})
    out = clean_income(df, PipelineSettings(wage_sentinels=(777,)))
    assert out["incwage"].to_list() == [999999.0, None]


@pytest.fixture
def tenure() -> pl.DataFrame:
    return pl.DataFrame({
        "ownershp": [2, 1, 0, 2, 2, 2, None],
        "rentgrs": [1000, 1500, 800, 2000, 500, 700, 900],
        "hhincome": [30000.0, 60000.0, 40000.0, 40000.0, 60000.0, None, 20000.0],
    })


def test_renter_flag(tenure):
    out = add_renter_fields(tenure)
    assert out["is_renter"].to_list() == [True, False, False, True, True, True, False]


def test_gross_rent_only_for_renters(tenure):
    out = add_renter_fields(tenure)
    assert out["gross_rent"].to_list() == [1000.0, None, None, 2000.0, 500.0, 700.0, None]


def test_rent_burden_values_and_nulls(tenure):
    out = add_renter_fields(tenure)
    burden = out["rent_burden"].to_list()
    assert burden[0] == pytest.approx(0.4)
    assert burden[3] == pytest.approx(0.6)
    assert burden[4] == pytest.approx(0.1)
    # owners, missing tenure and null income
    assert burden[1] is None
    assert burden[2] is None
    assert burden[5] is None
    assert burden[6] is None


def test_burden_null_whenever_not_renter(tenure):
    out = add_renter_fields(tenure)
    assert out.filter(~pl.col("is_renter"))["rent_burden"].null_count() == out.filter(~pl.col("is_renter")).height


def test_burden_bands_are_exclusive(tenure):
    out = add_renter_fields(tenure)
    rows = out.to_dicts()
    assert rows[0]["burden_category"] == "moderate"
    assert rows[3]["burden_category"] == "severe"
    assert rows[4]["burden_category"] == "not_burdened"
    assert rows[5]["burden_category"] is None

    burdened = out.filter(pl.col("is_burdened").fill_null(False))
    both = burdened.filter(pl.col("is_moderately_burdened") & pl.col("is_severely_burdened"))
    either = burdened.filter(pl.col("is_moderately_burdened") | pl.col("is_severely_burdened"))
    assert both.height == 0
    assert either.height == burdened.height


def test_target_burden_never_null(tenure):
    out = add_renter_fields(tenure)
    target = out["target_burden"].to_list()
    assert out["target_burden"].null_count() == 0
    assert target[0] == pytest.approx(0.4)
    assert target[3] == pytest.approx(0.6)
    assert target[4] == pytest.approx(0.30)
    assert target[1] == pytest.approx(0.30)


def test_zero_income_renter_is_severely_burdened():
    """Positive rent on zero household income: infinite burden, severe band"""
    df = pl.DataFrame({"ownershp": [2, 2], "rentgrs": [900, 0], "hhincome": [0.0, 0.0]})
    out = add_renter_fields(df).to_dicts()
    paying, free = out
    assert paying["rent_burden"] == float("inf")
    assert paying["is_burdened"] is True
    assert paying["is_severely_burdened"] is True
    assert paying["is_moderately_burdened"] is False
    assert paying["burden_category"] == "severe"
    assert paying["target_burden"] == pytest.approx(1.0)
    assert free["rent_burden"] == 0.0
    assert free["burden_category"] == "not_burdened"
    assert free["target_burden"] == pytest.approx(0.30)


def test_zero_income_target_is_configurable():
    df = pl.DataFrame({"ownershp": [2], "rentgrs": [900], "hhincome": [0.0]})
    out = add_renter_fields(df, PipelineSettings(zero_income_target_burden=0.75))
    assert out["target_burden"][0] == pytest.approx(0.75)


def test_floored_negative_income_renter_is_severely_burdened():
    df = pl.DataFrame({
        "ownershp": [2],
        "rentgrs": [900],
        "hhincome": [-5000],
        "incwage": [0],
        "migrate1": [1],
        "unitsstr": [7],
        "empstat": [1],
    })
    out = derive_variables(df)
    assert out["hhincome"][0] == 0.0
    assert out["burden_category"][0] == "severe"


def test_income_eligible_against_threshold():
    df = pl.DataFrame({
        "ownershp": [2, 2, 2],
        "rentgrs": [1000, 1000, 1000],
        "hhincome": [40000.0, 60000.0, 40000.0],
        "income_threshold": [50000.0, 50000.0, None],
    })
    out = add_renter_fields(df)
    assert out["income_eligible"].to_list() == [True, False, None]


def test_mover_status_buckets():
    df = pl.DataFrame({"migrate1": [1, 2, 3, 4, 0, 9, None], "unitsstr": [3] * 7})
    out = add_categoricals(df)
    assert out["mover_status"].to_list() == [
        "same_house",
        "moved_within_state",
        "moved_between_states",
        "moved_from_abroad",
        "other",
        "other",
        "other",
    ]
    assert out["recent_mover"].to_list() == [False, True, True, True, False, False, False]


def test_building_size_buckets():
    df = pl.DataFrame({"migrate1": [1] * 9, "unitsstr": [1, 3, 5, 7, 9, 10, 2, 0, None]})
    out = add_categoricals(df)
    assert out["building_size"].to_list() == [
        "mobile_home",
        "single_family",
        "2_4_units",
        "5_19_units",
        "20_plus_units",
        "20_plus_units",
        "other",
        "other",
        "other",
    ]
    assert out["building_size"].null_count() == 0


def test_employment_flags():
    out = add_employment_fields(pl.DataFrame({"empstat": [1, 2, 3, 0, None]}))
    assert out["is_employed"].to_list() == [True, False, False, False, False]
    assert out["is_unemployed"].to_list() == [False, True, False, False, False]


def test_derive_variables_cleans_before_burden():
    """Top-coded household income must not produce a burden"""
    df = pl.DataFrame({
        "incwage": [999999],
        "hhincome": [9999999],
        "ownershp": [2],
        "rentgrs": [1200],
        "migrate1": [1],
        "unitsstr": [7],
        "empstat": [1],
    })
    out = derive_variables(df)
    row = out.to_dicts()[0]
    assert row["incwage"] is None
    assert row["hhincome"] is None
    assert row["rent_burden"] is None
    assert row["target_burden"] == pytest.approx(0.30)
    assert row["building_size"] == "5_19_units"
