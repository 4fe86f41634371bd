"""End-to-end tests for the enrichment pipeline"""

import json

import polars as pl
import pytest

from rental_need.config import PipelineSettings
from rental_need.pipeline import load_industry_lookup, load_table, run_pipeline
from rental_need.pipeline_validator import PipelineValidator, StructuralError, require_unique
from rental_need.run_manifest import write_run_manifest

INDUSTRY_MAP = {8680: "Leisure and hospitality", 9470: "Government"}


@pytest.fixture
def persons() -> pl.DataFrame:
    return pl.DataFrame({
        "serial": [1, 1, 2, 3, 4, 5],
        "pernum": [1, 2, 1, 1, 1, 1],
        "statefip": [36, 36, 36, 36, 36, 36],
        "puma": [3801, 3801, 3801, 3801, 3802, 9999],
        "numprec": [10, 10, 2, 1, 3, 1],
        "age": [40, 38, 29, 80, 51, 33],
        "ind": [8680, 9470, 8680, 0, 7860, 8680],
        "inctot": [12000, 16000, 999, 20000, 0, 30000],
        "incwage": [12000, 16000, 999999, 0, 0, 30000],
        "hhincome": [40000, 40000, 24000, 20000, 9999999, 30000],
        "ownershp": [2, 2, 2, 0, 1, 2],
        "rentgrs": [1500, 1500, 1000, 0, 0, 500],
        "empstat": [1, 1, 2, 3, 1, 1],
        "unitsstr": [7, 7, 10, 0, 3, 99],
        "migrate1": [1, 1, 3, 1, 2, 1],
        "gq": [1, 1, 1, 3, 1, 1],
    })


@pytest.fixture
def crosswalk() -> pl.DataFrame:
    return pl.DataFrame({
        "state": [36, 36, 36, 36],
        "puma": [3801, 3801, 3802, 3802],
        "county": ["36047", "36061", "36005", "36047"],
        "afact": [0.2, 0.8, 0.5, 0.5],
    })


@pytest.fixture
def thresholds() -> pl.DataFrame:
    return pl.DataFrame({
        "state": [36],
        "county": ["36061"],
        **{f"l50_{n}": [30000.0 + 2500.0 * (n - 1) if n < 8 else 50000.0] for n in range(1, 9)},
    })


@pytest.fixture
def job_loss() -> pl.DataFrame:
    return pl.DataFrame({
        "industry_group": ["Leisure and hospitality", "Government"],
        "emp_pre": [1000.0, 500.0],
        "emp_post": [600.0, 510.0],
        "pct_change": [-40.0, 2.0],
        "renter_adjustment": [1.5, 1.0],
    })


@pytest.fixture
def enriched(persons, crosswalk, thresholds, job_loss) -> pl.DataFrame:
    return run_pipeline(persons, crosswalk, thresholds, job_loss, INDUSTRY_MAP).sort(["serial", "pernum"])


def _person(df: pl.DataFrame, serial: int, pernum: int = 1) -> dict:
    return df.filter((pl.col("serial") == serial) & (pl.col("pernum") == pernum)).to_dicts()[0]


def test_group_quarters_removed_nothing_else(enriched):
    assert enriched.height == 5
    assert 3 not in enriched["serial"].to_list()
    assert enriched.select(["serial", "pernum"]).unique().height == enriched.height


def test_size_ten_household_uses_size_eight_threshold(enriched):
    p = _person(enriched, 1)
    assert p["county"] == "36061"
    assert p["hh_size_capped"] == 8
    assert p["income_threshold"] == 50000.0
    assert p["income_eligible"] is True


def test_benefit_tiers_end_to_end(enriched):
    """$3000/qtr uses the 1/25 rule; $4000/qtr uses the 1/26 rule"""
    tier_one = _person(enriched, 1, 1)
    tier_two = _person(enriched, 1, 2)
    assert tier_one["quarterly_wage"] == pytest.approx(3000.0)
    assert tier_one["ui_weekly"] == pytest.approx(120.0)
    assert tier_one["ui_monthly"] == pytest.approx(480.0)
    assert tier_two["quarterly_wage"] == pytest.approx(4000.0)
    assert tier_two["ui_weekly"] == pytest.approx(4000.0 / 26.0)
    assert tier_two["ui_fpuc_monthly"] == pytest.approx(2400.0)


def test_household_totals_broadcast(enriched):
    hh = enriched.filter(pl.col("serial") == 1)
    assert hh["hh_wage_income"].to_list() == [28000.0, 28000.0]
    assert hh["hh_ui_monthly"].n_unique() == 1
    assert hh["hh_ui_monthly"][0] == pytest.approx(480.0 + 4 * 4000.0 / 26.0)


def test_sentinel_wage_gives_no_benefit(enriched):
    p = _person(enriched, 2)
    assert p["incwage"] is None
    assert p["hh_wage_income"] == 0.0
    assert p["ui_monthly"] == 0.0
    assert p["ui_lwa_monthly"] == 0.0
    assert p["mover_status"] == "moved_between_states"
    assert p["building_size"] == "20_plus_units"


def test_rent_burden_end_to_end(enriched):
    p = _person(enriched, 1)
    assert p["rent_burden"] == pytest.approx(1500 * 12 / 40000)
    assert p["burden_category"] == "moderate"
    assert p["target_burden"] == pytest.approx(0.45)

    owner = _person(enriched, 4)
    assert owner["is_renter"] is False
    assert owner["rent_burden"] is None
    assert owner["hhincome"] is None


def test_job_loss_and_tie_break(enriched):
    p = _person(enriched, 1)
    assert p["job_loss_pct"] == pytest.approx(40.0)
    assert p["renter_job_loss_pct"] == pytest.approx(60.0)
    assert _person(enriched, 1, 2)["job_loss_pct"] == 0.0

    tied = _person(enriched, 4)
    assert tied["county"] == "36005"
    assert tied["industry_group"] is None


def test_unmatched_geography_kept(enriched):
    p = _person(enriched, 5)
    assert p["county"] is None
    assert p["income_threshold"] is None
    assert p["income_eligible"] is None
    assert p["building_size"] == "other"


def test_validator_records_checkpoints(persons, crosswalk, thresholds, job_loss):
    validator = PipelineValidator()
    run_pipeline(persons, crosswalk, thresholds, job_loss, INDUSTRY_MAP, PipelineSettings(), validator)
    assert list(validator.checkpoints) == ["joined", "derived", "benefits", "household"]
    assert all(cp["status"] == "PASS" for cp in validator.checkpoints.values())
    assert validator.compare_checkpoints("joined", "household")["row_change"] == 0


def test_duplicate_person_rows_abort(persons, crosswalk, thresholds, job_loss):
    with pytest.raises(StructuralError, match="duplicate"):
        run_pipeline(pl.concat([persons, persons.head(1)]), crosswalk, thresholds, job_loss, INDUSTRY_MAP)


def test_duplicate_job_loss_groups_abort(persons, crosswalk, thresholds, job_loss):
    with pytest.raises(StructuralError, match="job-loss"):
        run_pipeline(persons, crosswalk, thresholds, pl.concat([job_loss, job_loss]), INDUSTRY_MAP)


def test_require_unique_message():
    df = pl.DataFrame({"k": [1, 1, 2]})
    with pytest.raises(StructuralError, match="1 duplicate keys"):
        require_unique(df, ["k"], "table")


def test_load_table_and_industry_lookup(tmp_path):
    path = tmp_path / "ind.csv"
    pl.DataFrame({"ind": [8680, 9470], "industry_group": ["Leisure and hospitality", "Government"]}).write_csv(path)
    assert load_industry_lookup(path) == INDUSTRY_MAP
    assert load_table(path).height == 2

    with pytest.raises(FileNotFoundError):
        load_table(tmp_path / "missing.parquet")
    with pytest.raises(ValueError, match="Unsupported"):
        (tmp_path / "x.json").write_text("{}", encoding="utf-8")
        load_table(tmp_path / "x.json")


def test_run_manifest(tmp_path):
    validator = PipelineValidator()
    validator.checkpoint("joined", pl.DataFrame({"serial": [1, 2]}))
    path = write_run_manifest(
        output_dir=tmp_path,
        command="run_pipeline --persons p.parquet",
        inputs={"persons": "p.parquet"},
        settings=PipelineSettings(),
        checkpoints=validator.checkpoints,
    )
    manifest = json.loads(path.read_text(encoding="utf-8"))
    assert manifest["inputs"] == {"persons": "p.parquet"}
    assert manifest["parameters"]["household_size_cap"] == 8
    assert manifest["checkpoints"]["joined"]["rows"] == 2
