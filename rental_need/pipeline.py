# rental_need/pipeline.py
"""
End-to-end enrichment of survey person records for rental-assistance analysis.

Stages (each a table -> table transformation, run strictly in this order):
1. resolve the PUMA -> county crosswalk to one county per PUMA
2. drop group quarters and join county, income threshold and job loss
3. derive income, rent-burden and categorical variables
4. compute UI regular benefit and enhancements
5. broadcast household wage and UI totals onto every member
"""

from __future__ import annotations

import logging
from pathlib import Path

import polars as pl

from rental_need.benefits import add_ui_benefits
from rental_need.config import PipelineSettings
from rental_need.crosswalk import resolve_crosswalk
from rental_need.derive import derive_variables
from rental_need.household import add_household_totals
from rental_need.pipeline_validator import PipelineValidator
from rental_need.reference_join import IndustryLookup, compute_job_loss, join_references, prepare_thresholds

logger = logging.getLogger(__name__)

REFERENCE_COLS = ["county", "income_threshold", "job_loss_pct"]
OUTPUT_REQUIRED_COLS = [
    "county",
    "hh_size_capped",
    "income_threshold",
    "industry_group",
    "job_loss_pct",
    "is_renter",
    "rent_burden",
    "target_burden",
    "mover_status",
    "building_size",
    "ui_monthly",
    "hh_wage_income",
]


def load_table(path: str | Path) -> pl.DataFrame:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input file not found: {p}")
    suf = p.suffix.lower()
    if suf == ".parquet":
        return pl.read_parquet(p)
    if suf in {".csv", ".txt"}:
        return pl.read_csv(p, infer_schema_length=10000)
    if suf in {".xlsx", ".xls"}:
        return pl.read_excel(p, sheet_id=1)
    raise ValueError(f"Unsupported file type '{suf}' for {p}")


def load_industry_lookup(path: str | Path) -> dict[int, str]:
    """Read an `ind -> industry_group` table into a dict."""
    df = load_table(path)
    if not {"ind", "industry_group"}.issubset(df.columns):
        raise ValueError(f"Industry map needs columns 'ind' and 'industry_group', found {df.columns}")
    df = df.drop_nulls(["ind", "industry_group"])
    if df["ind"].n_unique() != df.height:
        raise ValueError("Industry map has duplicate 'ind' codes")
    return dict(zip(df["ind"].cast(pl.Int64).to_list(), df["industry_group"].cast(pl.Utf8).to_list()))


def run_pipeline(
    persons: pl.DataFrame,
    crosswalk: pl.DataFrame,
    thresholds: pl.DataFrame,
    job_loss: pl.DataFrame,
    industry_lookup: IndustryLookup,
    settings: PipelineSettings | None = None,
    validator: PipelineValidator | None = None,
) -> pl.DataFrame:
    """Run all stages and return one enriched record per retained person.

    Raises:
        StructuralError: duplicate reference keys, missing household ids, or
            row-count drift between stages.
    """
    if settings is None:
        settings = PipelineSettings()
    if validator is None:
        validator = PipelineValidator()

    logger.info("=" * 70)
    logger.info("RENTAL NEED PIPELINE")
    logger.info("=" * 70)
    logger.info(f"Persons in: {persons.height:,}")

    geography = resolve_crosswalk(crosswalk, tie_break=settings.tie_break)
    threshold_table = prepare_thresholds(thresholds, cap=settings.household_size_cap)
    job_loss_table = compute_job_loss(job_loss)

    df = join_references(persons, geography, threshold_table, job_loss_table, industry_lookup, settings)
    validator.checkpoint("joined", df, expected_cols=REFERENCE_COLS, required_cols=[settings.household_key])

    df = derive_variables(df, settings)
    validator.checkpoint("derived", df, required_cols=["is_renter", "target_burden"])

    df = add_ui_benefits(
        df,
        settings.benefit_schedule,
        wage_col=settings.wage_column,
        quarters_per_year=settings.quarters_per_year,
        weeks_per_month=settings.weeks_per_month,
    )
    validator.checkpoint("benefits", df, required_cols=["ui_monthly"])

    df = add_household_totals(df, column=settings.wage_column, alias="hh_wage_income", key=settings.household_key)
    df = add_household_totals(df, column="ui_monthly", alias="hh_ui_monthly", key=settings.household_key)

    key_cols = [settings.household_key, "pernum"] if "pernum" in df.columns else None
    validator.checkpoint(
        "household",
        df,
        required_cols=[settings.household_key, *OUTPUT_REQUIRED_COLS],
        key_cols=key_cols,
    )

    for step in validator.checkpoints:
        validator.require_pass(step)
    validator.require_same_rows("joined", "household")

    logger.info(f"Persons out: {df.height:,}")
    return df
