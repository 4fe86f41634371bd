# rental_need/reference_join.py
"""Attach reference tables to person records.

Joins (all left joins; unmatched persons are kept with null reference fields):
- geography:        (statefip, puma) -> county, from the resolved crosswalk
- income threshold: (statefip, county, household size capped at 8) -> income_threshold
- job loss:         industry_group -> job_loss_pct, renter_adjustment, renter_job_loss_pct

Group-quarters persons are removed before any join. That is the only step allowed
to change the row count.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping

import polars as pl

from rental_need.config import PipelineSettings
from rental_need.pipeline_validator import StructuralError, require_columns, require_unique

logger = logging.getLogger(__name__)

IndustryLookup = Mapping[int, str] | Callable[[int], str | None]

PERSON_KEY_COLS = ["serial", "statefip", "puma", "numprec", "ind", "gq"]
THRESHOLD_COLS = ["state", "county", "hh_size", "income_threshold"]
JOB_LOSS_OUTPUT_COLS = ["industry_group", "pct_change", "job_loss_pct", "renter_adjustment", "renter_job_loss_pct"]


def _match_rate(df: pl.DataFrame, col: str) -> float:
    return 100.0 * df[col].is_not_null().sum() / df.height if df.height else 0.0


# -----------------------------------------------------------------------------
# Reference table preparation
# -----------------------------------------------------------------------------
def prepare_thresholds(table: pl.DataFrame, *, cap: int = 8, wide_prefix: str = "l50") -> pl.DataFrame:
    """Normalize the income-threshold table to long form keyed by (state, county, hh_size).

    Accepts either the long form (state, county, hh_size, income_threshold) or a
    HUD-style wide form with one column per household size (e.g. l50_1 .. l50_8).
    Rows for sizes above `cap` are dropped since no capped household can reach them.
    """
    if "hh_size" not in table.columns:
        pat = re.compile(rf"^{re.escape(wide_prefix)}_(\d+)$")
        size_cols = [c for c in table.columns if pat.match(c)]
        if not size_cols:
            raise ValueError(
                f"Threshold table has neither 'hh_size' nor '{wide_prefix}_N' columns: {table.columns}"
            )
        require_columns(table, ["state", "county"], "threshold table")
        table = (
            table.select(["state", "county", *size_cols])
            .unpivot(index=["state", "county"], on=size_cols, variable_name="_size_col", value_name="income_threshold")
            .with_columns(pl.col("_size_col").str.extract(r"_(\d+)$", 1).cast(pl.Int64).alias("hh_size"))
            .drop("_size_col")
        )

    require_columns(table, THRESHOLD_COLS, "threshold table")

    out = table.select([
        pl.col("state").cast(pl.Int64),
        pl.col("county").cast(pl.Utf8).str.strip_chars().str.zfill(5),
        pl.col("hh_size").cast(pl.Int64),
        pl.col("income_threshold").cast(pl.Float64),
    ])

    bad = out.filter(pl.col("hh_size") < 1)
    if bad.height:
        raise ValueError(f"Threshold table has {bad.height} rows with household size < 1")

    over = out.filter(pl.col("hh_size") > cap)
    if over.height:
        logger.warning(f"Dropping {over.height} threshold rows with household size above cap {cap}")
        out = out.filter(pl.col("hh_size") <= cap)

    require_unique(out, ["state", "county", "hh_size"], "threshold table")
    return out


def compute_job_loss(table: pl.DataFrame) -> pl.DataFrame:
    """Derive job-loss percentages per industry group.

    pct_change is the period-over-period employment change in percent, taken from the
    table or computed as (emp_post - emp_pre) / emp_pre * 100. Only declines count as
    job loss: job_loss_pct = -pct_change when pct_change < 0, else exactly 0.
    """
    require_columns(table, ["industry_group", "renter_adjustment"], "job-loss table")

    if "pct_change" in table.columns:
        pct = pl.col("pct_change").cast(pl.Float64)
    else:
        require_columns(table, ["emp_pre", "emp_post"], "job-loss table")
        pct = (
            pl.when(pl.col("emp_pre") > 0)
            .then((pl.col("emp_post") - pl.col("emp_pre")) / pl.col("emp_pre") * 100.0)
            .otherwise(None)
        )

    out = (
        table.with_columns([
            pl.col("industry_group").cast(pl.Utf8),
            pct.alias("pct_change"),
            pl.col("renter_adjustment").cast(pl.Float64),
        ])
        .with_columns(
            pl.when(pl.col("pct_change") >= 0)
            .then(pl.lit(0.0))
            .when(pl.col("pct_change") < 0)
            .then(-pl.col("pct_change"))
            .otherwise(None)
            .alias("job_loss_pct")
        )
        .with_columns((pl.col("job_loss_pct") * pl.col("renter_adjustment")).alias("renter_job_loss_pct"))
    )

    require_unique(out, ["industry_group"], "job-loss table")
    return out.select(JOB_LOSS_OUTPUT_COLS)


# -----------------------------------------------------------------------------
# Person-level steps
# -----------------------------------------------------------------------------
def drop_group_quarters(persons: pl.DataFrame, codes: tuple[int, ...] | list[int] = (3, 4)) -> pl.DataFrame:
    """Remove institutional / non-institutional group-quarters persons."""
    require_columns(persons, ["gq"], "persons")
    out = persons.filter(~pl.col("gq").is_in(list(codes)).fill_null(False))
    logger.info(f"Dropped {persons.height - out.height:,} group-quarters persons (gq in {list(codes)})")
    return out


def map_industry_groups(persons: pl.DataFrame, lookup: IndustryLookup, *, ind_col: str = "ind") -> pl.DataFrame:
    """Add `industry_group` from the industry code; unmapped codes become null."""
    if isinstance(lookup, Mapping):
        expr = pl.col(ind_col).replace_strict(dict(lookup), default=pl.lit(None, dtype=pl.Utf8), return_dtype=pl.Utf8)
    else:
        expr = pl.col(ind_col).map_elements(lookup, return_dtype=pl.Utf8, skip_nulls=True)
    return persons.with_columns(expr.alias("industry_group"))


def join_references(
    persons: pl.DataFrame,
    geography: pl.DataFrame,
    thresholds: pl.DataFrame,
    job_loss: pl.DataFrame,
    industry_lookup: IndustryLookup,
    settings: PipelineSettings | None = None,
) -> pl.DataFrame:
    """Filter group quarters, then left-join county, income threshold and job loss.

    Args:
        persons: Person records (see PERSON_KEY_COLS).
        geography: Resolved crosswalk, one row per (state, puma).
        thresholds: Output of prepare_thresholds.
        job_loss: Output of compute_job_loss.
        industry_lookup: Industry code -> industry group (dict or callable).
        settings: Pipeline settings (household size cap, group-quarters codes).

    Returns:
        Persons with county, hh_size_capped, income_threshold, industry_group and
        job-loss fields added.
    """
    if settings is None:
        settings = PipelineSettings()

    require_columns(persons, PERSON_KEY_COLS, "persons")
    require_unique(geography, ["state", "puma"], "resolved crosswalk")
    require_unique(thresholds, ["state", "county", "hh_size"], "threshold table")
    require_unique(job_loss, ["industry_group"], "job-loss table")

    df = drop_group_quarters(persons, settings.group_quarters_codes)
    n_rows = df.height

    df = df.with_columns([
        pl.col("statefip").cast(pl.Int64),
        pl.col("puma").cast(pl.Int64),
        pl.col("numprec").cast(pl.Int64),
    ])

    # Geography
    geo = geography.select([
        pl.col("state").cast(pl.Int64).alias("statefip"),
        pl.col("puma").cast(pl.Int64),
        pl.col("county").cast(pl.Utf8),
    ])
    df = df.join(geo, on=["statefip", "puma"], how="left")
    logger.info(f"  County match rate: {_match_rate(df, 'county'):.1f}%")

    # Income threshold; size is capped before the key is formed, null size stays null
    df = df.with_columns(
        pl.col("numprec").clip(upper_bound=settings.household_size_cap).cast(pl.Int64).alias("hh_size_capped")
    )
    thr = thresholds.select([
        pl.col("state").cast(pl.Int64).alias("statefip"),
        pl.col("county").cast(pl.Utf8),
        pl.col("hh_size").cast(pl.Int64).alias("hh_size_capped"),
        pl.col("income_threshold").cast(pl.Float64),
    ])
    df = df.join(thr, on=["statefip", "county", "hh_size_capped"], how="left")
    logger.info(f"  Income threshold match rate: {_match_rate(df, 'income_threshold'):.1f}%")

    # Job loss by industry group
    df = map_industry_groups(df, industry_lookup)
    df = df.join(job_loss, on="industry_group", how="left")
    logger.info(f"  Industry group match rate: {_match_rate(df, 'job_loss_pct'):.1f}%")

    if df.height != n_rows:
        raise StructuralError(f"Reference joins changed row count from {n_rows:,} to {df.height:,}")

    return df
