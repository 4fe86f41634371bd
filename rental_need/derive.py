# rental_need/derive.py
"""Per-person derived variables: income cleanup, rent burden, categorical recodes.

Every function here is row-local (no cross-record dependency) and returns a new,
wider DataFrame.
"""

from __future__ import annotations

import logging

import polars as pl

from rental_need.config import PipelineSettings

logger = logging.getLogger(__name__)

RENTED = 2  # OWNERSHP: 1 owned or being bought, 2 rented, 0 n/a
OTHER = "other"

# MIGRATE1: residence one year ago
MOVER_LABELS: dict[int, str] = {
    1: "same_house",
    2: "moved_within_state",
    3: "moved_between_states",
    4: "moved_from_abroad",
}

# UNITSSTR: units in structure
BUILDING_SIZE_LABELS: dict[int, str] = {
    1: "mobile_home",
    2: OTHER,  # boat, tent, van
    3: "single_family",
    4: "single_family",
    5: "2_4_units",
    6: "2_4_units",
    7: "5_19_units",
    8: "5_19_units",
    9: "20_plus_units",
    10: "20_plus_units",
}

# EMPSTAT
EMPLOYED = 1
UNEMPLOYED = 2


def clean_income(df: pl.DataFrame, settings: PipelineSettings | None = None) -> pl.DataFrame:
    """Replace income sentinel codes with null.

    - incwage: sentinel codes -> null; a reported 0 stays 0
    - hhincome: top-code sentinel -> null; non-positive -> 0
    - inctot (if present): top-code sentinel -> null
    """
    if settings is None:
        settings = PipelineSettings()

    wage = settings.wage_column
    exprs = [
        pl.when(pl.col(wage).is_in(list(settings.wage_sentinels)))
        .then(None)
        .otherwise(pl.col(wage))
        .cast(pl.Float64)
        .alias(wage),
        pl.when(pl.col("hhincome") == settings.hhincome_sentinel)
        .then(None)
        .when(pl.col("hhincome") <= 0)
        .then(pl.lit(0.0))
        .otherwise(pl.col("hhincome"))
        .cast(pl.Float64)
        .alias("hhincome"),
    ]
    if "inctot" in df.columns:
        exprs.append(
            pl.when(pl.col("inctot") == settings.hhincome_sentinel)
            .then(None)
            .otherwise(pl.col("inctot"))
            .cast(pl.Float64)
            .alias("inctot")
        )
    return df.with_columns(exprs)


def add_renter_fields(df: pl.DataFrame, settings: PipelineSettings | None = None) -> pl.DataFrame:
    """Renter flag, gross rent, rent burden and burden bands.

    rent_burden = rentgrs * 12 / hhincome, null unless the record is a renter with
    known household income. A renter with zero household income and positive rent
    has an infinite burden (severely burdened); zero rent on zero income is 0.
    Bands: burdened (> 0.30), severely burdened (> 0.50), moderately burdened
    (burdened, not severe). target_burden is the actual burden for burdened
    households, `zero_income_target_burden` when that burden is infinite, and 0.30
    otherwise.
    """
    if settings is None:
        settings = PipelineSettings()

    burden = pl.col("rent_burden")
    income = pl.col("hhincome")
    annual_rent = pl.col("rentgrs").cast(pl.Float64) * 12.0

    out = df.with_columns((pl.col("ownershp") == RENTED).fill_null(False).alias("is_renter"))
    out = out.with_columns([
        pl.when(pl.col("is_renter")).then(pl.col("rentgrs").cast(pl.Float64)).otherwise(None).alias("gross_rent"),
        pl.when(~pl.col("is_renter") | income.is_null())
        .then(None)
        .when(income > 0)
        .then(annual_rent / income)
        .when(annual_rent > 0)
        .then(pl.lit(float("inf")))
        .when(annual_rent == 0)
        .then(pl.lit(0.0))
        .otherwise(None)
        .cast(pl.Float64)
        .alias("rent_burden"),
    ])
    out = out.with_columns([
        (burden > settings.burden_threshold).alias("is_burdened"),
        (burden > settings.severe_burden_threshold).alias("is_severely_burdened"),
    ]).with_columns(
        (pl.col("is_burdened") & ~pl.col("is_severely_burdened")).alias("is_moderately_burdened"),
    )
    out = out.with_columns([
        pl.when(pl.col("is_severely_burdened"))
        .then(pl.lit("severe"))
        .when(pl.col("is_moderately_burdened"))
        .then(pl.lit("moderate"))
        .when(burden.is_not_null())
        .then(pl.lit("not_burdened"))
        .otherwise(None)
        .alias("burden_category"),
        pl.when(pl.col("is_burdened") & burden.is_infinite())
        .then(pl.lit(settings.zero_income_target_burden))
        .when(pl.col("is_burdened"))
        .then(burden)
        .otherwise(pl.lit(settings.default_target_burden))
        .alias("target_burden"),
    ])

    if "income_threshold" in out.columns:
        out = out.with_columns((pl.col("hhincome") <= pl.col("income_threshold")).alias("income_eligible"))

    return out


def add_categoricals(df: pl.DataFrame) -> pl.DataFrame:
    """Recode mobility and building type into labeled buckets; unknown codes -> "other"."""
    return df.with_columns([
        pl.col("migrate1")
        .cast(pl.Int64)
        .replace_strict(MOVER_LABELS, default=OTHER, return_dtype=pl.Utf8)
        .fill_null(OTHER)
        .alias("mover_status"),
        pl.col("unitsstr")
        .cast(pl.Int64)
        .replace_strict(BUILDING_SIZE_LABELS, default=OTHER, return_dtype=pl.Utf8)
        .fill_null(OTHER)
        .alias("building_size"),
    ]).with_columns(
        pl.col("mover_status").is_in(["moved_within_state", "moved_between_states", "moved_from_abroad"]).alias(
            "recent_mover"
        )
    )


def add_employment_fields(df: pl.DataFrame) -> pl.DataFrame:
    """Employed / unemployed flags from EMPSTAT; a missing status counts as neither."""
    return df.with_columns([
        (pl.col("empstat") == EMPLOYED).fill_null(False).alias("is_employed"),
        (pl.col("empstat") == UNEMPLOYED).fill_null(False).alias("is_unemployed"),
    ])


def derive_variables(df: pl.DataFrame, settings: PipelineSettings | None = None) -> pl.DataFrame:
    """Run every per-person derivation in order."""
    if settings is None:
        settings = PipelineSettings()

    out = clean_income(df, settings)
    out = add_renter_fields(out, settings)
    out = add_categoricals(out)
    out = add_employment_fields(out)

    n_renters = int(out["is_renter"].sum())
    n_burdened = int(out["is_burdened"].fill_null(False).sum())
    logger.info(f"Derived variables: {n_renters:,} renters, {n_burdened:,} rent-burdened")
    return out
