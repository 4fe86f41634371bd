# rental_need/household.py
"""Household-level totals broadcast back onto every member record."""

from __future__ import annotations

import logging

import polars as pl

from rental_need.pipeline_validator import StructuralError

logger = logging.getLogger(__name__)


def add_household_totals(
    df: pl.DataFrame,
    column: str = "incwage",
    alias: str = "hh_wage_income",
    key: str = "serial",
) -> pl.DataFrame:
    """Sum `column` over each household (null counts as 0) and attach it to every member.

    Group-then-broadcast: one group_by over the household key, then a left join
    back onto the person rows.
    """
    if key not in df.columns or column not in df.columns:
        raise ValueError(f"Missing columns for household totals: need '{key}' and '{column}'")

    null_keys = df[key].null_count()
    if null_keys:
        raise StructuralError(f"{null_keys:,} person records have no household identifier ('{key}')")

    totals = df.group_by(key).agg(pl.col(column).fill_null(0).sum().cast(pl.Float64).alias(alias))
    out = df.join(totals, on=key, how="left")

    if out.height != df.height:
        raise StructuralError(f"Household broadcast changed row count from {df.height:,} to {out.height:,}")

    logger.info(f"Household totals: {totals.height:,} households, {column} -> {alias}")
    return out
