# rental_need/crosswalk.py
"""Resolve the PUMA -> county crosswalk to one county per (state, PUMA).

A PUMA can straddle several counties. The crosswalk carries one row per
(state, puma, county) with `afact`, the share of the PUMA's housing units in that
county. Each PUMA is assigned to the county with the largest share (plurality).
Exact ties are broken by a named policy from TIE_BREAK_POLICIES so the rule can be
changed without touching the join code.

Output columns:
- state:  state FIPS (Int64)
- puma:   PUMA code (Int64)
- county: 5-char county FIPS (string, zero-padded)
- afact:  allocation fraction of the chosen county
"""

from __future__ import annotations

import logging

import polars as pl

logger = logging.getLogger(__name__)

CROSSWALK_COLS = ["state", "puma", "county", "afact"]

# Secondary sort keys applied after `afact` (descending) to break exact ties.
# "_row" is the original input position.
TIE_BREAK_POLICIES: dict[str, list[str]] = {
    "first": ["_row"],
    "lowest_county": ["county", "_row"],
}


def normalize_crosswalk(df: pl.DataFrame) -> pl.DataFrame:
    """
    Produce columns: state, puma, county, afact
    """
    # helper to pick first matching column by likely aliases
    cols = {c.lower(): c for c in df.columns}

    def pick(options: list[str]) -> str | None:
        for o in options:
            if o in cols:
                return cols[o]
        return None

    state_col = pick(["state", "statefip", "statefp", "state_fips"])
    puma_col = pick(["puma", "puma12", "puma22"])
    county_col = pick(["county", "county14", "county_fips", "countyfp"])
    afact_col = pick(["afact", "weight", "allocation", "afact1"])

    missing = [
        name
        for name, col in zip(CROSSWALK_COLS, [state_col, puma_col, county_col, afact_col])
        if col is None
    ]
    if missing:
        raise ValueError(f"Crosswalk is missing columns for {missing}; found {df.columns}")

    return df.select([
        pl.col(state_col).cast(pl.Int64).alias("state"),
        pl.col(puma_col).cast(pl.Int64).alias("puma"),
        pl.col(county_col).cast(pl.Utf8).str.strip_chars().str.zfill(5).alias("county"),
        pl.col(afact_col).cast(pl.Float64).alias("afact"),
    ])


def count_plurality_ties(crosswalk: pl.DataFrame) -> int:
    """Number of (state, puma) groups whose maximum afact is shared by 2+ counties."""
    return (
        crosswalk.filter(pl.col("afact") == pl.col("afact").max().over(["state", "puma"]))
        .group_by(["state", "puma"])
        .agg(pl.len().alias("_n"))
        .filter(pl.col("_n") > 1)
        .height
    )


def resolve_crosswalk(crosswalk: pl.DataFrame, *, tie_break: str = "first") -> pl.DataFrame:
    """Pick one county per (state, puma): maximum afact, ties by `tie_break` policy.

    Args:
        crosswalk: Raw crosswalk rows (any column aliases accepted by normalize_crosswalk).
        tie_break: Name of a policy in TIE_BREAK_POLICIES.

    Returns:
        DataFrame with one row per (state, puma), sorted by key.
    """
    if tie_break not in TIE_BREAK_POLICIES:
        raise ValueError(f"Unknown tie_break policy '{tie_break}'; expected one of {sorted(TIE_BREAK_POLICIES)}")

    cw = normalize_crosswalk(crosswalk).with_row_index("_row")
    n_keys = cw.select(["state", "puma"]).unique().height
    logger.info(f"Resolving crosswalk: {cw.height:,} rows, {n_keys:,} (state, puma) keys")

    n_ties = count_plurality_ties(cw)
    if n_ties:
        logger.warning(f"{n_ties} PUMAs have an exact plurality tie; resolved with policy '{tie_break}'")

    secondary = TIE_BREAK_POLICIES[tie_break]
    resolved = (
        cw.sort(
            ["afact", *secondary],
            descending=[True] + [False] * len(secondary),
            nulls_last=True,
        )
        .unique(subset=["state", "puma"], keep="first", maintain_order=True)
        .sort(["state", "puma"])
        .select(CROSSWALK_COLS)
    )

    logger.info(f"Resolved {resolved.height:,} PUMAs to {resolved['county'].n_unique():,} counties")
    return resolved
