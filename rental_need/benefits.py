# rental_need/benefits.py
"""Unemployment-insurance benefit schedule and per-person UI amounts.

The schedule is an ordered list of BenefitTier descriptors over quarterly wages.
Each tier is (lower, upper] with its own divisor and minimum floor; a tier with
no divisor pays nothing. After tier evaluation a single weekly maximum is applied
as a clamp. Weekly amounts become monthly amounts with a fixed weeks-per-month
multiplier (4), which is a modeling convention rather than a calendar conversion.

Default schedule: New York, 2020.
    q <= 2,400           -> 0
    2,400 < q <= 3,575   -> max(q / 25, 104)
    q > 3,575            -> max(q / 26, 143)
    weekly maximum 504
Enhancements granted whenever the regular benefit is positive:
    FPUC $600/week, LWA $300/week
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import polars as pl

__all__ = [
    "DEFAULT_SCHEDULE",
    "BenefitSchedule",
    "BenefitTier",
    "EnhancementAddOn",
    "add_ui_benefits",
    "quarterly_wage_expr",
    "schedule_from_dict",
    "weekly_benefit",
    "weekly_benefit_expr",
]

ROUNDING_MODES = ("none", "floor", "nearest")


@dataclass(frozen=True)
class BenefitTier:
    """Quarterly-wage range (lower, upper] with its calculation rule.

    lower=None means unbounded below, upper=None unbounded above.
    divisor=None marks a no-benefit tier.
    """

    lower: float | None
    upper: float | None
    divisor: float | None
    floor: float = 0.0

    def contains(self, quarterly_wage: float) -> bool:
        if self.lower is not None and quarterly_wage <= self.lower:
            return False
        return not (self.upper is not None and quarterly_wage > self.upper)

    def condition(self, quarterly: pl.Expr) -> pl.Expr:
        cond = pl.lit(True)
        if self.lower is not None:
            cond = cond & (quarterly > self.lower)
        if self.upper is not None:
            cond = cond & (quarterly <= self.upper)
        return cond


@dataclass(frozen=True)
class EnhancementAddOn:
    """Flat weekly add-on paid on top of any positive regular benefit."""

    name: str
    weekly_amount: float


@dataclass(frozen=True)
class BenefitSchedule:
    tiers: tuple[BenefitTier, ...]
    weekly_max: float
    enhancements: tuple[EnhancementAddOn, ...] = ()
    rounding: str = "none"

    def __post_init__(self) -> None:
        _validate_tiers(self.tiers)
        if self.weekly_max <= 0:
            raise ValueError(f"weekly_max must be positive, got {self.weekly_max}")
        if self.rounding not in ROUNDING_MODES:
            raise ValueError(f"Unknown rounding mode '{self.rounding}'; expected one of {ROUNDING_MODES}")
        names = [e.name for e in self.enhancements]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate enhancement names: {names}")

    def tier_for(self, quarterly_wage: float) -> BenefitTier:
        for tier in self.tiers:
            if tier.contains(quarterly_wage):
                return tier
        # _validate_tiers guarantees full coverage of the real line
        raise AssertionError(quarterly_wage)


def _validate_tiers(tiers: Sequence[BenefitTier]) -> None:
    """Tiers must be ordered, contiguous and cover (-inf, inf)."""
    if not tiers:
        raise ValueError("Benefit schedule needs at least one tier")
    if tiers[0].lower is not None:
        raise ValueError("First benefit tier must be unbounded below (lower=None)")
    if tiers[-1].upper is not None:
        raise ValueError("Last benefit tier must be unbounded above (upper=None)")
    for prev, cur in zip(tiers, tiers[1:]):
        if prev.upper is None or cur.lower is None or prev.upper != cur.lower:
            raise ValueError(f"Benefit tiers are not contiguous: {prev} -> {cur}")
        if cur.upper is not None and cur.upper <= cur.lower:
            raise ValueError(f"Benefit tier has empty range: {cur}")
    for tier in tiers:
        if tier.divisor is not None and tier.divisor <= 0:
            raise ValueError(f"Benefit tier divisor must be positive: {tier}")


DEFAULT_SCHEDULE = BenefitSchedule(
    tiers=(
        BenefitTier(lower=None, upper=2400.0, divisor=None, floor=0.0),
        BenefitTier(lower=2400.0, upper=3575.0, divisor=25.0, floor=104.0),
        BenefitTier(lower=3575.0, upper=None, divisor=26.0, floor=143.0),
    ),
    weekly_max=504.0,
    enhancements=(
        EnhancementAddOn(name="fpuc", weekly_amount=600.0),
        EnhancementAddOn(name="lwa", weekly_amount=300.0),
    ),
)


def schedule_from_dict(cfg: dict[str, Any]) -> BenefitSchedule:
    """Build a BenefitSchedule from the `ui_benefits` config block."""

    def _opt(v: Any) -> float | None:
        return None if v is None else float(v)

    try:
        tiers = tuple(
            BenefitTier(
                lower=_opt(t.get("lower")),
                upper=_opt(t.get("upper")),
                divisor=_opt(t.get("divisor")),
                floor=float(t.get("floor", 0.0)),
            )
            for t in cfg["tiers"]
        )
        weekly_max = float(cfg["weekly_max"])
    except KeyError as e:
        raise ValueError(f"ui_benefits config is missing required key {e}") from e

    enhancements = tuple(
        EnhancementAddOn(name=str(e["name"]), weekly_amount=float(e["weekly_amount"]))
        for e in cfg.get("enhancements", []) or []
    )
    return BenefitSchedule(
        tiers=tiers,
        weekly_max=weekly_max,
        enhancements=enhancements,
        rounding=str(cfg.get("rounding", "none")),
    )


# -----------------------------------------------------------------------------
# Scalar evaluation
# -----------------------------------------------------------------------------
def _round(value: float, mode: str) -> float:
    if mode == "floor":
        return float(math.floor(value))
    if mode == "nearest":
        return float(math.floor(value + 0.5))
    return value


def weekly_benefit(quarterly_wage: float | None, schedule: BenefitSchedule = DEFAULT_SCHEDULE) -> float:
    """Weekly regular benefit for one quarterly wage (None counts as zero)."""
    q = 0.0 if quarterly_wage is None else float(quarterly_wage)
    tier = schedule.tier_for(q)
    if tier.divisor is None:
        return 0.0
    amount = max(_round(q / tier.divisor, schedule.rounding), tier.floor)
    return min(amount, schedule.weekly_max)


# -----------------------------------------------------------------------------
# Vectorized evaluation
# -----------------------------------------------------------------------------
def _round_expr(value: pl.Expr, mode: str) -> pl.Expr:
    if mode == "floor":
        return value.floor()
    if mode == "nearest":
        return (value + 0.5).floor()
    return value


def quarterly_wage_expr(wage_col: str = "incwage", quarters_per_year: int = 4) -> pl.Expr:
    """Annual wage spread evenly over quarters; null wage counts as zero."""
    return (pl.col(wage_col).cast(pl.Float64).fill_null(0.0) / quarters_per_year).alias("quarterly_wage")


def weekly_benefit_expr(quarterly: pl.Expr, schedule: BenefitSchedule = DEFAULT_SCHEDULE) -> pl.Expr:
    """Single when/then chain over the tier list, then the weekly cap."""
    chain: Any = pl
    for tier in schedule.tiers:
        if tier.divisor is None:
            value = pl.lit(0.0)
        else:
            value = pl.max_horizontal(
                _round_expr(quarterly / tier.divisor, schedule.rounding),
                pl.lit(tier.floor),
            )
        chain = chain.when(tier.condition(quarterly)).then(value)
    amount = chain.otherwise(pl.lit(0.0))
    return pl.min_horizontal(amount, pl.lit(schedule.weekly_max))


def add_ui_benefits(
    df: pl.DataFrame,
    schedule: BenefitSchedule = DEFAULT_SCHEDULE,
    *,
    wage_col: str = "incwage",
    quarters_per_year: int = 4,
    weeks_per_month: int = 4,
) -> pl.DataFrame:
    """Add quarterly wage, weekly/monthly regular UI and monthly enhancement amounts.

    Adds:
        quarterly_wage, ui_weekly, ui_monthly, ui_eligible,
        ui_<enhancement>_monthly for every enhancement in the schedule.
    """
    if wage_col not in df.columns:
        raise ValueError(f"Missing wage column for UI benefits: {wage_col}")

    out = df.with_columns(quarterly_wage_expr(wage_col, quarters_per_year))
    out = out.with_columns(weekly_benefit_expr(pl.col("quarterly_wage"), schedule).alias("ui_weekly"))
    out = out.with_columns([
        (pl.col("ui_weekly") * weeks_per_month).alias("ui_monthly"),
    ]).with_columns((pl.col("ui_monthly") > 0).alias("ui_eligible"))

    out = out.with_columns([
        pl.when(pl.col("ui_eligible"))
        .then(pl.lit(e.weekly_amount * weeks_per_month))
        .otherwise(pl.lit(0.0))
        .alias(f"ui_{e.name}_monthly")
        for e in schedule.enhancements
    ])
    return out
