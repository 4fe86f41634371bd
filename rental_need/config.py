"""
Configuration loader for pipeline runs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from rental_need.benefits import DEFAULT_SCHEDULE, BenefitSchedule, schedule_from_dict


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to config file. If None, uses default config/pipeline.yaml

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the YAML root is not a mapping
    """
    if config_path is None:
        # Default to config/pipeline.yaml relative to project root
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config" / "pipeline.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        config: dict[str, Any] = {}
    elif not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    else:
        config = cast(dict[str, Any], data)

    return cast(dict[str, Any], _substitute_env_vars(config))


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        var_name = obj[2:-1]
        return os.getenv(var_name, obj)  # fall back to original if unset
    return obj


@dataclass(frozen=True)
class PipelineSettings:
    """Modeling constants for a single run.

    Defaults reproduce the 2020 New York analysis; every value can be overridden
    from the YAML config.
    """

    # Threshold schedules stop at 8 persons; larger households use the size-8 row
    household_size_cap: int = 8
    # Annual wage -> quarterly wage approximation (no true quarterly wages in the survey)
    quarters_per_year: int = 4
    weeks_per_month: int = 4

    wage_sentinels: tuple[int, ...] = (999998, 999999)
    hhincome_sentinel: int = 9999999
    group_quarters_codes: tuple[int, ...] = (3, 4)

    burden_threshold: float = 0.30
    severe_burden_threshold: float = 0.50
    default_target_burden: float = 0.30
    zero_income_target_burden: float = 1.0

    tie_break: str = "first"
    wage_column: str = "incwage"
    household_key: str = "serial"

    benefit_schedule: BenefitSchedule = field(default_factory=lambda: DEFAULT_SCHEDULE)


def load_settings(config: dict[str, Any] | None = None) -> PipelineSettings:
    """
    Build typed settings from a config dict.

    Args:
        config: Config dict. If None, loads default config.

    Returns:
        PipelineSettings with config overrides applied
    """
    if config is None:
        config = load_config()

    model = config.get("model", {}) or {}
    sentinels = config.get("sentinels", {}) or {}
    burden = config.get("rent_burden", {}) or {}

    defaults = PipelineSettings()

    cap = int(model.get("household_size_cap", defaults.household_size_cap))
    if cap < 1:
        raise ValueError(f"household_size_cap must be >= 1, got {cap}")

    quarters = int(model.get("quarters_per_year", defaults.quarters_per_year))
    weeks = int(model.get("weeks_per_month", defaults.weeks_per_month))
    if quarters <= 0 or weeks <= 0:
        raise ValueError(f"quarters_per_year and weeks_per_month must be positive, got {quarters}, {weeks}")

    threshold = float(burden.get("burdened", defaults.burden_threshold))
    severe = float(burden.get("severely_burdened", defaults.severe_burden_threshold))
    if severe < threshold:
        raise ValueError(f"Severe burden threshold {severe} is below burden threshold {threshold}")

    schedule_cfg = config.get("ui_benefits")
    schedule = schedule_from_dict(schedule_cfg) if schedule_cfg else defaults.benefit_schedule

    return PipelineSettings(
        household_size_cap=cap,
        quarters_per_year=quarters,
        weeks_per_month=weeks,
        wage_sentinels=tuple(int(v) for v in sentinels.get("incwage", defaults.wage_sentinels)),
        hhincome_sentinel=int(sentinels.get("hhincome", defaults.hhincome_sentinel)),
        group_quarters_codes=tuple(int(v) for v in model.get("group_quarters_codes", defaults.group_quarters_codes)),
        burden_threshold=threshold,
        severe_burden_threshold=severe,
        default_target_burden=float(burden.get("default_target", defaults.default_target_burden)),
        zero_income_target_burden=float(burden.get("zero_income_target", defaults.zero_income_target_burden)),
        tie_break=str(model.get("tie_break", defaults.tie_break)),
        wage_column=str(model.get("wage_column", defaults.wage_column)),
        household_key=str(model.get("household_key", defaults.household_key)),
        benefit_schedule=schedule,
    )
