#!/usr/bin/env python3
"""
Build the enriched person-level dataset for rental-assistance need estimates.

Usage:
    python scripts/run_pipeline.py --persons data/raw/acs_2018_ny.parquet
    python scripts/run_pipeline.py --persons data/raw/acs.parquet --config config/custom.yaml \
        --output data/output/enriched.parquet

The script:
1. Loads configuration from config/pipeline.yaml (or custom config)
2. Reads persons, crosswalk, income thresholds, job-loss table and industry map
3. Runs the enrichment pipeline
4. Writes the enriched parquet and a run_manifest.json next to it
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rental_need.config import load_config, load_settings
from rental_need.pipeline import load_industry_lookup, load_table, run_pipeline
from rental_need.pipeline_validator import PipelineValidator, StructuralError
from rental_need.run_manifest import write_run_manifest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

INPUT_KEYS = ("persons", "crosswalk", "thresholds", "job_loss", "industry_map")


@dataclass(frozen=True)
class PipelineArgs:
    """Parsed CLI arguments."""

    config: Path | None
    persons: Path | None
    crosswalk: Path | None
    thresholds: Path | None
    job_loss: Path | None
    industry_map: Path | None
    output: Path | None


def _parse_args(argv: list[str] | None = None) -> PipelineArgs:
    parser = argparse.ArgumentParser(
        description="Enrich survey person records with geography, thresholds, rent burden and UI benefits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config file (default: config/pipeline.yaml)")
    parser.add_argument("--persons", type=Path, default=None, help="Person records (.parquet/.csv)")
    parser.add_argument("--crosswalk", type=Path, default=None, help="PUMA -> county crosswalk")
    parser.add_argument("--thresholds", type=Path, default=None, help="Income thresholds by county and household size")
    parser.add_argument("--job-loss", type=Path, default=None, help="Job loss by industry group")
    parser.add_argument("--industry-map", type=Path, default=None, help="Industry code -> industry group table")
    parser.add_argument("--output", type=Path, default=None, help="Output parquet path")

    ns = parser.parse_args(argv)
    return PipelineArgs(
        config=ns.config,
        persons=ns.persons,
        crosswalk=ns.crosswalk,
        thresholds=ns.thresholds,
        job_loss=ns.job_loss,
        industry_map=ns.industry_map,
        output=ns.output,
    )


def _resolve_inputs(args: PipelineArgs, config: dict[str, Any]) -> dict[str, Path]:
    configured = config.get("input", {}) or {}
    resolved: dict[str, Path] = {}
    missing: list[str] = []
    for key in INPUT_KEYS:
        value = getattr(args, key) or configured.get(key)
        # unresolved ${VAR} placeholders count as unset
        if value is None or str(value).startswith("${"):
            missing.append(key)
            continue
        resolved[key] = Path(value)
    if missing:
        raise ValueError(f"No path given for inputs: {missing} (use CLI flags or the 'input' config block)")
    return resolved


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("Config file not found: %s", e)
        raise

    settings = load_settings(config)
    inputs = _resolve_inputs(args, config)
    output = args.output or Path((config.get("output", {}) or {}).get("path", "data/output/enriched_persons.parquet"))

    for key, path in inputs.items():
        logger.info("Input %-13s %s", key + ":", path)

    validator = PipelineValidator()
    try:
        enriched = run_pipeline(
            persons=load_table(inputs["persons"]),
            crosswalk=load_table(inputs["crosswalk"]),
            thresholds=load_table(inputs["thresholds"]),
            job_loss=load_table(inputs["job_loss"]),
            industry_lookup=load_industry_lookup(inputs["industry_map"]),
            settings=settings,
            validator=validator,
        )
    except StructuralError as e:
        logger.error("Pipeline aborted: %s", e)
        return 1

    validator.summary()

    output.parent.mkdir(parents=True, exist_ok=True)
    enriched.write_parquet(output)
    logger.info("Saved %s rows -> %s", f"{enriched.height:,}", output)

    manifest_path = write_run_manifest(
        output_dir=output.parent,
        command=" ".join(sys.argv),
        inputs=dict(inputs),
        settings=settings,
        checkpoints=validator.checkpoints,
        output_path=output,
        repo_root=Path(__file__).resolve().parent.parent,
    )
    logger.info("Wrote manifest -> %s", manifest_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
