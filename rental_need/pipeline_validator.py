# rental_need/pipeline_validator.py
"""
Data quality validation at each pipeline step.
Ensures no silent record loss or duplication and unique reference keys.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import polars as pl

logger = logging.getLogger(__name__)


class StructuralError(ValueError):
    """Upstream data violates a structural invariant; the run must abort."""


def require_columns(df: pl.DataFrame, cols: Sequence[str], name: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"{name} is missing required columns: {missing}")


def require_unique(df: pl.DataFrame, keys: Sequence[str], name: str) -> None:
    """Raise StructuralError if `keys` do not identify rows of `df` uniquely."""
    dupes = df.group_by(list(keys)).agg(pl.len().alias("_n")).filter(pl.col("_n") > 1)
    if dupes.height:
        sample = dupes.head(5).drop("_n").to_dicts()
        raise StructuralError(f"{name} has {dupes.height:,} duplicate keys on {list(keys)}, e.g. {sample}")


class PipelineValidator:
    """Track data through pipeline transformations"""

    def __init__(self) -> None:
        self.checkpoints: dict[str, dict[str, object]] = {}

    def checkpoint(
        self,
        step_name: str,
        df: pl.DataFrame,
        expected_cols: list[str] | None = None,
        required_cols: list[str] | None = None,
        key_cols: list[str] | None = None,
    ) -> dict[str, object]:
        """Validate data at a pipeline checkpoint."""
        report: dict[str, object] = {
            "step": step_name,
            "status": "PASS",
            "rows": df.height,
            "columns": len(df.columns),
            "issues": [],
            "warnings": [],
        }

        # Check required columns
        if required_cols:
            missing = [c for c in required_cols if c not in df.columns]
            if missing:
                report["status"] = "FAIL"
                report["issues"].append(f"Missing required columns: {missing}")  # type: ignore

        # Check expected columns
        if expected_cols:
            missing = [c for c in expected_cols if c not in df.columns]
            if missing:
                report["warnings"].append(f"Missing expected columns: {missing}")  # type: ignore

        # Joined reference fields are expected to be partially null; only warn
        if expected_cols and df.height:
            for col in expected_cols:
                if col in df.columns:
                    null_count = df[col].null_count()
                    pct = 100 * null_count / df.height
                    if pct > 10:
                        report["warnings"].append(f"{col}: {null_count:,} nulls ({pct:.1f}%)")  # type: ignore

        # Check for duplicates on key columns
        if key_cols and all(c in df.columns for c in key_cols):
            n_unique = df.select(key_cols).unique().height
            if n_unique < df.height:
                report["status"] = "FAIL"
                report["issues"].append(f"Found {df.height - n_unique:,} duplicate rows on {key_cols}")  # type: ignore

        self.checkpoints[step_name] = report

        if report["status"] == "FAIL":
            logger.error(f"{step_name}: FAILED validation")
            for issue in report["issues"]:  # type: ignore
                logger.error(f"  - {issue}")
        else:
            logger.info(f"{step_name}: {df.height:,} rows, {len(df.columns)} cols")

        for warning in report["warnings"]:  # type: ignore
            logger.warning(f"  {warning}")

        return report

    def require_pass(self, step_name: str) -> None:
        """Abort the run if a checkpoint failed."""
        report = self.checkpoints[step_name]
        if report["status"] != "PASS":
            raise StructuralError(f"{step_name}: {'; '.join(report['issues'])}")  # type: ignore[arg-type]

    def compare_checkpoints(self, step1: str, step2: str) -> dict[str, object]:
        """Compare two checkpoints to detect row loss or duplication"""
        if step1 not in self.checkpoints or step2 not in self.checkpoints:
            return {"status": "ERROR", "message": "Checkpoint not found"}

        cp1 = self.checkpoints[step1]
        cp2 = self.checkpoints[step2]

        row_change = cp2["rows"] - cp1["rows"]  # type: ignore[operator]
        row_pct = 100 * row_change / cp1["rows"] if cp1["rows"] > 0 else 0  # type: ignore[operator]

        report: dict[str, object] = {
            "from": step1,
            "to": step2,
            "row_change": row_change,
            "row_change_pct": row_pct,
            "status": "OK" if row_change == 0 else "CHANGED",
        }

        logger.info(f"{step1} -> {step2}: {row_change:+,} rows ({row_pct:+.1f}%)")

        return report

    def require_same_rows(self, step1: str, step2: str) -> None:
        """Row count must be preserved between two checkpoints."""
        report = self.compare_checkpoints(step1, step2)
        if report["status"] != "OK":
            raise StructuralError(
                f"Row count changed between {step1} and {step2}: {report.get('row_change', report.get('message'))}"
            )

    def summary(self) -> dict[str, dict[str, object]]:
        """Log a validation summary and return the checkpoints"""
        logger.info("=" * 60)
        logger.info("PIPELINE VALIDATION SUMMARY")
        logger.info("=" * 60)
        for step_name, report in self.checkpoints.items():
            logger.info(f"{step_name} [{report['status']}] rows={report['rows']:,} cols={report['columns']}")
        return self.checkpoints
