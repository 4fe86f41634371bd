# rental_need/run_manifest.py
from __future__ import annotations

import json
import platform
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rental_need.config import PipelineSettings


def _safe_git_commit(repo_root: Path) -> str | None:
    """Best-effort git commit retrieval without depending on GitPython."""
    import subprocess

    try:
        r = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    if r.returncode == 0:
        return r.stdout.strip() or None
    return None


def write_run_manifest(
    *,
    output_dir: str | Path,
    command: str,
    inputs: dict[str, str | Path],
    settings: PipelineSettings,
    checkpoints: dict[str, dict[str, Any]],
    output_path: str | Path | None = None,
    repo_root: str | Path | None = None,
) -> Path:
    """Write run_manifest.json with inputs, modeling constants and row counts.

    Records everything needed to reproduce an enriched dataset.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    created_utc = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    repo_root_path = Path(repo_root) if repo_root is not None else None
    git_commit = _safe_git_commit(repo_root_path) if repo_root_path else None

    manifest = {
        "created_utc": created_utc,
        "python": sys.version.replace("\n", " "),
        "platform": f"{platform.system()} {platform.release()} ({platform.machine()})",
        "git_commit": git_commit,
        "command": command,
        "output_path": str(output_path) if output_path else None,
        "inputs": {k: str(v) for k, v in inputs.items()},
        "parameters": asdict(settings),
        "checkpoints": {
            step: {"status": cp["status"], "rows": cp["rows"], "columns": cp["columns"]}
            for step, cp in checkpoints.items()
        },
    }

    manifest_path = out / "run_manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2, sort_keys=True, default=str) + "\n", encoding="utf-8")
    return manifest_path
