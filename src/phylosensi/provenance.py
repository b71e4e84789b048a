from __future__ import annotations

import hashlib
import json
import os
import platform
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd


def now_utc_iso() -> str:
    """Current UTC time; ``PHYLOSENSI_FIXED_TIMESTAMP_UTC`` pins it for reproducible reports."""
    fixed = os.environ.get("PHYLOSENSI_FIXED_TIMESTAMP_UTC")
    if fixed:
        return fixed
    return datetime.now(tz=timezone.utc).isoformat()


def file_digest(path: str | Path) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def payload_digest(payload: Any) -> str:
    """sha256 of canonical (sorted, compact, ASCII) JSON."""
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def frame_digest(data: pd.DataFrame) -> str:
    """Order-sensitive digest of a trait table (index, columns and values)."""
    text = data.to_csv(index=True, lineterminator="\n", float_format="%.12g")
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def environment() -> dict[str, object]:
    import numpy
    import scipy

    return {
        "platform": platform.platform(),
        "python_version": platform.python_version(),
        "numpy_version": numpy.__version__,
        "pandas_version": pd.__version__,
        "scipy_version": scipy.__version__,
        "cpu_count": os.cpu_count(),
    }


def run_manifest(
    *,
    command: str,
    argv: list[str],
    tool_version: str,
    plan_hash: str,
    inputs: dict[str, str | Path],
    data: pd.DataFrame,
    outputs: dict[str, Path],
) -> dict[str, object]:
    """Provenance record written next to a report: inputs, plan and environment."""
    return {
        "schema_version": 1,
        "command": command,
        "command_line": " ".join(["phylosensi", *argv]),
        "tool_version": tool_version,
        "created_at_utc": now_utc_iso(),
        "environment": environment(),
        "plan_hash": plan_hash,
        "inputs_sha256": {name: file_digest(path) for name, path in inputs.items()},
        "data_table_sha256": frame_digest(data),
        "outputs": {name: str(path.resolve()) for name, path in outputs.items()},
    }
