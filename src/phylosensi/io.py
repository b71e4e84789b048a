from __future__ import annotations

import json
from pathlib import Path

import pandas as pd

from .phylo import TreeNode, parse_newick
from .report import AnalysisReport


def read_traits(path: str | Path, *, taxon_col: str | None = None) -> pd.DataFrame:
    """Read a CSV/TSV trait table indexed by taxon name.

    The index comes from ``taxon_col`` or, when omitted, the first column.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Trait table not found: {path}")
    sep = "\t" if path.suffix.lower() in {".tsv", ".tab", ".txt"} else ","
    frame = pd.read_csv(path, sep=sep)
    if frame.empty:
        raise ValueError(f"No rows found in {path}")
    key = taxon_col if taxon_col is not None else str(frame.columns[0])
    if key not in frame.columns:
        raise ValueError(f"Taxon column {key!r} not found in {path}")
    frame[key] = frame[key].astype(str).str.strip()
    if frame[key].duplicated().any():
        dupes = sorted(set(frame.loc[frame[key].duplicated(), key]))
        raise ValueError(f"Duplicated taxa in {path}: {', '.join(dupes[:5])}")
    return frame.set_index(key)


def split_newick(text: str) -> list[str]:
    chunks = [chunk.strip() for chunk in text.split(";")]
    return [chunk + ";" for chunk in chunks if chunk]


def read_trees(path: str | Path) -> TreeNode | list[TreeNode]:
    """Read one Newick tree, or a list when the file holds several."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tree file not found: {path}")
    entries = split_newick(path.read_text(encoding="utf-8"))
    if not entries:
        raise ValueError(f"No Newick trees found in {path}")
    trees = [parse_newick(entry) for entry in entries]
    return trees[0] if len(trees) == 1 else trees


def _write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.write("\n")


def write_report(report: AnalysisReport, out_dir: str | Path) -> dict[str, Path]:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    written = {"report": out / "report.json", "iterations": out / "iterations.tsv"}
    _write_json(written["report"], report.to_dict())
    report.iterations_frame().to_csv(written["iterations"], sep="\t", index=False)
    if report.null_samples:
        written["null"] = out / "null.tsv"
        report.null_frame().to_csv(written["null"], sep="\t", index=False)
    written["errors"] = out / "errors.tsv"
    report.errors_frame().to_csv(written["errors"], sep="\t", index=False)
    return written
