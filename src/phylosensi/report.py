from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pandas as pd

from .fitting import FitResult
from .formula import ModelSpec


class AnalysisKind(str, Enum):
    INFLU = "influ"
    SAMP = "samp"
    CLADE = "clade"
    TREE = "tree"
    INTRA = "intra"


def _clean(value: Any) -> Any:
    """JSON-safe view of nested report values (NaN -> None)."""
    if isinstance(value, float):
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, dict):
        return {str(k): _clean(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class FullModelEstimate:
    fit: FitResult
    n_taxa: int

    @property
    def coefficients(self) -> dict[str, float]:
        return self.fit.coefficients

    def to_dict(self) -> dict[str, object]:
        payload = self.fit.to_dict()
        payload["n_taxa"] = self.n_taxa
        return payload


@dataclass(frozen=True)
class IterationResult:
    variant_id: str
    kind: AnalysisKind
    removed: tuple[str, ...]
    n_taxa: int
    fit: FitResult
    deviation: dict[str, float]
    percentage: dict[str, float]
    meta: dict[str, Any] = field(default_factory=dict)
    standardized: dict[str, float] = field(default_factory=dict)
    influential: tuple[str, ...] = ()

    def to_row(self) -> dict[str, object]:
        row: dict[str, object] = {"variant_id": self.variant_id, "n_taxa": self.n_taxa}
        row.update(self.meta)
        row["n_removed"] = len(self.removed)
        for name, value in self.fit.coefficients.items():
            row[name] = value
            row[f"DF{name}"] = self.deviation[name]
            row[f"{name}.perc"] = self.percentage[name]
            if name in self.standardized:
                row[f"sDF{name}"] = self.standardized[name]
            row[f"pval.{name}"] = self.fit.p_values.get(name, float("nan"))
        row["AIC"] = self.fit.aic
        row["optpar"] = self.fit.phylo_param
        if self.kind is AnalysisKind.INFLU:
            row["influential"] = ",".join(self.influential)
        return row


@dataclass(frozen=True)
class NullSample:
    clade: str
    size: int
    draw: int
    removed: tuple[str, ...]
    fit: FitResult
    deviation: dict[str, float]

    def to_row(self) -> dict[str, object]:
        row: dict[str, object] = {"clade": self.clade, "size": self.size, "draw": self.draw}
        for name, value in self.fit.coefficients.items():
            row[name] = value
            row[f"DF{name}"] = self.deviation[name]
        return row


@dataclass(frozen=True)
class LedgerEntry:
    variant_id: str
    reason: str
    stage: str
    null: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "variant_id": self.variant_id,
            "reason": self.reason,
            "stage": self.stage,
            "null": self.null,
        }


@dataclass(frozen=True)
class AnalysisReport:
    """Immutable outcome of one sensitivity analysis.

    ``summary`` holds everything the aggregator derived (influence rankings,
    randomization p-values, per-break or per-coefficient statistics) so the
    reporting layer never re-derives statistics; ``errors`` lists every variant
    that could not be pruned or fitted.
    """

    kind: AnalysisKind
    spec: ModelSpec
    plan: dict[str, Any]
    baseline: FullModelEstimate
    iterations: tuple[IterationResult, ...]
    errors: tuple[LedgerEntry, ...]
    summary: dict[str, Any]
    matching: dict[str, Any]
    null_samples: tuple[NullSample, ...] = ()
    created_at_utc: str = ""
    plan_hash: str = ""

    @property
    def n_variants(self) -> int:
        return int(self.summary.get("n_variants", len(self.iterations) + self.n_failed))

    @property
    def n_succeeded(self) -> int:
        return len(self.iterations)

    @property
    def n_failed(self) -> int:
        return len(self.failed)

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(e.variant_id for e in self.errors if not e.null)

    @property
    def null_failed(self) -> tuple[str, ...]:
        return tuple(e.variant_id for e in self.errors if e.null)

    def iterations_frame(self) -> pd.DataFrame:
        return pd.DataFrame([it.to_row() for it in self.iterations])

    def null_frame(self) -> pd.DataFrame:
        return pd.DataFrame([ns.to_row() for ns in self.null_samples])

    def errors_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [e.to_dict() for e in self.errors], columns=["variant_id", "reason", "stage", "null"]
        )

    def to_dict(self) -> dict[str, object]:
        return _clean(
            {
                "kind": self.kind.value,
                "model": self.spec.to_dict(),
                "plan": self.plan,
                "plan_hash": self.plan_hash,
                "created_at_utc": self.created_at_utc,
                "matching": self.matching,
                "full_model_estimates": self.baseline.to_dict(),
                "summary": self.summary,
                "iterations": [it.to_row() for it in self.iterations],
                "null_samples": [ns.to_row() for ns in self.null_samples],
                "errors": [e.to_dict() for e in self.errors],
            }
        )

    def render(self) -> str:
        base = self.baseline.fit
        lines = [
            f"Analysis: {self.kind.value}",
            f"Model: {self.spec.formula}",
            f"Matched taxa: {self.baseline.n_taxa}",
            f"Full model AIC={base.aic:.4f} optpar={base.phylo_param:.4g}",
        ]
        for name, value in base.coefficients.items():
            lines.append(f"  {name}: {value:.6g} (p={base.p_values.get(name, float('nan')):.4g})")
        lines.append(
            f"Variants: {self.n_variants} | succeeded: {self.n_succeeded} | failed: {self.n_failed}"
        )
        if self.failed:
            lines.append("Failed variants: " + ", ".join(self.failed))
        if self.null_failed:
            lines.append(f"Failed null draws: {len(self.null_failed)}")
        undefined = self.summary.get("undefined_percentage") or []
        if undefined:
            lines.append(
                "Percentage change undefined (zero baseline) for: " + ", ".join(undefined)
            )
        ranking = self.summary.get("ranking") or {}
        for name, entries in ranking.items():
            if not entries:
                continue
            top = ", ".join(f"{e['variant_id']} ({e['score']:.3g})" for e in entries)
            lines.append(f"Most influential on {name}: {top}")
        tests = self.summary.get("randomization") or {}
        for clade, per_coef in tests.items():
            parts = []
            for name, entry in per_coef.items():
                p = entry.get("p_value")
                parts.append(f"{name} p={'NA' if p is None or p != p else f'{p:.3g}'}")
            lines.append(f"Clade {clade}: " + "; ".join(parts))
        return "\n".join(lines)
