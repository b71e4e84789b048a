from __future__ import annotations

import dataclasses
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

import numpy as np

from .fitting import FitResult
from .perturbation import Variant
from .report import (
    AnalysisKind,
    FullModelEstimate,
    IterationResult,
    LedgerEntry,
    NullSample,
)
from .stats import deviation, describe, empirical_p_value, percentage_change, standardize


@dataclass
class Aggregate:
    iterations: list[IterationResult]
    null_samples: list[NullSample]
    errors: list[LedgerEntry]
    summary: dict[str, Any]


@dataclass
class ResultAggregator:
    """Reduce raw per-variant fits into deviations, influence flags and tests.

    ``cutoff`` is the |standardized deviation| above which a leave-one-out
    variant is flagged; ``alpha`` is the significance level used when counting
    significant refits; ``top`` bounds the influence rankings.
    """

    baseline: FullModelEstimate
    cutoff: float = 2.0
    alpha: float = 0.05
    top: int = 5

    def __post_init__(self) -> None:
        if self.cutoff <= 0:
            raise ValueError("cutoff must be > 0")
        if not (0 < self.alpha < 1):
            raise ValueError("alpha must be in (0, 1).")
        if self.top <= 0:
            raise ValueError("top must be > 0")

    @property
    def coefficient_names(self) -> list[str]:
        return list(self.baseline.coefficients)

    def iteration(self, variant: Variant, fit: FitResult) -> IterationResult:
        dev = deviation(fit.coefficients, self.baseline.coefficients)
        return IterationResult(
            variant_id=variant.variant_id,
            kind=variant.kind,
            removed=variant.removed,
            n_taxa=fit.n_taxa,
            fit=fit,
            deviation=dev,
            percentage=percentage_change(dev, self.baseline.coefficients),
            meta=dict(variant.meta),
        )

    def null_sample(self, variant: Variant, fit: FitResult) -> NullSample:
        return NullSample(
            clade=str(variant.meta["clade"]),
            size=int(variant.meta["size"]),
            draw=int(variant.meta["draw"]),
            removed=variant.removed,
            fit=fit,
            deviation=deviation(fit.coefficients, self.baseline.coefficients),
        )

    def standardize(self, iterations: list[IterationResult]) -> list[IterationResult]:
        """Attach sDF = DF / sd(DF) per coefficient and flag |sDF| > cutoff."""
        if not iterations:
            return []
        scores: dict[str, np.ndarray] = {}
        for name in self.coefficient_names:
            scores[name] = standardize(np.array([it.deviation[name] for it in iterations]))
        out: list[IterationResult] = []
        for idx, it in enumerate(iterations):
            sdf = {name: float(scores[name][idx]) for name in self.coefficient_names}
            flagged = tuple(
                name for name, v in sdf.items() if math.isfinite(v) and abs(v) > self.cutoff
            )
            out.append(dataclasses.replace(it, standardized=sdf, influential=flagged))
        return out

    def rank(self, iterations: list[IterationResult], *, standardized: bool) -> dict[str, list[dict[str, Any]]]:
        ranking: dict[str, list[dict[str, Any]]] = {}
        for name in self.coefficient_names:
            scored = []
            for it in iterations:
                value = it.standardized.get(name) if standardized else it.deviation[name]
                if value is None or not math.isfinite(value):
                    continue
                scored.append({"variant_id": it.variant_id, "score": abs(float(value))})
            scored.sort(key=lambda e: (-e["score"], e["variant_id"]))
            ranking[name] = scored[: self.top]
        return ranking

    def randomization_tests(
        self, iterations: list[IterationResult], null_samples: list[NullSample]
    ) -> dict[str, dict[str, dict[str, Any]]]:
        by_clade: dict[str, list[NullSample]] = defaultdict(list)
        for ns in null_samples:
            by_clade[ns.clade].append(ns)
        tests: dict[str, dict[str, dict[str, Any]]] = {}
        for it in iterations:
            clade = it.variant_id
            pool = by_clade.get(clade, [])
            per_coef: dict[str, dict[str, Any]] = {}
            for name in self.coefficient_names:
                null_dev = np.array([ns.deviation[name] for ns in pool], dtype=float)
                stats = describe(null_dev)
                per_coef[name] = {
                    "deviation": it.deviation[name],
                    "p_value": empirical_p_value(it.deviation[name], null_dev, tail="abs"),
                    "n_null": int(null_dev.size),
                    "null_mean": stats["mean"],
                    "null_sd": stats["sd"],
                    "significant": None,
                }
                p = per_coef[name]["p_value"]
                if math.isfinite(p):
                    per_coef[name]["significant"] = bool(p <= self.alpha)
            tests[clade] = per_coef
        return tests

    def _share_significant(self, fits: list[FitResult], name: str) -> float:
        if not fits:
            return float("nan")
        return float(np.mean([1.0 if f.p_values.get(name, 1.0) < self.alpha else 0.0 for f in fits]))

    def per_break(self, iterations: list[IterationResult]) -> dict[str, dict[str, Any]]:
        groups: dict[float, list[IterationResult]] = defaultdict(list)
        for it in iterations:
            groups[float(it.meta["break"])].append(it)
        out: dict[str, dict[str, Any]] = {}
        for brk in sorted(groups):
            rows = groups[brk]
            entry: dict[str, Any] = {"n_succeeded": len(rows)}
            for name in self.coefficient_names:
                estimates = np.array([it.fit.coefficients[name] for it in rows], dtype=float)
                perc = np.array([it.percentage[name] for it in rows], dtype=float)
                entry[name] = {
                    **describe(estimates),
                    "mean_perc": float(np.nanmean(perc)) if np.isfinite(perc).any() else float("nan"),
                    "sign_share": self._share_significant([it.fit for it in rows], name),
                }
            out[f"{brk:g}"] = entry
        return out

    def per_coefficient(self, iterations: list[IterationResult]) -> dict[str, dict[str, Any]]:
        fits = [it.fit for it in iterations]
        out: dict[str, dict[str, Any]] = {}
        for name in self.coefficient_names:
            estimates = np.array([f.coefficients[name] for f in fits], dtype=float)
            out[name] = {
                **describe(estimates),
                "sign_share": self._share_significant(fits, name),
            }
        for key, getter in (("AIC", lambda f: f.aic), ("optpar", lambda f: f.phylo_param)):
            out[key] = describe(np.array([getter(f) for f in fits], dtype=float))
        return out

    def aggregate(
        self,
        kind: AnalysisKind,
        fits: list[tuple[Variant, FitResult]],
        errors: list[LedgerEntry],
        *,
        null_fits: list[tuple[Variant, FitResult]] | None = None,
        null_errors: list[LedgerEntry] | None = None,
    ) -> Aggregate:
        iterations = [self.iteration(v, f) for v, f in fits]
        null_samples = [self.null_sample(v, f) for v, f in (null_fits or [])]

        undefined = sorted(
            name for name, value in self.baseline.coefficients.items() if float(value) == 0.0
        )
        summary: dict[str, Any] = {
            "n_variants": len(fits) + len(errors),
            "n_succeeded": len(fits),
            "n_failed": len(errors),
            "failed": [e.variant_id for e in errors],
            "undefined_percentage": undefined,
        }

        if kind is AnalysisKind.INFLU:
            iterations = self.standardize(iterations)
            summary["cutoff"] = self.cutoff
            summary["ranking"] = self.rank(iterations, standardized=True)
            summary["influential"] = {
                name: [it.variant_id for it in iterations if name in it.influential]
                for name in self.coefficient_names
            }
        elif kind is AnalysisKind.CLADE:
            summary["ranking"] = self.rank(iterations, standardized=False)
            summary["randomization"] = self.randomization_tests(iterations, null_samples)
            summary["n_null_samples"] = len(null_samples)
            summary["n_null_failed"] = len(null_errors or [])
        elif kind is AnalysisKind.SAMP:
            summary["ranking"] = self.rank(iterations, standardized=False)
            summary["breaks"] = self.per_break(iterations)
        else:
            summary["ranking"] = self.rank(iterations, standardized=False)
            summary["estimates"] = self.per_coefficient(iterations)

        all_errors = list(errors) + list(null_errors or [])
        return Aggregate(
            iterations=iterations,
            null_samples=null_samples,
            errors=all_errors,
            summary=summary,
        )
