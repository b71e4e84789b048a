from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, TextIO

import pandas as pd
from tqdm import tqdm

from .errors import FullModelFitFailed, PruneFailure
from .fitting import FitFailure, Fitter, FitResult
from .formula import ModelSpec
from .perturbation import Variant
from .phylo import TreeNode
from .report import FullModelEstimate, LedgerEntry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


def no_progress(done: int, total: int, variant_id: str) -> None:
    return None


class ConsoleProgress:
    """``tqdm`` bar driven by the ``(done, total, variant_id)`` callback.

    A bar opens on the first call of a run and closes once ``done`` reaches
    ``total``, so one instance can follow several consecutive runs.
    """

    def __init__(self, label: str = "Fitting", stream: TextIO | None = None) -> None:
        self.label = label
        self.stream = stream
        self._bar: tqdm | None = None

    def __call__(self, done: int, total: int, variant_id: str) -> None:
        if self._bar is None:
            self._bar = tqdm(total=total, desc=self.label, file=self.stream, unit="fit")
        self._bar.set_postfix_str(variant_id, refresh=False)
        self._bar.update(done - self._bar.n)
        if done >= total:
            self._bar.close()
            self._bar = None


@dataclass
class RunOutcome:
    fits: list[tuple[Variant, FitResult]] = field(default_factory=list)
    errors: list[LedgerEntry] = field(default_factory=list)

    @property
    def n_attempted(self) -> int:
        return len(self.fits) + len(self.errors)


class RefitRunner:
    """Fit an injected regression on each variant, isolating per-variant failures."""

    def __init__(
        self,
        fitter: Fitter,
        spec: ModelSpec,
        *,
        progress: ProgressCallback | None = None,
        n_jobs: int = 1,
    ) -> None:
        if n_jobs == 0 or n_jobs < -1:
            raise ValueError("n_jobs must be >= 1 or -1 for all cores")
        self.fitter = fitter
        self.spec = spec
        self.progress = progress or no_progress
        self.n_jobs = n_jobs

    def _fit(self, data: pd.DataFrame, tree: TreeNode) -> FitResult | FitFailure:
        try:
            prepared = self.spec.apply_transforms(data)
            outcome = self.fitter.fit(self.spec, prepared, tree)
        except Exception as exc:
            return FitFailure(f"{type(exc).__name__}: {exc}")
        if isinstance(outcome, FitResult):
            # row count comes from the fitted data, not the fitter
            return dataclasses.replace(outcome, n_taxa=len(data))
        return outcome

    def fit_baseline(self, data: pd.DataFrame, tree: TreeNode) -> FullModelEstimate:
        outcome = self._fit(data, tree)
        if isinstance(outcome, FitFailure):
            raise FullModelFitFailed(f"Full model failed to converge: {outcome.reason}")
        return FullModelEstimate(fit=outcome, n_taxa=len(data))

    def _run_one(self, variant: Variant) -> FitResult | LedgerEntry:
        try:
            data, tree = variant.materialize()
        except PruneFailure as exc:
            return LedgerEntry(variant.variant_id, str(exc), "prune")
        outcome = self._fit(data, tree)
        if isinstance(outcome, FitFailure):
            return LedgerEntry(variant.variant_id, outcome.reason, "fit")
        return outcome

    def run(self, variants: Iterable[Variant]) -> RunOutcome:
        """Fit every variant; results keep variant order whatever ``n_jobs`` is."""
        todo = list(variants)
        total = len(todo)
        slots: list[FitResult | LedgerEntry | None] = [None] * total

        if self.n_jobs == 1 or total <= 1:
            for idx, variant in enumerate(todo):
                slots[idx] = self._run_one(variant)
                self.progress(idx + 1, total, variant.variant_id)
        else:
            workers = None if self.n_jobs == -1 else self.n_jobs
            with ThreadPoolExecutor(max_workers=workers) as ex:
                fut_to_idx = {ex.submit(self._run_one, v): idx for idx, v in enumerate(todo)}
                for done, fut in enumerate(as_completed(fut_to_idx), start=1):
                    idx = fut_to_idx[fut]
                    try:
                        slots[idx] = fut.result()
                    except Exception as exc:
                        slots[idx] = LedgerEntry(
                            todo[idx].variant_id, f"worker_exception:{exc}", "fit"
                        )
                    self.progress(done, total, todo[idx].variant_id)

        outcome = RunOutcome()
        for variant, slot in zip(todo, slots):
            if isinstance(slot, LedgerEntry):
                logger.warning(
                    "Variant %s failed at %s: %s", slot.variant_id, slot.stage, slot.reason
                )
                outcome.errors.append(slot)
            else:
                assert slot is not None
                outcome.fits.append((variant, slot))
        return outcome
