from __future__ import annotations

import logging
from typing import Iterator

import numpy as np
import pandas as pd

from .aggregate import ResultAggregator
from .fitting import Fitter, PGLSFitter
from .formula import ModelSpec
from .matching import TreeInput, match_data_tree
from .null import NullDistributionSampler
from .perturbation import (
    Variant,
    data_resample,
    leave_clade_out,
    leave_one_out,
    leave_percentage_out,
    tree_resample,
)
from .phylo import TreeNode
from .plan import DEFAULT_BREAKS, PerturbationPlan
from .provenance import now_utc_iso
from .report import AnalysisKind, AnalysisReport
from .runner import ProgressCallback, RefitRunner, RunOutcome

logger = logging.getLogger(__name__)


def _as_spec(model: str | ModelSpec) -> ModelSpec:
    return model if isinstance(model, ModelSpec) else ModelSpec.parse(model)


def run_analysis(
    model: str | ModelSpec,
    data: pd.DataFrame,
    tree: TreeInput,
    plan: PerturbationPlan,
    *,
    fitter: Fitter | None = None,
    progress: ProgressCallback | None = None,
) -> AnalysisReport:
    """Match, fit the full model, refit every perturbed variant and aggregate.

    ``tree`` is a single tree for every mode except ``tree``, which takes an
    ensemble (list) and compares each resampled member against the full model
    fitted on the first member.
    """
    spec = _as_spec(model)
    kind = plan.mode
    if kind is AnalysisKind.TREE:
        if not isinstance(tree, list):
            raise ValueError("Tree resampling needs a tree ensemble (list of trees).")
    elif isinstance(tree, list):
        raise ValueError(f"{kind.value} analysis takes a single tree, not an ensemble.")

    match = match_data_tree(spec, data, tree)
    trees = match.trees
    reference = trees[0]
    full_data = match.data

    runner = RefitRunner(
        fitter if fitter is not None else PGLSFitter(),
        spec,
        progress=progress,
        n_jobs=plan.n_jobs,
    )
    baseline = runner.fit_baseline(full_data, reference)
    rng = np.random.default_rng(plan.seed)
    times = plan.resolved_times

    variants: Iterator[Variant]
    clades: list[Variant] = []
    if kind is AnalysisKind.INFLU:
        variants = leave_one_out(full_data, reference)
    elif kind is AnalysisKind.SAMP:
        variants = leave_percentage_out(
            full_data, reference, breaks=plan.breaks, times=int(times), rng=rng
        )
    elif kind is AnalysisKind.CLADE:
        if not plan.clade_col:
            raise ValueError("Clade analysis requires clade_col.")
        clades = list(
            leave_clade_out(
                full_data, reference, clade_col=plan.clade_col, n_species=plan.n_species
            )
        )
        variants = iter(clades)
    elif kind is AnalysisKind.TREE:
        variants = tree_resample(full_data, trees, times=times, rng=rng)
    else:
        variants = data_resample(
            full_data,
            reference,
            spec,
            times=int(times),
            distribution=plan.distribution,
            rng=rng,
        )

    outcome = runner.run(variants)
    null = RunOutcome()
    if kind is AnalysisKind.CLADE:
        sampler = NullDistributionSampler(runner, times=int(times), rng=rng)
        for variant in clades:
            drawn = sampler.sample(full_data, reference, variant.variant_id, len(variant.removed))
            null.fits.extend(drawn.fits)
            null.errors.extend(drawn.errors)

    logger.info(
        "%s analysis: %d variants, %d succeeded, %d failed.",
        kind.value,
        outcome.n_attempted,
        len(outcome.fits),
        len(outcome.errors),
    )
    aggregator = ResultAggregator(baseline, cutoff=plan.cutoff, alpha=plan.alpha, top=plan.top)
    agg = aggregator.aggregate(
        kind,
        outcome.fits,
        outcome.errors,
        null_fits=null.fits,
        null_errors=null.errors,
    )
    return AnalysisReport(
        kind=kind,
        spec=spec,
        plan=plan.to_dict(),
        baseline=baseline,
        iterations=tuple(agg.iterations),
        errors=tuple(agg.errors),
        summary=agg.summary,
        matching=match.to_dict(),
        null_samples=tuple(agg.null_samples),
        created_at_utc=now_utc_iso(),
        plan_hash=plan.plan_hash(),
    )


def influ_analysis(
    model: str | ModelSpec,
    data: pd.DataFrame,
    tree: TreeNode,
    *,
    cutoff: float = 2.0,
    fitter: Fitter | None = None,
    progress: ProgressCallback | None = None,
    n_jobs: int = 1,
) -> AnalysisReport:
    """Leave-one-out influential species detection."""
    plan = PerturbationPlan(mode=AnalysisKind.INFLU, cutoff=cutoff, n_jobs=n_jobs)
    return run_analysis(model, data, tree, plan, fitter=fitter, progress=progress)


def samp_analysis(
    model: str | ModelSpec,
    data: pd.DataFrame,
    tree: TreeNode,
    *,
    breaks: tuple[float, ...] = DEFAULT_BREAKS,
    times: int = 30,
    seed: int | None = None,
    fitter: Fitter | None = None,
    progress: ProgressCallback | None = None,
    n_jobs: int = 1,
) -> AnalysisReport:
    """Random removal of a share of species at each break, ``times`` draws per break."""
    plan = PerturbationPlan(
        mode=AnalysisKind.SAMP, breaks=tuple(breaks), times=times, seed=seed, n_jobs=n_jobs
    )
    return run_analysis(model, data, tree, plan, fitter=fitter, progress=progress)


def clade_analysis(
    model: str | ModelSpec,
    data: pd.DataFrame,
    tree: TreeNode,
    *,
    clade_col: str,
    n_species: int = 5,
    times: int = 100,
    seed: int | None = None,
    fitter: Fitter | None = None,
    progress: ProgressCallback | None = None,
    n_jobs: int = 1,
) -> AnalysisReport:
    """Leave-clade-out with a size-matched randomization test per clade."""
    plan = PerturbationPlan(
        mode=AnalysisKind.CLADE,
        clade_col=clade_col,
        n_species=n_species,
        times=times,
        seed=seed,
        n_jobs=n_jobs,
    )
    return run_analysis(model, data, tree, plan, fitter=fitter, progress=progress)


def tree_analysis(
    model: str | ModelSpec,
    data: pd.DataFrame,
    trees: list[TreeNode],
    *,
    times: int | None = None,
    seed: int | None = None,
    fitter: Fitter | None = None,
    progress: ProgressCallback | None = None,
    n_jobs: int = 1,
) -> AnalysisReport:
    plan = PerturbationPlan(mode=AnalysisKind.TREE, times=times, seed=seed, n_jobs=n_jobs)
    return run_analysis(model, data, trees, plan, fitter=fitter, progress=progress)


def intra_analysis(
    model: str | ModelSpec,
    data: pd.DataFrame,
    tree: TreeNode,
    *,
    times: int = 30,
    distribution: str = "normal",
    seed: int | None = None,
    fitter: Fitter | None = None,
    progress: ProgressCallback | None = None,
    n_jobs: int = 1,
) -> AnalysisReport:
    """Refit on trait values redrawn from each taxon's declared uncertainty."""
    plan = PerturbationPlan(
        mode=AnalysisKind.INTRA,
        times=times,
        distribution=distribution,
        seed=seed,
        n_jobs=n_jobs,
    )
    return run_analysis(model, data, tree, plan, fitter=fitter, progress=progress)
