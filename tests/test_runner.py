import io

import numpy as np
import pytest

from phylosensi.errors import FullModelFitFailed
from phylosensi.fitting import FitResult
from phylosensi.formula import ModelSpec
from phylosensi.null import NullDistributionSampler, null_variant_id
from phylosensi.perturbation import Variant, leave_one_out
from phylosensi.report import AnalysisKind
from phylosensi.runner import ConsoleProgress, RefitRunner


class _CountlessFitter:
    """Returns coefficients only, leaving the optional row count unset."""

    def fit(self, spec, data, tree):
        y, X = spec.design(data)
        beta, *_ = np.linalg.lstsq(X, y, rcond=None)
        names = spec.coefficient_names
        return FitResult(
            coefficients={n: float(b) for n, b in zip(names, beta)},
            p_values={n: 0.5 for n in names},
            aic=1.0,
            phylo_param=1.0,
        )


def test_runner_isolates_failures_and_keeps_order(
    linear_data, make_tree, taxa20, scripted_fitter
) -> None:
    tree = make_tree(taxa20)
    spec = ModelSpec.parse("y ~ x")
    calls: list[tuple[int, int, str]] = []
    runner = RefitRunner(
        scripted_fitter(fail_without={"sp03"}, raise_without={"sp11"}),
        spec,
        progress=lambda done, total, vid: calls.append((done, total, vid)),
    )
    outcome = runner.run(leave_one_out(linear_data, tree))
    assert outcome.n_attempted == 20
    assert [e.variant_id for e in outcome.errors] == ["sp03", "sp11"]
    assert all(e.stage == "fit" for e in outcome.errors)
    assert "RuntimeError" in outcome.errors[1].reason
    assert [v.variant_id for v, _ in outcome.fits] == [t for t in taxa20 if t not in {"sp03", "sp11"}]
    assert [c[0] for c in calls] == list(range(1, 21))


def test_threaded_runner_matches_sequential(linear_data, make_tree, taxa20, scripted_fitter) -> None:
    tree = make_tree(taxa20)
    spec = ModelSpec.parse("y ~ x")
    seq = RefitRunner(scripted_fitter(), spec).run(leave_one_out(linear_data, tree))
    par = RefitRunner(scripted_fitter(), spec, n_jobs=4).run(leave_one_out(linear_data, tree))
    assert [v.variant_id for v, _ in seq.fits] == [v.variant_id for v, _ in par.fits]
    assert [f.coefficients for _, f in seq.fits] == [f.coefficients for _, f in par.fits]


def test_prune_failures_are_ledgered(linear_data, make_tree, taxa20, scripted_fitter) -> None:
    variant = Variant(
        variant_id="ghost",
        kind=AnalysisKind.INFLU,
        data=linear_data,
        tree=make_tree(taxa20),
        removed=("nope",),
    )
    outcome = RefitRunner(scripted_fitter(), ModelSpec.parse("y ~ x")).run([variant])
    assert outcome.fits == []
    assert outcome.errors[0].stage == "prune"


def test_baseline_failure_is_fatal(linear_data, make_tree, taxa20, scripted_fitter) -> None:
    runner = RefitRunner(scripted_fitter(fail_without={"ghost"}), ModelSpec.parse("y ~ x"))
    with pytest.raises(FullModelFitFailed):
        runner.fit_baseline(linear_data, make_tree(taxa20))


def test_invalid_jobs(scripted_fitter) -> None:
    with pytest.raises(ValueError):
        RefitRunner(scripted_fitter(), ModelSpec.parse("y ~ x"), n_jobs=0)


def test_null_sampler_draws_size_matched_removals(
    linear_data, make_tree, taxa20, scripted_fitter
) -> None:
    runner = RefitRunner(scripted_fitter(), ModelSpec.parse("y ~ x"))
    sampler = NullDistributionSampler(runner, times=10, rng=np.random.default_rng(5))
    outcome = sampler.sample(linear_data, make_tree(taxa20), "A", 6)
    assert len(outcome.fits) == 10
    assert outcome.fits[0][0].variant_id == null_variant_id("A", 1)
    assert all(len(v.removed) == 6 for v, _ in outcome.fits)
    assert all(f.n_taxa == 14 for _, f in outcome.fits)
    with pytest.raises(ValueError):
        list(sampler.variants(linear_data, make_tree(taxa20), "A", 20))


def test_console_progress_drives_a_tqdm_bar() -> None:
    stream = io.StringIO()
    progress = ConsoleProgress(label="Fitting", stream=stream)
    progress(1, 2, "a")
    assert progress._bar is not None and progress._bar.n == 1
    progress(2, 2, "b")
    assert progress._bar is None
    out = stream.getvalue()
    assert "Fitting" in out and "2/2" in out

    # a second run on the same instance opens a fresh bar
    progress(1, 3, "c")
    assert progress._bar is not None and progress._bar.total == 3
    progress(3, 3, "e")
    assert "3/3" in stream.getvalue()


def test_fitted_row_count_comes_from_variant_data(linear_data, make_tree, taxa20) -> None:
    runner = RefitRunner(_CountlessFitter(), ModelSpec.parse("y ~ x"))
    baseline = runner.fit_baseline(linear_data, make_tree(taxa20))
    assert baseline.n_taxa == 20 and baseline.fit.n_taxa == 20
    outcome = runner.run(leave_one_out(linear_data, make_tree(taxa20)))
    assert [f.n_taxa for _, f in outcome.fits] == [19] * 20


def test_null_sampler_marks_its_failures(linear_data, make_tree, taxa20, scripted_fitter) -> None:
    runner = RefitRunner(scripted_fitter(fail_without=set(taxa20)), ModelSpec.parse("y ~ x"))
    sampler = NullDistributionSampler(runner, times=3, rng=np.random.default_rng(0))
    outcome = sampler.sample(linear_data, make_tree(taxa20), "A", 4)
    assert len(outcome.errors) == 3
    assert all(e.null for e in outcome.errors)
    plain = runner.run(leave_one_out(linear_data, make_tree(taxa20)))
    assert not any(e.null for e in plain.errors)
