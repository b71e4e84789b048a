import numpy as np
import pandas as pd
import pytest

from phylosensi.fitting import (
    FitFailure,
    FitResult,
    Fitter,
    PGLSFitter,
    PhyloLogisticFitter,
    make_fitter,
)
from phylosensi.formula import ModelSpec


def test_pgls_without_phylogenetic_signal_matches_ols(linear_data, make_tree, taxa20) -> None:
    spec = ModelSpec.parse("y ~ x")
    result = PGLSFitter(lambda_=0.0).fit(spec, linear_data, make_tree(taxa20))
    assert isinstance(result, FitResult)
    y, X = spec.design(linear_data)
    beta, *_ = np.linalg.lstsq(X, y, rcond=None)
    assert result.coefficients["intercept"] == pytest.approx(beta[0], rel=1e-8)
    assert result.coefficients["x"] == pytest.approx(beta[1], rel=1e-8)
    assert result.p_values["x"] < 1e-6
    assert result.phylo_param == 0.0
    assert result.n_taxa == 20
    assert np.isfinite(result.aic)


def test_pgls_ml_lambda_within_bounds(linear_data, make_tree, taxa20) -> None:
    result = PGLSFitter().fit(ModelSpec.parse("y ~ x"), linear_data, make_tree(taxa20))
    assert isinstance(result, FitResult)
    assert 0.0 < result.phylo_param <= 1.0
    assert result.coefficients["x"] == pytest.approx(2.0, abs=0.3)


def test_pgls_respects_data_row_order(linear_data, make_tree, taxa20) -> None:
    tree = make_tree(taxa20)
    fitter = PGLSFitter(lambda_=1.0)
    spec = ModelSpec.parse("y ~ x")
    a = fitter.fit(spec, linear_data, tree)
    b = fitter.fit(spec, linear_data.iloc[::-1], tree)
    assert isinstance(a, FitResult) and isinstance(b, FitResult)
    assert a.coefficients["x"] == pytest.approx(b.coefficients["x"], rel=1e-8)


def test_pgls_reports_failures_as_values(make_tree) -> None:
    tree = make_tree(["a", "b", "c"])
    data = pd.DataFrame({"y": [1.0, 2.0, 3.0], "x": [1.0, 2.0, 3.0]}, index=["a", "b", "c"])
    out = PGLSFitter().fit(ModelSpec.parse("y ~ x"), data, tree)
    assert isinstance(out, FitFailure)

    tree = make_tree(["a", "b", "c", "d", "e"])
    data = pd.DataFrame(
        {"y": [1.0, 2.0, 3.0, 4.0, 5.0], "x": [1.0, np.inf, 3.0, 4.0, 5.0]},
        index=["a", "b", "c", "d", "e"],
    )
    assert isinstance(PGLSFitter().fit(ModelSpec.parse("y ~ x"), data, tree), FitFailure)


def test_pgls_rejects_invalid_lambda() -> None:
    with pytest.raises(ValueError):
        PGLSFitter(lambda_="reml")
    with pytest.raises(ValueError):
        PGLSFitter(lambda_=1.5)


def test_logistic_fitter_recovers_direction(make_tree) -> None:
    taxa = [f"sp{i:02d}" for i in range(40)]
    rng = np.random.default_rng(11)
    x = rng.normal(size=40)
    y = (rng.uniform(size=40) < 1.0 / (1.0 + np.exp(-2.0 * x))).astype(float)
    data = pd.DataFrame({"y": y, "x": x}, index=taxa)
    result = PhyloLogisticFitter(lambda_=0.5).fit(ModelSpec.parse("y ~ x"), data, make_tree(taxa))
    assert isinstance(result, FitResult)
    assert result.coefficients["x"] > 0
    assert 0.0 <= result.p_values["x"] <= 1.0
    assert result.phylo_param == 0.5


def test_logistic_fitter_rejects_non_binary_and_single_class(make_tree) -> None:
    tree = make_tree(["a", "b", "c", "d"])
    spec = ModelSpec.parse("y ~ x")
    data = pd.DataFrame({"y": [0.0, 1.0, 2.0, 1.0], "x": [0.1, 0.2, 0.3, 0.4]}, index=list("abcd"))
    assert isinstance(PhyloLogisticFitter().fit(spec, data, tree), FitFailure)
    data["y"] = 1.0
    assert isinstance(PhyloLogisticFitter().fit(spec, data, tree), FitFailure)


def test_make_fitter() -> None:
    assert isinstance(make_fitter("pgls", "ml"), PGLSFitter)
    assert isinstance(make_fitter("logistic", 0.3), PhyloLogisticFitter)
    assert isinstance(make_fitter("pgls", 0.2), Fitter)
    with pytest.raises(ValueError):
        make_fitter("probit")
