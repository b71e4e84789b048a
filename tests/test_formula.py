import numpy as np
import pandas as pd
import pytest

from phylosensi.formula import ModelSpec


def test_parse_formula_with_transforms() -> None:
    spec = ModelSpec.parse("log(mass) ~ sqrt(range) + temp", uncertainty={"mass": "mass_sd"})
    assert spec.response == "mass"
    assert spec.predictors == ("range", "temp")
    assert spec.transforms == {"mass": "log", "range": "sqrt"}
    assert spec.coefficient_names == ("intercept", "range", "temp")
    assert spec.formula == "log(mass) ~ sqrt(range) + temp"


@pytest.mark.parametrize(
    "formula",
    ["y x", "y ~ ", "y ~ x +", "y ~ exp(x)", "y ~ y", "y ~ x ~ z"],
)
def test_parse_rejects_bad_formulas(formula: str) -> None:
    with pytest.raises(ValueError):
        ModelSpec.parse(formula)


def test_uncertainty_must_name_model_variable() -> None:
    with pytest.raises(ValueError):
        ModelSpec.parse("y ~ x", uncertainty={"z": "z_sd"})


def test_check_columns_reports_missing() -> None:
    spec = ModelSpec.parse("y ~ x", uncertainty={"x": "x_sd"})
    with pytest.raises(ValueError, match="x_sd"):
        spec.check_columns(pd.DataFrame({"y": [1.0], "x": [2.0]}))


def test_apply_transforms_and_design() -> None:
    spec = ModelSpec.parse("y ~ log(x)")
    data = pd.DataFrame({"y": [1.0, 2.0], "x": [1.0, np.e]}, index=["a", "b"])
    prepared = spec.apply_transforms(data)
    assert prepared["x"].tolist() == pytest.approx([0.0, 1.0])
    assert data["x"].tolist() == pytest.approx([1.0, np.e])
    y, X = spec.design(prepared)
    assert y.tolist() == [1.0, 2.0]
    assert X.shape == (2, 2)
    assert X[:, 0].tolist() == [1.0, 1.0]


def test_log_of_non_positive_values_is_an_error() -> None:
    spec = ModelSpec.parse("y ~ log(x)")
    with pytest.raises(ValueError):
        spec.apply_transforms(pd.DataFrame({"y": [1.0], "x": [0.0]}))
