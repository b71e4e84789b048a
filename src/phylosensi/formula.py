from __future__ import annotations

import re
from dataclasses import dataclass, field

import numpy as np
import pandas as pd


TRANSFORMS = {
    "identity": lambda v: v,
    "log": np.log,
    "log10": np.log10,
    "sqrt": np.sqrt,
}

_TERM_RE = re.compile(r"^(?:(log|log10|sqrt)\(\s*([^()\s]+)\s*\)|([^()\s]+))$")


def _parse_term(raw: str) -> tuple[str, str]:
    match = _TERM_RE.match(raw.strip())
    if not match:
        raise ValueError(f"Unsupported formula term: {raw.strip()!r}")
    if match.group(1):
        return match.group(2), match.group(1)
    return match.group(3), "identity"


@dataclass(frozen=True)
class ModelSpec:
    """Response, predictors and per-variable uncertainty/transform settings.

    Resolved once per analysis; generators and fitters read columns by name
    from this spec and never re-interpret a formula string.
    """

    response: str
    predictors: tuple[str, ...]
    uncertainty: dict[str, str] = field(default_factory=dict)
    transforms: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.response:
            raise ValueError("ModelSpec requires a response column.")
        if not self.predictors:
            raise ValueError("ModelSpec requires at least one predictor column.")
        if self.response in self.predictors:
            raise ValueError(f"Column {self.response!r} is both response and predictor.")
        for var in list(self.uncertainty) + list(self.transforms):
            if var not in self.variables:
                raise ValueError(f"{var!r} is not a model variable.")
        for var, name in self.transforms.items():
            if name not in TRANSFORMS:
                raise ValueError(f"Unsupported transform for {var!r}: {name}")

    @classmethod
    def parse(
        cls,
        formula: str,
        *,
        uncertainty: dict[str, str] | None = None,
        transforms: dict[str, str] | None = None,
    ) -> "ModelSpec":
        """Build a spec from ``"y ~ x1 + x2"``; ``log(x)`` style terms set transforms."""
        if formula.count("~") != 1:
            raise ValueError(f"Formula must contain exactly one '~': {formula!r}")
        lhs, rhs = formula.split("~")
        response, response_tf = _parse_term(lhs)
        predictors: list[str] = []
        found: dict[str, str] = {}
        if response_tf != "identity":
            found[response] = response_tf
        for raw in rhs.split("+"):
            if not raw.strip():
                raise ValueError(f"Empty predictor term in formula: {formula!r}")
            name, tf = _parse_term(raw)
            predictors.append(name)
            if tf != "identity":
                found[name] = tf
        found.update(transforms or {})
        return cls(
            response=response,
            predictors=tuple(predictors),
            uncertainty=dict(uncertainty or {}),
            transforms=found,
        )

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.response, *self.predictors)

    @property
    def coefficient_names(self) -> tuple[str, ...]:
        return ("intercept", *self.predictors)

    @property
    def formula(self) -> str:
        def _term(var: str) -> str:
            tf = self.transforms.get(var, "identity")
            return var if tf == "identity" else f"{tf}({var})"

        return f"{_term(self.response)} ~ " + " + ".join(_term(p) for p in self.predictors)

    def check_columns(self, data: pd.DataFrame) -> None:
        required = list(self.variables) + list(self.uncertainty.values())
        missing = [col for col in required if col not in data.columns]
        if missing:
            raise ValueError(f"Data is missing model columns: {', '.join(missing)}")

    def apply_transforms(self, data: pd.DataFrame) -> pd.DataFrame:
        """Return a copy with declared transforms applied to the model variables."""
        if not self.transforms:
            return data
        out = data.copy()
        for var, name in self.transforms.items():
            values = out[var].astype(float)
            if name in {"log", "log10"} and bool((values <= 0).any()):
                raise ValueError(f"Cannot apply {name} to non-positive values in {var!r}.")
            if name == "sqrt" and bool((values < 0).any()):
                raise ValueError(f"Cannot apply sqrt to negative values in {var!r}.")
            out[var] = TRANSFORMS[name](values)
        return out

    def design(self, data: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
        """Response vector and design matrix (intercept first)."""
        y = data[self.response].to_numpy(dtype=float)
        cols = [np.ones(len(data), dtype=float)]
        cols.extend(data[p].to_numpy(dtype=float) for p in self.predictors)
        return y, np.column_stack(cols)

    def to_dict(self) -> dict[str, object]:
        return {
            "formula": self.formula,
            "response": self.response,
            "predictors": list(self.predictors),
            "uncertainty": dict(self.uncertainty),
            "transforms": dict(self.transforms),
        }
