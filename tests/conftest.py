from __future__ import annotations

from typing import Callable

import numpy as np
import pandas as pd
import pytest

from phylosensi.fitting import FitFailure, FitResult
from phylosensi.formula import ModelSpec
from phylosensi.phylo import TreeNode, parse_newick


def ultrametric_newick(names: list[str], height: float = 1.0) -> str:
    """Balanced ultrametric tree; every root-to-tip distance equals ``height``."""

    def _build(group: list[str], h: float) -> str:
        if len(group) == 1:
            return group[0]
        mid = len(group) // 2
        parts = []
        for half in (group[:mid], group[mid:]):
            child_h = 0.0 if len(half) == 1 else h / 2.0
            parts.append(f"{_build(half, child_h)}:{h - child_h:.6g}")
        return "(" + ",".join(parts) + ")"

    return _build(list(names), height) + ";"


class ScriptedFitter:
    """Ordinary least squares that fails whenever a scripted taxon is missing."""

    def __init__(self, fail_without: set[str] | None = None, raise_without: set[str] | None = None):
        self.fail_without = set(fail_without or ())
        self.raise_without = set(raise_without or ())
        self.calls = 0

    def fit(self, spec: ModelSpec, data: pd.DataFrame, tree: TreeNode):
        self.calls += 1
        present = set(str(t) for t in data.index)
        if self.fail_without - present:
            return FitFailure("scripted failure")
        if self.raise_without - present:
            raise RuntimeError("scripted exception")
        y, X = spec.design(data)
        beta, *_ = np.linalg.lstsq(X, y, rcond=None)
        names = spec.coefficient_names
        return FitResult(
            coefficients={n: float(b) for n, b in zip(names, beta)},
            p_values={n: 0.01 for n in names},
            aic=0.0,
            phylo_param=0.0,
            n_taxa=len(data),
        )


@pytest.fixture
def make_tree() -> Callable[[list[str]], TreeNode]:
    def _make(names: list[str]) -> TreeNode:
        return parse_newick(ultrametric_newick(names))

    return _make


@pytest.fixture
def taxa20() -> list[str]:
    return [f"sp{i:02d}" for i in range(1, 21)]


@pytest.fixture
def linear_data(taxa20: list[str]) -> pd.DataFrame:
    rng = np.random.default_rng(2016)
    x = rng.uniform(0.0, 3.0, size=len(taxa20))
    y = 1.0 + 2.0 * x + rng.normal(0.0, 0.2, size=len(taxa20))
    return pd.DataFrame({"y": y, "x": x}, index=pd.Index(taxa20, name="species"))


@pytest.fixture
def scripted_fitter() -> Callable[..., ScriptedFitter]:
    return ScriptedFitter
