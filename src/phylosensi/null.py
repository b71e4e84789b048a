from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Iterator

import numpy as np
import pandas as pd

from .perturbation import Variant
from .phylo import TreeNode
from .report import AnalysisKind
from .runner import RefitRunner, RunOutcome


def null_variant_id(clade: str, draw: int) -> str:
    return f"null:{clade}#{draw}"


@dataclass
class NullDistributionSampler:
    """Size-matched random removals used as the randomization null for a clade.

    Every draw restarts from the full taxon set and removes ``size`` taxa
    without replacement, regardless of clade membership.
    """

    runner: RefitRunner
    times: int
    rng: np.random.Generator

    def __post_init__(self) -> None:
        if self.times <= 0:
            raise ValueError("times must be > 0")

    def variants(
        self, data: pd.DataFrame, tree: TreeNode, clade: str, size: int
    ) -> Iterator[Variant]:
        taxa = np.asarray([str(t) for t in data.index])
        if not (0 < size < len(taxa)):
            raise ValueError(f"Null sample size {size} must lie in (0, {len(taxa)}).")
        for draw in range(1, self.times + 1):
            chosen = self.rng.choice(taxa, size=size, replace=False)
            yield Variant(
                variant_id=null_variant_id(clade, draw),
                kind=AnalysisKind.CLADE,
                data=data,
                tree=tree,
                removed=tuple(str(t) for t in chosen),
                meta={"clade": clade, "size": size, "draw": draw},
            )

    def sample(self, data: pd.DataFrame, tree: TreeNode, clade: str, size: int) -> RunOutcome:
        outcome = self.runner.run(self.variants(data, tree, clade, size))
        outcome.errors = [dataclasses.replace(e, null=True) for e in outcome.errors]
        return outcome
