from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

import numpy as np
import pandas as pd

from .errors import NoQualifyingClade, PruneFailure
from .formula import ModelSpec
from .phylo import TreeNode, drop_tips
from .report import AnalysisKind


@dataclass(frozen=True)
class Variant:
    """One perturbed (data, tree) pair, not yet pruned.

    ``removed`` taxa are dropped from both sides by ``materialize`` so a
    pruning problem surfaces per variant instead of during enumeration.
    """

    variant_id: str
    kind: AnalysisKind
    data: pd.DataFrame
    tree: TreeNode
    removed: tuple[str, ...] = ()
    meta: dict[str, Any] = field(default_factory=dict)

    def materialize(self) -> tuple[pd.DataFrame, TreeNode]:
        if not self.removed:
            return self.data, self.tree
        absent = [t for t in self.removed if t not in self.data.index]
        if absent:
            raise PruneFailure(f"Taxa not in data: {', '.join(absent)}")
        pruned_tree = drop_tips(self.tree, self.removed)
        pruned_data = self.data.drop(index=list(self.removed))
        return pruned_data, pruned_tree


def leave_one_out(data: pd.DataFrame, tree: TreeNode) -> Iterator[Variant]:
    for taxon in data.index:
        name = str(taxon)
        yield Variant(
            variant_id=name,
            kind=AnalysisKind.INFLU,
            data=data,
            tree=tree,
            removed=(name,),
            meta={"species": name},
        )


def _check_breaks(breaks: tuple[float, ...] | list[float], n_taxa: int) -> list[tuple[float, int]]:
    if not breaks:
        raise ValueError("At least one break is required.")
    sized: list[tuple[float, int]] = []
    for p in breaks:
        p = float(p)
        if not (0.0 < p < 1.0):
            raise ValueError(f"Breaks must lie strictly between 0 and 1, got {p}")
        k = int(round(p * n_taxa))
        if k < 1:
            raise ValueError(f"Break {p} removes no taxa out of {n_taxa}.")
        if n_taxa - k < 3:
            raise ValueError(f"Break {p} leaves fewer than 3 of {n_taxa} taxa.")
        sized.append((p, k))
    return sized


def leave_percentage_out(
    data: pd.DataFrame,
    tree: TreeNode,
    *,
    breaks: tuple[float, ...] | list[float],
    times: int,
    rng: np.random.Generator,
) -> Iterator[Variant]:
    if times <= 0:
        raise ValueError("times must be > 0")
    taxa = np.asarray([str(t) for t in data.index])
    for p, k in _check_breaks(breaks, len(taxa)):
        for rep in range(1, times + 1):
            chosen = rng.choice(taxa, size=k, replace=False)
            yield Variant(
                variant_id=f"{p:g}:{rep}",
                kind=AnalysisKind.SAMP,
                data=data,
                tree=tree,
                removed=tuple(str(t) for t in chosen),
                meta={"break": p, "repetition": rep, "n_removed": k},
            )


def qualifying_clades(data: pd.DataFrame, clade_col: str, n_species: int) -> dict[str, int]:
    """Clades with strictly more than ``n_species`` members, sorted by name."""
    if clade_col not in data.columns:
        raise ValueError(f"Clade column {clade_col!r} not found in data.")
    counts = data[clade_col].dropna().astype(str).value_counts()
    keep = {str(name): int(size) for name, size in counts.items() if int(size) > n_species}
    if not keep:
        raise NoQualifyingClade(
            f"There is no clade with more than {n_species} species. "
            "Lower n_species to include smaller clades."
        )
    return dict(sorted(keep.items()))


def leave_clade_out(
    data: pd.DataFrame,
    tree: TreeNode,
    *,
    clade_col: str,
    n_species: int = 5,
) -> Iterator[Variant]:
    clades = qualifying_clades(data, clade_col, n_species)
    labels = data[clade_col].astype(str).where(data[clade_col].notna())
    for clade, size in clades.items():
        members = tuple(str(t) for t in data.index[(labels == clade).to_numpy()])
        yield Variant(
            variant_id=clade,
            kind=AnalysisKind.CLADE,
            data=data,
            tree=tree,
            removed=members,
            meta={"clade": clade, "N.species": size},
        )


def tree_resample(
    data: pd.DataFrame,
    trees: list[TreeNode],
    *,
    times: int | None,
    rng: np.random.Generator,
) -> Iterator[Variant]:
    if not trees:
        raise ValueError("Tree ensemble is empty.")
    n_draws = 2 if times is None else int(times)
    if n_draws <= 0:
        raise ValueError("times must be > 0")
    indices = rng.choice(len(trees), size=n_draws, replace=n_draws > len(trees))
    for rep, index in enumerate(indices, start=1):
        yield Variant(
            variant_id=f"tree:{int(index)}#{rep}",
            kind=AnalysisKind.TREE,
            data=data,
            tree=trees[int(index)],
            meta={"tree": int(index), "repetition": rep},
        )


def perturb_values(
    data: pd.DataFrame,
    spec: ModelSpec,
    *,
    distribution: str,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Draw one value per taxon for each variable with an uncertainty column.

    Normal draws are centred on the observed value with sd = uncertainty;
    uniform draws span value +/- uncertainty. Taxa with missing or zero
    uncertainty keep their observed value.
    """
    dist = distribution.lower()
    if dist not in {"normal", "uniform"}:
        raise ValueError(f"Unsupported distribution: {distribution}")
    out = data.copy()
    for var, sd_col in spec.uncertainty.items():
        values = data[var].astype(float)
        spread = data[sd_col].astype(float)
        if bool((spread < 0).any()):
            raise ValueError(f"Uncertainty column {sd_col!r} has negative values.")
        mask = (spread.notna() & (spread != 0) & values.notna()).to_numpy()
        drawn = values.to_numpy(copy=True)
        v = drawn[mask]
        u = spread.to_numpy()[mask]
        if dist == "normal":
            drawn[mask] = rng.normal(loc=v, scale=u)
        else:
            drawn[mask] = rng.uniform(low=v - u, high=v + u)
        out[var] = drawn
    return out


def data_resample(
    data: pd.DataFrame,
    tree: TreeNode,
    spec: ModelSpec,
    *,
    times: int,
    distribution: str = "normal",
    rng: np.random.Generator,
) -> Iterator[Variant]:
    if times <= 0:
        raise ValueError("times must be > 0")
    if not spec.uncertainty:
        raise ValueError("Data resampling needs at least one uncertainty column.")
    for rep in range(1, times + 1):
        yield Variant(
            variant_id=f"rep:{rep}",
            kind=AnalysisKind.INTRA,
            data=perturb_values(data, spec, distribution=distribution, rng=rng),
            tree=tree,
            meta={"repetition": rep},
        )
