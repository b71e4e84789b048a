from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from .errors import NoCommonTaxa, OrderingMismatch
from .formula import ModelSpec
from .phylo import TreeNode, drop_tips

logger = logging.getLogger(__name__)

TreeInput = TreeNode | list[TreeNode]


@dataclass(frozen=True)
class MatchResult:
    data: pd.DataFrame
    tree: TreeInput
    dropped_na: tuple[str, ...]
    dropped_mismatch: tuple[str, ...]

    @property
    def taxa(self) -> tuple[str, ...]:
        return tuple(str(x) for x in self.data.index)

    @property
    def trees(self) -> list[TreeNode]:
        return list(self.tree) if isinstance(self.tree, list) else [self.tree]

    def to_dict(self) -> dict[str, object]:
        return {
            "n_matched": len(self.data),
            "dropped_na": list(self.dropped_na),
            "dropped_mismatch": list(self.dropped_mismatch),
        }


def match_data_tree(spec: ModelSpec, data: pd.DataFrame, tree: TreeInput) -> MatchResult:
    """Align a trait table and a tree (or ensemble) on a common, ordered taxon set.

    Only the model variables are checked for missing values; other columns keep
    theirs. Unmatched taxa are pruned from every tree with the same drop list
    and the returned rows follow the (first) tree's leaf order.
    """
    if isinstance(tree, list) and not tree:
        raise ValueError("Tree ensemble is empty.")
    if not data.index.is_unique:
        dupes = sorted(set(str(x) for x in data.index[data.index.duplicated()]))
        raise ValueError(f"Data index has duplicated taxa: {', '.join(dupes[:5])}")
    spec.check_columns(data)

    original = data.copy()
    original.index = original.index.map(str)
    complete = original.dropna(subset=list(spec.variables))
    dropped_na = tuple(t for t in original.index if t not in complete.index)
    if dropped_na:
        logger.warning(
            "NA's in response or predictor: %d rows with NA's were removed.", len(dropped_na)
        )

    trees = list(tree) if isinstance(tree, list) else [tree]
    tips = trees[0].leaf_names()
    taxa = list(complete.index)
    tip_set = set(tips)
    taxa_set = set(taxa)

    in_both = tip_set & taxa_set
    if not in_both:
        raise NoCommonTaxa("No tips are common to the dataset and phylogeny.")
    if len(in_both) < 2:
        raise NoCommonTaxa("Only one tip is common to the dataset and phylogeny.")

    mismatch = [t for t in tips if t not in taxa_set] + [t for t in taxa if t not in tip_set]
    if mismatch:
        logger.warning(
            "%d taxa did not match between phylogeny and data and were dropped.", len(mismatch)
        )

    pruned: list[TreeNode] = []
    for idx, member in enumerate(trees):
        member_drop = [t for t in member.leaf_names() if t not in in_both]
        pruned_member = drop_tips(member, member_drop) if member_drop else member.copy()
        if set(pruned_member.leaf_names()) != in_both:
            raise OrderingMismatch(
                f"Tree {idx} does not cover the matched taxa after pruning."
            )
        pruned.append(pruned_member)

    order = pruned[0].leaf_names()
    missing = [t for t in order if t not in complete.index]
    if missing:
        raise OrderingMismatch(
            "Problem sorting data: tip labels not found in data index: " + ", ".join(missing)
        )
    matched = original.loc[order]

    logger.info("Used dataset has %d species that match data and phylogeny.", len(matched))
    return MatchResult(
        data=matched,
        tree=pruned if isinstance(tree, list) else pruned[0],
        dropped_na=dropped_na,
        dropped_mismatch=tuple(mismatch),
    )
