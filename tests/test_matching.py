import numpy as np
import pandas as pd
import pytest

from phylosensi.errors import NoCommonTaxa, OrderingMismatch
from phylosensi.formula import ModelSpec
from phylosensi.matching import match_data_tree
from phylosensi.phylo import parse_newick


def _frame(taxa: list[str]) -> pd.DataFrame:
    n = len(taxa)
    return pd.DataFrame(
        {"y": np.arange(n, dtype=float), "x": np.linspace(0, 1, n), "note": [None] * n},
        index=pd.Index(taxa, name="species"),
    )


def test_match_orders_rows_by_tree_and_drops_mismatch(make_tree) -> None:
    tree = make_tree(["a", "b", "c", "d", "e"])
    data = _frame(["e", "d", "z", "b", "a"])
    result = match_data_tree(ModelSpec.parse("y ~ x"), data, tree)
    assert result.taxa == ("a", "b", "d", "e")
    assert result.tree.leaf_names() == ["a", "b", "d", "e"]
    assert set(result.dropped_mismatch) == {"c", "z"}
    # non-model columns keep their NAs
    assert result.data["note"].isna().all()
    assert result.to_dict()["n_matched"] == 4


def test_match_drops_rows_with_missing_model_values(make_tree) -> None:
    tree = make_tree(["a", "b", "c", "d"])
    data = _frame(["a", "b", "c", "d"])
    data.loc["c", "x"] = np.nan
    result = match_data_tree(ModelSpec.parse("y ~ x"), data, tree)
    assert result.dropped_na == ("c",)
    assert "c" not in result.tree.leaf_names()


def test_match_without_common_taxa(make_tree) -> None:
    tree = make_tree(["a", "b", "c"])
    with pytest.raises(NoCommonTaxa):
        match_data_tree(ModelSpec.parse("y ~ x"), _frame(["p", "q"]), tree)
    with pytest.raises(NoCommonTaxa):
        match_data_tree(ModelSpec.parse("y ~ x"), _frame(["a", "q"]), tree)


def test_match_prunes_every_ensemble_member(make_tree) -> None:
    first = make_tree(["a", "b", "c", "d", "e"])
    second = parse_newick("((e:1,d:1):1,((c:0.5,b:0.5):0.5,a:1):1);")
    result = match_data_tree(ModelSpec.parse("y ~ x"), _frame(["a", "b", "d", "e"]), [first, second])
    assert len(result.trees) == 2
    assert all(set(t.leaf_names()) == {"a", "b", "d", "e"} for t in result.trees)
    assert result.taxa == tuple(result.trees[0].leaf_names())


def test_ensemble_member_missing_a_taxon(make_tree) -> None:
    first = make_tree(["a", "b", "c", "d"])
    second = make_tree(["a", "b", "c"])
    with pytest.raises(OrderingMismatch):
        match_data_tree(ModelSpec.parse("y ~ x"), _frame(["a", "b", "c", "d"]), [first, second])


def test_match_is_idempotent(make_tree) -> None:
    spec = ModelSpec.parse("y ~ x")
    first = match_data_tree(spec, _frame(["d", "a", "c", "q"]), make_tree(["a", "b", "c", "d"]))
    second = match_data_tree(spec, first.data, first.tree)
    assert second.taxa == first.taxa
    assert second.dropped_na == () and second.dropped_mismatch == ()
    assert second.tree.leaf_names() == first.tree.leaf_names()
