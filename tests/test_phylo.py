import numpy as np
import pytest

from phylosensi.errors import PruneFailure
from phylosensi.phylo import drop_tips, parse_newick, to_newick, vcv_matrix


def test_parse_newick_tree() -> None:
    tree = parse_newick("((A:0.1,B:0.2):0.3,C:0.4);")
    assert tree.leaf_names() == ["A", "B", "C"]
    assert all(length >= 0 for length in tree.branch_lengths())


def test_parse_newick_quoted_labels_and_comments() -> None:
    tree = parse_newick("[&R] (('Homo sapiens':1,'O''Brien':1):1,C:2);")
    assert tree.leaf_names() == ["Homo sapiens", "O'Brien", "C"]
    again = parse_newick(to_newick(tree))
    assert again.leaf_names() == tree.leaf_names()


def test_parse_newick_rejects_duplicates_and_garbage() -> None:
    with pytest.raises(ValueError):
        parse_newick("(A:1,A:1);")
    with pytest.raises(ValueError):
        parse_newick("(A:1,B:1")
    with pytest.raises(ValueError):
        parse_newick("(A:-1,B:1);")


def test_drop_tips_collapses_unary_nodes() -> None:
    tree = parse_newick("((A:0.1,B:0.2):0.3,C:0.4);")
    pruned = drop_tips(tree, ["B"])
    assert pruned.leaf_names() == ["A", "C"]
    assert sorted(pruned.branch_lengths()) == pytest.approx([0.4, 0.4])
    # original untouched
    assert tree.leaf_names() == ["A", "B", "C"]


def test_drop_tips_failures() -> None:
    tree = parse_newick("((A:1,B:1):1,C:2);")
    with pytest.raises(PruneFailure):
        drop_tips(tree, ["Z"])
    with pytest.raises(PruneFailure):
        drop_tips(tree, ["A", "B"])


def test_vcv_matrix_shared_path_lengths() -> None:
    tree = parse_newick("((A:1,B:1):1,C:2);")
    cov = vcv_matrix(tree)
    expected = np.array([[2.0, 1.0, 0.0], [1.0, 2.0, 0.0], [0.0, 0.0, 2.0]])
    assert np.allclose(cov, expected)
    reordered = vcv_matrix(tree, order=["C", "A", "B"])
    assert reordered[0, 0] == pytest.approx(2.0)
    assert reordered[1, 2] == pytest.approx(1.0)
    assert reordered[0, 1] == pytest.approx(0.0)


def test_vcv_matrix_preserved_by_pruning(make_tree) -> None:
    names = [f"t{i}" for i in range(8)]
    tree = make_tree(names)
    keep = [n for n in names if n not in {"t2", "t5"}]
    full = vcv_matrix(tree, order=keep)
    pruned = vcv_matrix(drop_tips(tree, ["t2", "t5"]), order=keep)
    assert np.allclose(full, pruned)
