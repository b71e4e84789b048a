from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from .errors import PruneFailure


@dataclass
class TreeNode:
    name: str | None = None
    length: float = 0.0
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def leaf_names(self) -> list[str]:
        """Leaf labels in left-to-right (Newick) order."""
        names: list[str] = []

        def _walk(node: TreeNode) -> None:
            if node.is_leaf:
                if not node.name:
                    raise ValueError("All leaf nodes must have names.")
                names.append(node.name)
                return
            for child in node.children:
                _walk(child)

        _walk(self)
        return names

    @property
    def n_leaves(self) -> int:
        return len(self.leaf_names())

    def branch_lengths(self) -> list[float]:
        lengths: list[float] = []

        def _walk(node: TreeNode) -> None:
            for child in node.children:
                lengths.append(child.length)
                _walk(child)

        _walk(self)
        return lengths

    def copy(self) -> "TreeNode":
        return copy.deepcopy(self)


def _format_name(name: str) -> str:
    if any(ch in name for ch in " ,():;'[]"):
        return "'" + name.replace("'", "''") + "'"
    return name


def to_newick(tree: TreeNode) -> str:
    def _render(node: TreeNode, is_root: bool) -> str:
        text = ""
        if node.children:
            text = "(" + ",".join(_render(child, False) for child in node.children) + ")"
        if node.name:
            text += _format_name(node.name)
        if not is_root or node.length:
            text += f":{node.length:.10g}"
        return text

    return _render(tree, True) + ";"


def parse_newick(newick: str) -> TreeNode:
    text = newick.strip()
    if not text:
        raise ValueError("Newick string is empty.")
    if text.endswith(";"):
        text = text[:-1]
    if not text:
        raise ValueError("Newick string is invalid.")

    def _skip_ws(pos: int) -> int:
        while pos < len(text):
            if text[pos].isspace():
                pos += 1
            elif text[pos] == "[":
                # [&R] rooting tags and other bracket comments
                end = text.find("]", pos)
                if end < 0:
                    raise ValueError("Unterminated comment in Newick string.")
                pos = end + 1
            else:
                break
        return pos

    def _read_name(pos: int) -> tuple[str | None, int]:
        pos = _skip_ws(pos)
        if pos < len(text) and text[pos] == "'":
            pos += 1
            chars: list[str] = []
            while True:
                if pos >= len(text):
                    raise ValueError("Unterminated quoted label in Newick string.")
                if text[pos] == "'":
                    if pos + 1 < len(text) and text[pos + 1] == "'":
                        chars.append("'")
                        pos += 2
                        continue
                    pos += 1
                    break
                chars.append(text[pos])
                pos += 1
            return "".join(chars), pos
        start = pos
        while pos < len(text) and text[pos] not in ",():;[":
            pos += 1
        token = text[start:pos].strip()
        return (token if token else None), pos

    def _read_length(pos: int) -> tuple[float, int]:
        pos = _skip_ws(pos)
        if pos >= len(text) or text[pos] != ":":
            return 0.0, pos
        pos = _skip_ws(pos + 1)
        start = pos
        while pos < len(text) and text[pos] not in ",()[":
            pos += 1
        raw = text[start:pos].strip()
        if not raw:
            raise ValueError("Missing branch length after ':'.")
        try:
            value = float(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid branch length: {raw}") from exc
        if value < 0:
            raise ValueError("Branch lengths must be non-negative.")
        return value, _skip_ws(pos)

    def _parse_subtree(pos: int) -> tuple[TreeNode, int]:
        pos = _skip_ws(pos)
        if pos >= len(text):
            raise ValueError("Unexpected end of Newick string.")

        children: list[TreeNode] = []
        if text[pos] == "(":
            pos += 1
            while True:
                child, pos = _parse_subtree(pos)
                children.append(child)
                pos = _skip_ws(pos)
                if pos >= len(text):
                    raise ValueError("Unterminated internal node in Newick string.")
                if text[pos] == ",":
                    pos += 1
                    continue
                if text[pos] == ")":
                    pos += 1
                    break
                raise ValueError(f"Unexpected token '{text[pos]}' in Newick string.")

        name, pos = _read_name(pos)
        if not children and not name:
            raise ValueError("Leaf node is missing a name.")
        length, pos = _read_length(pos)
        return TreeNode(name=name, length=length, children=children), pos

    root, idx = _parse_subtree(0)
    idx = _skip_ws(idx)
    if idx != len(text):
        raise ValueError(f"Unexpected trailing content in Newick: {text[idx:]}")

    leaves = root.leaf_names()
    if len(set(leaves)) != len(leaves):
        raise ValueError("Leaf names in Newick tree must be unique.")
    return root


def drop_tips(tree: TreeNode, tips: Iterable[str]) -> TreeNode:
    """Return a pruned copy of ``tree`` without the named leaves.

    Internal nodes left with a single child are collapsed and their branch
    lengths summed, so the result keeps the patristic distances of the
    remaining leaves. Raises ``PruneFailure`` for unknown tips or when fewer
    than two leaves would remain.
    """
    drop = set(tips)
    leaves = tree.leaf_names()
    missing = sorted(drop.difference(leaves))
    if missing:
        raise PruneFailure(f"Taxa not in tree: {', '.join(missing)}")
    if len(leaves) - len(drop) < 2:
        raise PruneFailure(
            f"Pruning {len(drop)} of {len(leaves)} leaves would leave fewer than 2 tips."
        )
    if not drop:
        return tree.copy()

    def _prune(node: TreeNode) -> TreeNode | None:
        if node.is_leaf:
            if node.name in drop:
                return None
            return TreeNode(name=node.name, length=node.length)
        kept = [c for c in (_prune(child) for child in node.children) if c is not None]
        if not kept:
            return None
        if len(kept) == 1:
            only = kept[0]
            only.length += node.length
            return only
        return TreeNode(name=node.name, length=node.length, children=kept)

    pruned = _prune(tree)
    assert pruned is not None
    pruned.length = tree.length
    return pruned


def vcv_matrix(tree: TreeNode, order: list[str] | None = None) -> np.ndarray:
    """Brownian-motion covariance: shared root-to-MRCA path length per leaf pair."""
    leaves = tree.leaf_names()
    index = {name: i for i, name in enumerate(leaves)}
    n = len(leaves)
    cov = np.zeros((n, n), dtype=float)

    def _walk(node: TreeNode) -> list[int]:
        if node.is_leaf:
            below = [index[node.name]]  # type: ignore[index]
        else:
            below = []
            for child in node.children:
                below.extend(_walk(child))
        if node is not tree and node.length:
            idx = np.asarray(below)
            cov[np.ix_(idx, idx)] += node.length
        return below

    _walk(tree)
    if order is None:
        return cov
    try:
        perm = [index[name] for name in order]
    except KeyError as exc:
        raise ValueError(f"Taxon not in tree: {exc.args[0]}") from exc
    return cov[np.ix_(perm, perm)]
