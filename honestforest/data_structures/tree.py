from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from honestforest.data_structures.data import DefaultData
from honestforest.data_structures.prediction_values import PredictionValues

TERMINAL_SPLIT_VALUE = -1.0


def _as_index_array(samples) -> np.ndarray:
    return np.asarray(samples, dtype=np.int64).reshape(-1)


class Tree:
    """A trained tree stored as node-indexed arrays.

    Node 0 is the root. ``child_nodes[0][n]`` / ``child_nodes[1][n]`` hold the
    left/right child of node ``n`` (0 meaning no child), and a sample goes left
    when ``value <= split_values[n]``. Leaf sample lists are only populated for
    leaves; terminal nodes carry ``split_values[n] == -1``.
    """

    def __init__(
        self,
        root_node: int,
        child_nodes: Sequence[Sequence[int]],
        leaf_samples: Sequence[Sequence[int]],
        split_vars: Sequence[int],
        split_values: Sequence[float],
        oob_samples: Sequence[int] = (),
        prediction_values: PredictionValues | None = None,
    ) -> None:
        if len(child_nodes) != 2:
            raise ValueError("child_nodes must hold exactly two child index lists")

        self.root_node = int(root_node)
        self.child_nodes = [[int(c) for c in child_nodes[0]], [int(c) for c in child_nodes[1]]]
        self.leaf_samples = [_as_index_array(s) for s in leaf_samples]
        self.split_vars = [int(v) for v in split_vars]
        self.split_values = [float(v) for v in split_values]
        self.oob_samples = _as_index_array(oob_samples)
        self.prediction_values = prediction_values if prediction_values is not None else PredictionValues()

    def get_root_node(self) -> int:
        return self.root_node

    def get_child_nodes(self) -> list[list[int]]:
        return self.child_nodes

    def get_leaf_samples(self) -> list[np.ndarray]:
        return self.leaf_samples

    def get_split_vars(self) -> list[int]:
        return self.split_vars

    def get_split_values(self) -> list[float]:
        return self.split_values

    def get_oob_samples(self) -> np.ndarray:
        return self.oob_samples

    def get_prediction_values(self) -> PredictionValues:
        return self.prediction_values

    def get_num_nodes(self) -> int:
        return len(self.leaf_samples)

    def set_leaf_samples(self, leaf_samples: Sequence[Sequence[int]]) -> None:
        self.leaf_samples = [_as_index_array(s) for s in leaf_samples]

    def set_oob_samples(self, oob_samples: Sequence[int]) -> None:
        self.oob_samples = _as_index_array(oob_samples)

    def set_prediction_values(self, prediction_values: PredictionValues) -> None:
        self.prediction_values = prediction_values

    def is_leaf(self, node: int) -> bool:
        return self.child_nodes[0][node] == 0 and self.child_nodes[1][node] == 0

    def is_empty_leaf(self, node: int) -> bool:
        return self.is_leaf(node) and self.leaf_samples[node].size == 0

    def get_leaf_nodes(self) -> list[int]:
        """Indices of the leaves reachable from the root, in traversal order."""
        leaves: list[int] = []
        stack = [self.root_node]
        while stack:
            node = stack.pop()
            if self.is_leaf(node):
                leaves.append(node)
                continue
            stack.append(self.child_nodes[1][node])
            stack.append(self.child_nodes[0][node])
        return leaves

    def find_leaf_nodes(self, data: DefaultData, samples: Sequence[int] | None = None) -> np.ndarray:
        """Replay the split rules from the root for each requested row.

        Returns an array with one entry per row of ``data``: the leaf the row
        lands in, or -1 for rows that were not requested.
        """
        num_rows = data.get_num_rows()
        leaf_nodes = np.full(num_rows, -1, dtype=np.int64)
        samples = np.arange(num_rows, dtype=np.int64) if samples is None else _as_index_array(samples)

        stack = [(self.root_node, samples)]
        while stack:
            node, node_samples = stack.pop()
            if node_samples.size == 0:
                continue
            if self.is_leaf(node):
                leaf_nodes[node_samples] = node
                continue

            values = data.get_column(self.split_vars[node])[node_samples]
            go_left = values <= self.split_values[node]
            stack.append((self.child_nodes[1][node], node_samples[~go_left]))
            stack.append((self.child_nodes[0][node], node_samples[go_left]))

        return leaf_nodes

    def prune_empty_leaves(self) -> None:
        """Collapse internal nodes that have an empty leaf as a child.

        Nodes are visited from the highest index down, so children are settled
        before their parents. A surviving sibling is promoted into the parent's
        slot; node indices are never renumbered.
        """
        for node in range(self.get_num_nodes() - 1, -1, -1):
            if self.is_leaf(node):
                continue
            left_child = self.child_nodes[0][node]
            right_child = self.child_nodes[1][node]
            left_empty = self.is_empty_leaf(left_child)
            right_empty = self.is_empty_leaf(right_child)
            if not (left_empty or right_empty):
                continue

            if not left_empty:
                self._replace(node, left_child)
            elif not right_empty:
                self._replace(node, right_child)
            else:
                self.child_nodes[0][node] = 0
                self.child_nodes[1][node] = 0
                self.split_values[node] = TERMINAL_SPLIT_VALUE

    def _replace(self, node: int, replacement: int) -> None:
        self.child_nodes[0][node] = self.child_nodes[0][replacement]
        self.child_nodes[1][node] = self.child_nodes[1][replacement]
        self.leaf_samples[node] = self.leaf_samples[replacement]
        self.split_vars[node] = self.split_vars[replacement]
        self.split_values[node] = self.split_values[replacement]

        self.child_nodes[0][replacement] = 0
        self.child_nodes[1][replacement] = 0
        self.leaf_samples[replacement] = np.empty(0, dtype=np.int64)
