from __future__ import annotations

from collections.abc import Sequence

import numpy as np


class PredictionValues:
    """Precomputed per-leaf statistics, addressed by (node, statistic type).

    ``values[node]`` is either empty, meaning the node carries no statistics
    (an internal node, or a leaf that ended up without samples), or holds one
    array per statistic type.
    """

    def __init__(
        self,
        values: Sequence[Sequence[np.ndarray]] | None = None,
        num_nodes: int = 0,
        num_types: int = 0,
    ) -> None:
        values = list(values or [])
        if len(values) > num_nodes:
            raise ValueError(f"Got values for {len(values)} nodes, expected at most {num_nodes}")

        table: list[tuple[np.ndarray, ...]] = []
        for node, node_values in enumerate(values):
            node_values = tuple(np.atleast_1d(np.asarray(v, dtype=np.float64)) for v in node_values)
            if node_values and len(node_values) != num_types:
                raise ValueError(
                    f"Node {node} has {len(node_values)} statistic types, expected {num_types}"
                )
            table.append(node_values)
        table.extend(() for _ in range(num_nodes - len(table)))

        self._values = table
        self._num_nodes = int(num_nodes)
        self._num_types = int(num_types)

    def get(self, node: int, statistic_type: int) -> np.ndarray:
        return self._values[node][statistic_type]

    def get_values(self, node: int) -> tuple[np.ndarray, ...]:
        return self._values[node]

    def get_all_values(self) -> list[tuple[np.ndarray, ...]]:
        return list(self._values)

    def empty(self, node: int) -> bool:
        if node < 0 or node >= self._num_nodes:
            return True
        return len(self._values[node]) == 0

    def get_num_nodes(self) -> int:
        return self._num_nodes

    def get_num_types(self) -> int:
        return self._num_types
