from __future__ import annotations

from collections.abc import Sequence

from honestforest.data_structures.observations import Observations
from honestforest.data_structures.tree import Tree


class Forest:
    """An ensemble of independently grown trees plus their training observations.

    ``ci_group_size`` is the number of consecutive trees grown from the same
    half-sample; it only affects variance estimation.
    """

    def __init__(self, trees: Sequence[Tree], observations: Observations, ci_group_size: int = 1) -> None:
        if ci_group_size < 1:
            raise ValueError("ci_group_size must be at least 1")
        self._trees = tuple(trees)
        self._observations = observations
        self._ci_group_size = int(ci_group_size)

    @property
    def num_trees(self) -> int:
        return len(self._trees)

    def get_trees(self) -> tuple[Tree, ...]:
        return self._trees

    def get_observations(self) -> Observations:
        return self._observations

    def get_ci_group_size(self) -> int:
        return self._ci_group_size

    @classmethod
    def merge(cls, forests: Sequence[Forest]) -> Forest:
        """Concatenate forests trained on the same observations with the same grouping."""
        if not forests:
            raise ValueError("At least one forest is required to merge")

        first = forests[0]
        trees: list[Tree] = []
        for forest in forests:
            if forest.get_ci_group_size() != first.get_ci_group_size():
                raise ValueError("All forests must share the same ci_group_size to be merged")
            if forest.get_observations() is not first.get_observations():
                raise ValueError("All forests must share the same training observations to be merged")
            trees.extend(forest.get_trees())

        return cls(trees, first.get_observations(), first.get_ci_group_size())
