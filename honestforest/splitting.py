from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from honestforest.data_structures.data import DefaultData


@dataclass(frozen=True)
class SplitCandidate:
    var: int
    value: float
    gain: float


class SplittingRule(ABC):
    """Chooses the split of one node from its samples' pseudo-outcomes."""

    @abstractmethod
    def find_best_split(
        self,
        node: int,
        candidate_vars: np.ndarray,
        responses_by_sample: dict[int, np.ndarray],
        samples_by_node: list[np.ndarray],
        split_vars: list[int],
        split_values: list[float],
    ) -> bool:
        """Write the chosen split into ``split_vars[node]``/``split_values[node]``.

        Returns True when no acceptable split exists and the node is terminal.
        """


class SplittingRuleFactory(ABC):
    """Creates a fresh splitting rule for every tree, so no rule state is shared between trees."""

    @abstractmethod
    def create(self, data: DefaultData) -> SplittingRule:
        ...


class _ScoreSplittingRule(SplittingRule):
    """Exhaustive search maximising ``|S_L|^2 / n_L + |S_R|^2 / n_R - |S|^2 / n``.

    ``S`` are sums of the per-sample response vectors produced by
    ``_response_matrix``. A split is only accepted when both children keep at
    least ``max(ceil(alpha * n), 1)`` responding samples and the score is
    strictly positive.
    """

    def __init__(self, data: DefaultData, alpha: float) -> None:
        if not (0.0 <= alpha < 0.5):
            raise ValueError("alpha must be in [0, 0.5)")
        self.data = data
        self.alpha = alpha

    @abstractmethod
    def _response_matrix(self, responses: list[np.ndarray]) -> np.ndarray:
        ...

    def find_best_split(
        self,
        node: int,
        candidate_vars: np.ndarray,
        responses_by_sample: dict[int, np.ndarray],
        samples_by_node: list[np.ndarray],
        split_vars: list[int],
        split_values: list[float],
    ) -> bool:
        samples = np.array(
            [s for s in samples_by_node[node] if int(s) in responses_by_sample],
            dtype=np.int64,
        )
        if samples.size < 2:
            return True

        responses = self._response_matrix([responses_by_sample[int(s)] for s in samples])
        best = self._search(samples, responses, candidate_vars)
        if best is None:
            return True

        split_vars[node] = best.var
        split_values[node] = best.value
        return False

    def _search(self, samples: np.ndarray, responses: np.ndarray, candidate_vars: np.ndarray) -> SplitCandidate | None:
        n = samples.size
        min_child_size = max(int(np.ceil(self.alpha * n)), 1)

        total = responses.sum(axis=0)
        parent_score = float(total @ total) / n
        n_left = np.arange(1, n, dtype=np.float64)
        size_ok = (n_left >= min_child_size) & (n - n_left >= min_child_size)

        best: SplitCandidate | None = None
        for var in candidate_vars:
            values = self.data.get_column(int(var))[samples]
            order = np.argsort(values, kind="stable")
            sorted_values = values[order]

            # A split between positions i and i + 1 only exists if the values differ there.
            valid = size_ok & (sorted_values[:-1] < sorted_values[1:])
            if not np.any(valid):
                continue

            sum_left = np.cumsum(responses[order], axis=0)[:-1]
            sum_right = total - sum_left
            score = (
                np.einsum("ij,ij->i", sum_left, sum_left) / n_left
                + np.einsum("ij,ij->i", sum_right, sum_right) / (n - n_left)
                - parent_score
            )
            score[~valid] = -np.inf

            i = int(np.argmax(score))
            gain = float(score[i])
            if gain > 0.0 and (best is None or gain > best.gain):
                best = SplitCandidate(var=int(var), value=float(sorted_values[i]), gain=gain)

        return best


class RegressionSplittingRule(_ScoreSplittingRule):
    """Variance-reduction splits on real-valued (possibly vector) pseudo-outcomes."""

    def _response_matrix(self, responses: list[np.ndarray]) -> np.ndarray:
        return np.vstack([np.atleast_1d(r) for r in responses]).astype(np.float64)


class ProbabilitySplittingRule(_ScoreSplittingRule):
    """Gini-style splits on class-label pseudo-outcomes (quantile forests)."""

    def __init__(self, data: DefaultData, num_classes: int, alpha: float) -> None:
        super().__init__(data, alpha)
        if num_classes < 2:
            raise ValueError("num_classes must be at least 2")
        self.num_classes = num_classes

    def _response_matrix(self, responses: list[np.ndarray]) -> np.ndarray:
        labels = np.array([int(np.atleast_1d(r)[0]) for r in responses], dtype=np.int64)
        if np.any(labels < 0) or np.any(labels >= self.num_classes):
            raise ValueError(f"Class labels must be in [0, {self.num_classes})")
        return np.eye(self.num_classes, dtype=np.float64)[labels]


class RegressionSplittingRuleFactory(SplittingRuleFactory):
    def __init__(self, alpha: float = 0.05) -> None:
        self.alpha = alpha

    def create(self, data: DefaultData) -> SplittingRule:
        return RegressionSplittingRule(data, self.alpha)


class ProbabilitySplittingRuleFactory(SplittingRuleFactory):
    def __init__(self, num_classes: int, alpha: float = 0.05) -> None:
        self.num_classes = num_classes
        self.alpha = alpha

    def create(self, data: DefaultData) -> SplittingRule:
        return ProbabilitySplittingRule(data, self.num_classes, self.alpha)
