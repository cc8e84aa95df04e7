from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from loguru import logger

from honestforest.data_structures.forest import Forest
from honestforest.data_structures.prediction import Prediction
from honestforest.data_structures.prediction_values import PredictionValues
from honestforest.exceptions import InsufficientGroupsError, PredictionLengthMismatchError
from honestforest.prediction_strategy import DefaultPredictionStrategy, OptimizedPredictionStrategy


class OptimizedPredictionCollector:
    """Averages the precomputed leaf statistics of every tree a test sample reaches.

    With ``ci_group_size > 1`` the per-tree statistics are also kept so the
    strategy can estimate the variance of the averaged prediction.
    """

    def __init__(self, strategy: OptimizedPredictionStrategy, ci_group_size: int = 1) -> None:
        if ci_group_size < 1:
            raise ValueError("ci_group_size must be at least 1")
        self.strategy = strategy
        self.ci_group_size = ci_group_size

    def collect_predictions(
        self,
        forest: Forest,
        leaf_nodes_by_tree: Sequence[np.ndarray],
        trees_by_sample: np.ndarray | None = None,
        samples: Sequence[int] | np.ndarray | None = None,
    ) -> list[Prediction]:
        """Build one prediction per test sample.

        Args:
            forest: The trained forest.
            leaf_nodes_by_tree: For every tree, the leaf each test sample falls in.
            trees_by_sample: Optional boolean ``(num_samples, num_trees)`` mask;
                trees masked out for a sample are skipped (out-of-bag prediction).
            samples: Test samples to predict; all of them when omitted.
        """
        trees = forest.get_trees()
        num_trees = len(trees)
        if len(leaf_nodes_by_tree) != num_trees:
            raise ValueError(f"Expected leaf nodes for {num_trees} trees, got {len(leaf_nodes_by_tree)}")

        if samples is None:
            num_samples = len(leaf_nodes_by_tree[0]) if num_trees > 0 else 0
            samples = range(num_samples)

        predictions = []
        for sample in samples:
            predictions.append(self._collect_sample(int(sample), trees, leaf_nodes_by_tree, trees_by_sample))
        return predictions

    def _collect_sample(
        self,
        sample: int,
        trees,
        leaf_nodes_by_tree: Sequence[np.ndarray],
        trees_by_sample: np.ndarray | None,
    ) -> Prediction:
        num_trees = len(trees)
        average_value: list[np.ndarray] = []
        leaf_values: list[tuple[np.ndarray, ...]] = [() for _ in range(num_trees)] if self.ci_group_size > 1 else []

        num_leaves = 0
        for tree_index, tree in enumerate(trees):
            if trees_by_sample is not None and not trees_by_sample[sample][tree_index]:
                continue

            node = int(leaf_nodes_by_tree[tree_index][sample])
            prediction_values = tree.get_prediction_values()
            if prediction_values.empty(node):
                continue

            num_leaves += 1
            self._add_prediction_values(node, prediction_values, average_value)
            if self.ci_group_size > 1:
                leaf_values[tree_index] = prediction_values.get_values(node)

        # Only possible with honesty, where every leaf this sample reaches may be empty.
        if num_leaves == 0:
            logger.debug("Sample {} did not reach any non-empty leaf", sample)
            return Prediction(np.full(self.strategy.prediction_length(), np.nan))

        average_value = [value / num_leaves for value in average_value]
        point_prediction = self.strategy.predict(average_value)

        variance_estimate = None
        if self.ci_group_size > 1:
            tree_values = PredictionValues(leaf_values, num_trees, self.strategy.prediction_value_length())
            try:
                variance_estimate = self.strategy.compute_variance(average_value, tree_values, self.ci_group_size)
            except InsufficientGroupsError as e:
                logger.warning("No variance estimate for sample {}: {}", sample, e)
                variance_estimate = np.full(np.size(point_prediction), np.nan)

        prediction = Prediction(point_prediction, variance_estimate)
        self._validate_prediction(sample, prediction)
        return prediction

    @staticmethod
    def _add_prediction_values(
        node: int,
        prediction_values: PredictionValues,
        combined_average: list[np.ndarray],
    ) -> None:
        if not combined_average:
            combined_average.extend(
                np.zeros_like(prediction_values.get(node, t)) for t in range(prediction_values.get_num_types())
            )
        for t in range(prediction_values.get_num_types()):
            combined_average[t] = combined_average[t] + prediction_values.get(node, t)

    def _validate_prediction(self, sample: int, prediction: Prediction) -> None:
        prediction_length = self.strategy.prediction_length()
        if prediction.size() != prediction_length:
            raise PredictionLengthMismatchError(sample=sample, expected=prediction_length, actual=prediction.size())


class DefaultPredictionCollector:
    """Builds forest neighbour weights for each test sample and hands them to the strategy.

    Every tree a test sample reaches contributes ``1 / leaf size`` to the
    training samples of that leaf; the sums are divided by the number of
    contributing trees. No variance estimates are produced.
    """

    def __init__(self, strategy: DefaultPredictionStrategy) -> None:
        self.strategy = strategy

    def collect_predictions(
        self,
        forest: Forest,
        leaf_nodes_by_tree: Sequence[np.ndarray],
        trees_by_sample: np.ndarray | None = None,
        samples: Sequence[int] | np.ndarray | None = None,
    ) -> list[Prediction]:
        trees = forest.get_trees()
        num_trees = len(trees)
        if len(leaf_nodes_by_tree) != num_trees:
            raise ValueError(f"Expected leaf nodes for {num_trees} trees, got {len(leaf_nodes_by_tree)}")

        if samples is None:
            num_samples = len(leaf_nodes_by_tree[0]) if num_trees > 0 else 0
            samples = range(num_samples)

        observations = forest.get_observations()
        predictions = []
        for sample in samples:
            sample = int(sample)
            weights = np.zeros(observations.get_num_samples(), dtype=np.float64)
            num_trees_used = 0
            for tree_index, tree in enumerate(trees):
                if trees_by_sample is not None and not trees_by_sample[sample][tree_index]:
                    continue
                leaf_samples = tree.get_leaf_samples()[int(leaf_nodes_by_tree[tree_index][sample])]
                if leaf_samples.size == 0:
                    continue
                num_trees_used += 1
                np.add.at(weights, leaf_samples, 1.0 / leaf_samples.size)

            if num_trees_used == 0:
                logger.debug("Sample {} did not reach any non-empty leaf", sample)
                predictions.append(Prediction(np.full(self.strategy.prediction_length(), np.nan)))
                continue

            prediction = Prediction(self.strategy.predict(weights / num_trees_used, observations))
            prediction_length = self.strategy.prediction_length()
            if prediction.size() != prediction_length:
                raise PredictionLengthMismatchError(sample=sample, expected=prediction_length, actual=prediction.size())
            predictions.append(prediction)
        return predictions
