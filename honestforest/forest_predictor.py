from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs
from loguru import logger

from honestforest.data_structures.data import DefaultData
from honestforest.data_structures.forest import Forest
from honestforest.data_structures.prediction import Prediction
from honestforest.prediction_collector import DefaultPredictionCollector, OptimizedPredictionCollector
from honestforest.prediction_strategy import (
    DefaultPredictionStrategy,
    InstrumentalPredictionStrategy,
    OptimizedPredictionStrategy,
    QuantilePredictionStrategy,
    RegressionPredictionStrategy,
)


class ForestPredictor:
    """Predicts new samples, or the training samples out-of-bag, with a trained forest."""

    def __init__(
        self,
        strategy: OptimizedPredictionStrategy | DefaultPredictionStrategy,
        num_threads: int | None = None,
    ) -> None:
        self.strategy = strategy
        self.num_threads = num_threads

    def _find_leaf_nodes(self, forest: Forest, data: DefaultData) -> list[np.ndarray]:
        return Parallel(n_jobs=self.num_threads, backend="threading")(
            delayed(tree.find_leaf_nodes)(data) for tree in forest.get_trees()
        )

    def _create_collector(self, forest: Forest, estimate_variance: bool):
        if isinstance(self.strategy, DefaultPredictionStrategy):
            if estimate_variance:
                raise ValueError("Variance estimates are not available for neighbour-weight predictions")
            return DefaultPredictionCollector(self.strategy)

        ci_group_size = forest.get_ci_group_size() if estimate_variance else 1
        if estimate_variance and ci_group_size < 2:
            raise ValueError("Variance estimates need a forest trained with ci_group_size >= 2")
        return OptimizedPredictionCollector(self.strategy, ci_group_size)

    def _collect(
        self,
        forest: Forest,
        data: DefaultData,
        trees_by_sample: np.ndarray | None,
        estimate_variance: bool,
    ) -> list[Prediction]:
        collector = self._create_collector(forest, estimate_variance)
        leaf_nodes_by_tree = self._find_leaf_nodes(forest, data)

        num_samples = data.get_num_rows()
        num_chunks = max(min(effective_n_jobs(self.num_threads), num_samples), 1)
        chunks = np.array_split(np.arange(num_samples, dtype=np.int64), num_chunks)

        results = Parallel(n_jobs=self.num_threads, backend="threading")(
            delayed(collector.collect_predictions)(forest, leaf_nodes_by_tree, trees_by_sample, chunk)
            for chunk in chunks
        )
        predictions = [prediction for chunk_predictions in results for prediction in chunk_predictions]

        num_missing = sum(1 for p in predictions if np.all(np.isnan(p.get_predictions())))
        if num_missing:
            logger.info("{} of {} samples reached no non-empty leaf", num_missing, num_samples)
        return predictions

    def predict(self, forest: Forest, data: DefaultData, estimate_variance: bool = False) -> list[Prediction]:
        return self._collect(forest, data, None, estimate_variance)

    def predict_oob(self, forest: Forest, data: DefaultData, estimate_variance: bool = False) -> list[Prediction]:
        """Predict each training sample using only the trees it was not drawn for."""
        num_samples = data.get_num_rows()
        if num_samples != forest.get_observations().get_num_samples():
            raise ValueError("Out-of-bag prediction requires the data the forest was trained on")

        trees_by_sample = np.zeros((num_samples, forest.num_trees), dtype=bool)
        for tree_index, tree in enumerate(forest.get_trees()):
            trees_by_sample[tree.get_oob_samples(), tree_index] = True

        return self._collect(forest, data, trees_by_sample, estimate_variance)


def regression_predictor(num_threads: int | None = None, num_outcomes: int = 1) -> ForestPredictor:
    return ForestPredictor(RegressionPredictionStrategy(num_outcomes), num_threads)


def instrumental_predictor(num_threads: int | None = None) -> ForestPredictor:
    return ForestPredictor(InstrumentalPredictionStrategy(), num_threads)


def quantile_predictor(quantiles: Sequence[float], num_threads: int | None = None) -> ForestPredictor:
    return ForestPredictor(QuantilePredictionStrategy(quantiles), num_threads)
