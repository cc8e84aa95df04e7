from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import time

import numpy as np
from joblib import Parallel, delayed
from loguru import logger

from honestforest.data_structures.data import DefaultData
from honestforest.data_structures.forest import Forest
from honestforest.data_structures.observations import INSTRUMENT, OUTCOME, TREATMENT, Observations
from honestforest.data_structures.tree import Tree
from honestforest.prediction_strategy import (
    InstrumentalPredictionStrategy,
    OptimizedPredictionStrategy,
    RegressionPredictionStrategy,
)
from honestforest.relabeling import (
    InstrumentalRelabelingStrategy,
    NoopRelabelingStrategy,
    QuantileRelabelingStrategy,
    RelabelingStrategy,
)
from honestforest.sampling import RandomSampler
from honestforest.splitting import (
    ProbabilitySplittingRuleFactory,
    RegressionSplittingRuleFactory,
    SplittingRuleFactory,
)
from honestforest.tree_trainer import TreeOptions, TreeTrainer


@dataclass
class ForestOptions:
    tree_options: TreeOptions
    num_trees: int = 100
    ci_group_size: int = 2
    sample_fraction: float = 0.5
    num_threads: int | None = None
    random_state: int = 0

    def __post_init__(self) -> None:
        if self.num_trees <= 0:
            raise ValueError("num_trees must be positive")
        if self.ci_group_size < 1:
            raise ValueError("ci_group_size must be at least 1")
        if self.num_trees % self.ci_group_size != 0:
            raise ValueError("num_trees must be divisible by ci_group_size")
        if not (0.0 < self.sample_fraction <= 1.0):
            raise ValueError("sample_fraction must be in (0, 1]")
        if self.ci_group_size > 1 and self.sample_fraction > 0.5:
            raise ValueError("sample_fraction must be at most 0.5 when ci_group_size > 1")
        if self.random_state < 0:
            raise ValueError("random_state must be non-negative")


def _as_columns(columns: int | Sequence[int]) -> list[int]:
    if isinstance(columns, (int, np.integer)):
        return [int(columns)]
    return [int(c) for c in columns]


class ForestTrainer:
    """Grows a forest of honest trees, one CI group of trees per unit of parallel work.

    ``observables`` maps observation types (OUTCOME, TREATMENT, INSTRUMENT) to
    the data column(s) holding them. Those columns are extracted into the
    forest's ``Observations`` and are never split on.
    """

    def __init__(
        self,
        relabeling_strategy: RelabelingStrategy,
        splitting_rule_factory: SplittingRuleFactory,
        prediction_strategy: OptimizedPredictionStrategy | None,
        observables: Mapping[int, int | Sequence[int]],
    ) -> None:
        self.relabeling_strategy = relabeling_strategy
        self.splitting_rule_factory = splitting_rule_factory
        self.prediction_strategy = prediction_strategy
        self.observables = {int(t): _as_columns(c) for t, c in observables.items()}
        if sorted(self.observables) != list(range(len(self.observables))):
            raise ValueError("observables must cover consecutive observation types starting at OUTCOME")

        self.metrics: dict = {}

    def _observation_columns(self) -> list[int]:
        return sorted({c for columns in self.observables.values() for c in columns})

    def _create_observations(self, data: DefaultData) -> Observations:
        num_cols = data.get_num_cols()
        observations_by_type = []
        for observation_type in range(len(self.observables)):
            columns = self.observables[observation_type]
            if any(c < 0 or c >= num_cols for c in columns):
                raise ValueError(f"Observation columns {columns} are out of range for {num_cols} data columns")
            observations_by_type.append(np.column_stack([data.get_column(c) for c in columns]))
        return Observations(observations_by_type, data.get_num_rows())

    def _train_tree(
        self,
        tree_trainer: TreeTrainer,
        data: DefaultData,
        observations: Observations,
        sampler: RandomSampler,
        tree_samples: np.ndarray,
    ) -> Tree:
        tree = tree_trainer.train(data, observations, sampler, tree_samples)
        tree.set_oob_samples(np.setdiff1d(np.arange(data.get_num_rows(), dtype=np.int64), tree_samples))
        return tree

    def _train_ci_group(
        self,
        tree_trainer: TreeTrainer,
        data: DefaultData,
        observations: Observations,
        options: ForestOptions,
        group: int,
    ) -> list[Tree]:
        # The seed depends only on the forest seed and the group, never on scheduling.
        sampler = RandomSampler([options.random_state, group])
        samples = np.arange(data.get_num_rows(), dtype=np.int64)

        if options.ci_group_size == 1:
            tree_samples, _ = sampler.subsample(samples, options.sample_fraction)
            return [self._train_tree(tree_trainer, data, observations, sampler, tree_samples)]

        half_sample, _ = sampler.subsample(samples, 0.5)
        trees = []
        for _ in range(options.ci_group_size):
            tree_samples, _ = sampler.subsample(half_sample, 2.0 * options.sample_fraction)
            trees.append(self._train_tree(tree_trainer, data, observations, sampler, tree_samples))
        return trees

    def train(self, data: DefaultData, options: ForestOptions) -> Forest:
        observations = self._create_observations(data)
        tree_options = options.tree_options.with_no_split_variables(self._observation_columns())
        tree_trainer = TreeTrainer(
            self.relabeling_strategy,
            self.splitting_rule_factory,
            self.prediction_strategy,
            tree_options,
        )

        num_groups = options.num_trees // options.ci_group_size
        logger.info(
            "Training {} trees ({} groups of {}) on {} samples and {} columns",
            options.num_trees,
            num_groups,
            options.ci_group_size,
            data.get_num_rows(),
            data.get_num_cols(),
        )

        t0 = time.perf_counter()
        groups = Parallel(n_jobs=options.num_threads, backend="threading")(
            delayed(self._train_ci_group)(tree_trainer, data, observations, options, group)
            for group in range(num_groups)
        )
        train_time = time.perf_counter() - t0

        trees = [tree for group_trees in groups for tree in group_trees]
        forest = Forest(trees, observations, options.ci_group_size)

        num_leaves = [len(tree.get_leaf_nodes()) for tree in trees]
        self.metrics = {
            "num_trees": len(trees),
            "train_time_sec": train_time,
            "total_nodes": int(sum(tree.get_num_nodes() for tree in trees)),
            "mean_leaves_per_tree": float(np.mean(num_leaves)),
        }
        logger.info(
            "Trained {} trees in {:.3f}s, {:.1f} leaves per tree on average",
            len(trees),
            train_time,
            self.metrics["mean_leaves_per_tree"],
        )
        return forest


def regression_trainer(outcome_index: int | Sequence[int], alpha: float = 0.05) -> ForestTrainer:
    outcome_columns = _as_columns(outcome_index)
    return ForestTrainer(
        NoopRelabelingStrategy(),
        RegressionSplittingRuleFactory(alpha),
        RegressionPredictionStrategy(num_outcomes=len(outcome_columns)),
        {OUTCOME: outcome_columns},
    )


def instrumental_trainer(
    outcome_index: int,
    treatment_index: int,
    instrument_index: int,
    split_regularization: float = 0.0,
    alpha: float = 0.05,
) -> ForestTrainer:
    return ForestTrainer(
        InstrumentalRelabelingStrategy(split_regularization),
        RegressionSplittingRuleFactory(alpha),
        InstrumentalPredictionStrategy(),
        {OUTCOME: outcome_index, TREATMENT: treatment_index, INSTRUMENT: instrument_index},
    )


def causal_trainer(
    outcome_index: int,
    treatment_index: int,
    split_regularization: float = 0.0,
    alpha: float = 0.05,
) -> ForestTrainer:
    """Causal forests are instrumental forests where the treatment is its own instrument."""
    return instrumental_trainer(outcome_index, treatment_index, treatment_index, split_regularization, alpha)


def quantile_trainer(outcome_index: int, quantiles: Sequence[float], alpha: float = 0.05) -> ForestTrainer:
    relabeling_strategy = QuantileRelabelingStrategy(quantiles)
    return ForestTrainer(
        relabeling_strategy,
        ProbabilitySplittingRuleFactory(relabeling_strategy.num_classes, alpha),
        None,
        {OUTCOME: outcome_index},
    )
