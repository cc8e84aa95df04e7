from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace

import numpy as np
from loguru import logger

from honestforest.data_structures.data import DefaultData
from honestforest.data_structures.observations import OUTCOME, Observations
from honestforest.data_structures.tree import TERMINAL_SPLIT_VALUE, Tree
from honestforest.prediction_strategy import OptimizedPredictionStrategy
from honestforest.relabeling import RelabelingStrategy
from honestforest.sampling import RandomSampler
from honestforest.splitting import SplittingRule, SplittingRuleFactory


@dataclass(frozen=True)
class TreeOptions:
    mtry: int
    min_node_size: int = 5
    honesty: bool = True
    deterministic_vars: tuple[int, ...] = ()
    no_split_variables: tuple[int, ...] = ()
    split_select_vars: tuple[int, ...] = ()
    split_select_weights: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        for name in ("deterministic_vars", "no_split_variables", "split_select_vars"):
            values = tuple(int(v) for v in getattr(self, name))
            if any(v < 0 for v in values):
                raise ValueError(f"{name} must hold non-negative column indices")
            object.__setattr__(self, name, values)
        object.__setattr__(self, "split_select_weights", tuple(float(w) for w in self.split_select_weights))

        if self.mtry <= 0:
            raise ValueError("mtry must be positive")
        if self.min_node_size < 0:
            raise ValueError("min_node_size must be >= 0")
        if len(self.split_select_vars) != len(self.split_select_weights):
            raise ValueError("split_select_vars and split_select_weights must have the same length")
        if any(not np.isfinite(w) or w < 0 for w in self.split_select_weights):
            raise ValueError("split_select_weights must be finite and non-negative")
        if set(self.deterministic_vars) & set(self.no_split_variables):
            raise ValueError("A variable cannot be both deterministic and excluded from splitting")

    def with_no_split_variables(self, variables: Sequence[int]) -> TreeOptions:
        merged = tuple(sorted(set(self.no_split_variables) | {int(v) for v in variables}))
        return replace(self, no_split_variables=merged)


@dataclass
class TreeTrainingMetrics:
    nodes_visited: int = 0
    nodes_split: int = 0
    terminal_min_node_size: int = 0
    terminal_pure: int = 0
    terminal_no_relabeling: int = 0
    terminal_no_split: int = 0
    empty_honest_leaves: int = 0


class TreeTrainer:
    """Grows one tree: recursive splitting, honest leaf repopulation and leaf summaries.

    The relabeling strategy, splitting rule factory and prediction strategy are
    shared read-only by every tree of a forest; all per-tree randomness comes
    from the ``RandomSampler`` passed to ``train``.
    """

    def __init__(
        self,
        relabeling_strategy: RelabelingStrategy,
        splitting_rule_factory: SplittingRuleFactory,
        prediction_strategy: OptimizedPredictionStrategy | None,
        options: TreeOptions,
    ) -> None:
        self.relabeling_strategy = relabeling_strategy
        self.splitting_rule_factory = splitting_rule_factory
        self.prediction_strategy = prediction_strategy
        self.options = options

    @staticmethod
    def _create_empty_node(
        child_nodes: list[list[int]],
        nodes: list[np.ndarray],
        split_vars: list[int],
        split_values: list[float],
    ) -> None:
        child_nodes[0].append(0)
        child_nodes[1].append(0)
        nodes.append(np.empty(0, dtype=np.int64))
        split_vars.append(0)
        split_values.append(0.0)

    def _create_split_variable_subset(self, sampler: RandomSampler, data: DefaultData) -> np.ndarray:
        result = list(self.options.deterministic_vars)

        # Randomise the number of split candidates per node around mtry.
        num_cols = data.get_num_cols()
        num_independent_variables = num_cols - len(set(self.options.no_split_variables))
        mtry_sample = sampler.sample_poisson(self.options.mtry)
        split_mtry = max(min(mtry_sample, num_independent_variables), 1)

        num_draws = split_mtry - len(result)
        if num_draws <= 0:
            return np.asarray(result, dtype=np.int64)

        if not self.options.split_select_weights:
            skip = set(self.options.no_split_variables) | set(result)
            drawn = sampler.draw_without_replacement_skip(num_cols, sorted(skip), num_draws)
        else:
            excluded = set(self.options.no_split_variables) | set(result)
            pairs = [
                (var, weight)
                for var, weight in zip(self.options.split_select_vars, self.options.split_select_weights)
                if var not in excluded and var < num_cols
            ]
            candidates = np.array([var for var, _ in pairs], dtype=np.int64)
            weights = np.array([weight for _, weight in pairs], dtype=np.float64)
            # Draw as many weighted variables as there are, even if fewer than requested.
            available = int(np.count_nonzero(weights > 0))
            drawn = sampler.draw_without_replacement_weighted(candidates, min(num_draws, available), weights)

        return np.concatenate([np.asarray(result, dtype=np.int64), drawn])

    def _split_node_internal(
        self,
        node: int,
        splitting_rule: SplittingRule,
        observations: Observations,
        possible_split_vars: np.ndarray,
        nodes: list[np.ndarray],
        split_vars: list[int],
        split_values: list[float],
        metrics: TreeTrainingMetrics,
    ) -> bool:
        node_samples = nodes[node]
        if node_samples.size == 0 or node_samples.size <= self.options.min_node_size:
            split_values[node] = TERMINAL_SPLIT_VALUE
            metrics.terminal_min_node_size += 1
            return True

        outcomes = observations.get_matrix(OUTCOME)[node_samples]
        if np.all(outcomes == outcomes[0]):
            split_values[node] = TERMINAL_SPLIT_VALUE
            metrics.terminal_pure += 1
            return True

        responses_by_sample = self.relabeling_strategy.relabel(node_samples, observations)
        if not responses_by_sample:
            split_values[node] = TERMINAL_SPLIT_VALUE
            metrics.terminal_no_relabeling += 1
            return True

        stop = splitting_rule.find_best_split(
            node,
            possible_split_vars,
            responses_by_sample,
            nodes,
            split_vars,
            split_values,
        )
        if stop:
            split_values[node] = TERMINAL_SPLIT_VALUE
            metrics.terminal_no_split += 1
            return True

        return False

    def _split_node(
        self,
        node: int,
        splitting_rule: SplittingRule,
        sampler: RandomSampler,
        data: DefaultData,
        observations: Observations,
        child_nodes: list[list[int]],
        nodes: list[np.ndarray],
        split_vars: list[int],
        split_values: list[float],
        metrics: TreeTrainingMetrics,
    ) -> bool:
        possible_split_vars = self._create_split_variable_subset(sampler, data)

        stop = self._split_node_internal(
            node,
            splitting_rule,
            observations,
            possible_split_vars,
            nodes,
            split_vars,
            split_values,
            metrics,
        )
        if stop:
            return True

        split_var = split_vars[node]
        split_value = split_values[node]

        left_child_node = len(nodes)
        child_nodes[0][node] = left_child_node
        self._create_empty_node(child_nodes, nodes, split_vars, split_values)

        right_child_node = len(nodes)
        child_nodes[1][node] = right_child_node
        self._create_empty_node(child_nodes, nodes, split_vars, split_values)

        # Left is <= split value, right is > split value; prediction replays this exact rule.
        node_samples = nodes[node]
        go_left = data.get_column(split_var)[node_samples] <= split_value
        nodes[left_child_node] = node_samples[go_left]
        nodes[right_child_node] = node_samples[~go_left]

        metrics.nodes_split += 1
        return False

    def _repopulate_leaf_nodes(
        self,
        tree: Tree,
        data: DefaultData,
        leaf_samples: np.ndarray,
        metrics: TreeTrainingMetrics,
    ) -> None:
        num_nodes = tree.get_num_nodes()
        leaf_nodes = tree.find_leaf_nodes(data, leaf_samples)
        assigned = leaf_nodes[leaf_samples]

        new_leaf_nodes = [np.empty(0, dtype=np.int64) for _ in range(num_nodes)]
        for leaf in np.unique(assigned):
            new_leaf_nodes[int(leaf)] = leaf_samples[assigned == leaf]

        empty_before = sum(1 for leaf in tree.get_leaf_nodes() if new_leaf_nodes[leaf].size == 0)
        tree.set_leaf_samples(new_leaf_nodes)
        tree.prune_empty_leaves()
        metrics.empty_honest_leaves += empty_before

    def train(
        self,
        data: DefaultData,
        observations: Observations,
        sampler: RandomSampler,
        samples: np.ndarray,
    ) -> Tree:
        if data.get_num_cols() - len(set(self.options.no_split_variables)) <= 0:
            raise ValueError("There are no variables left to split on")

        samples = np.asarray(samples, dtype=np.int64)
        metrics = TreeTrainingMetrics()

        child_nodes: list[list[int]] = [[], []]
        nodes: list[np.ndarray] = []
        split_vars: list[int] = []
        split_values: list[float] = []
        self._create_empty_node(child_nodes, nodes, split_vars, split_values)

        new_leaf_samples = np.empty(0, dtype=np.int64)
        if self.options.honesty:
            nodes[0], new_leaf_samples = sampler.subsample(samples, 0.5)
        else:
            nodes[0] = samples.copy()

        splitting_rule = self.splitting_rule_factory.create(data)

        num_open_nodes = 1
        i = 0
        while num_open_nodes > 0:
            metrics.nodes_visited += 1
            is_leaf_node = self._split_node(
                i,
                splitting_rule,
                sampler,
                data,
                observations,
                child_nodes,
                nodes,
                split_vars,
                split_values,
                metrics,
            )
            if is_leaf_node:
                num_open_nodes -= 1
            else:
                nodes[i] = np.empty(0, dtype=np.int64)
                num_open_nodes += 1
            i += 1

        tree = Tree(0, child_nodes, nodes, split_vars, split_values)

        if new_leaf_samples.size > 0:
            self._repopulate_leaf_nodes(tree, data, new_leaf_samples, metrics)

        if self.prediction_strategy is not None:
            tree.set_prediction_values(
                self.prediction_strategy.precompute_prediction_values(tree.get_leaf_samples(), observations)
            )

        logger.debug(
            "Grew tree with {} nodes ({} split, {} pure, {} below min size, {} empty after honesty)",
            tree.get_num_nodes(),
            metrics.nodes_split,
            metrics.terminal_pure,
            metrics.terminal_min_node_size,
            metrics.empty_honest_leaves,
        )
        return tree
