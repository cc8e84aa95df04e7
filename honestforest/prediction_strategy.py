from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np
from loguru import logger

from honestforest.bayes_debiaser import BayesDebiaser
from honestforest.data_structures.observations import INSTRUMENT, OUTCOME, TREATMENT, Observations
from honestforest.data_structures.prediction_values import PredictionValues
from honestforest.exceptions import InsufficientGroupsError


class OptimizedPredictionStrategy(ABC):
    """Defines how per-leaf summaries precomputed at training time become predictions.

    During training each tree stores, for every non-empty leaf, a fixed set of
    summary statistics (``prediction_value_length()`` types). At prediction time
    those statistics are averaged over every leaf a test sample lands in, and
    the strategy maps the averages to a point estimate, and, when trees were
    grown in CI groups, to a variance estimate.
    """

    @abstractmethod
    def prediction_length(self) -> int:
        """Number of entries in a point estimate."""

    @abstractmethod
    def prediction_value_length(self) -> int:
        """Number of statistic types precomputed per leaf."""

    @abstractmethod
    def precompute_prediction_values(
        self,
        leaf_samples: Sequence[np.ndarray],
        observations: Observations,
    ) -> PredictionValues:
        ...

    @abstractmethod
    def predict(self, average_prediction_values: Sequence[np.ndarray]) -> np.ndarray:
        ...

    @abstractmethod
    def compute_variance(
        self,
        average_prediction_values: Sequence[np.ndarray],
        leaf_prediction_values: PredictionValues,
        ci_group_size: int,
    ) -> np.ndarray:
        """Variance of the point estimate.

        ``leaf_prediction_values`` has one node per tree of the forest; trees
        that did not contribute for this sample (out-of-bag or empty leaf) are
        empty.
        """


def grouped_jackknife_variance(
    psi_by_tree: Sequence[np.ndarray | None],
    ci_group_size: int,
    debiaser: BayesDebiaser,
) -> np.ndarray:
    """Half-sample grouped jackknife over per-tree deviations ``psi``.

    Trees ``[g * ci_group_size, (g + 1) * ci_group_size)`` form group ``g``; a
    group is used only if every one of its trees has a value. The between-group
    variance is inflated by within-group noise, which ``debiaser`` removes
    without going negative.
    """
    if ci_group_size < 2:
        raise ValueError("Variance estimates require ci_group_size >= 2")

    num_groups = len(psi_by_tree) // ci_group_size
    num_good_groups = 0
    psi_squared = 0.0
    psi_grouped_squared = 0.0

    for group in range(num_groups):
        group_psi = psi_by_tree[group * ci_group_size : (group + 1) * ci_group_size]
        if any(psi is None for psi in group_psi):
            continue

        num_good_groups += 1
        stacked = np.vstack([np.atleast_1d(psi) for psi in group_psi])
        psi_squared = psi_squared + np.sum(stacked * stacked, axis=0)
        group_mean = stacked.mean(axis=0)
        psi_grouped_squared = psi_grouped_squared + group_mean * group_mean

    if num_good_groups == 0:
        raise InsufficientGroupsError(ci_group_size=ci_group_size, num_groups=num_groups)

    var_between = np.atleast_1d(psi_grouped_squared / num_good_groups)
    var_total = np.atleast_1d(psi_squared / (num_good_groups * ci_group_size))

    # Amount by which var_between is inflated by using small groups.
    group_noise = (var_total - var_between) / (ci_group_size - 1)

    return np.atleast_1d(debiaser.debias(var_between, group_noise, num_good_groups))


class RegressionPredictionStrategy(OptimizedPredictionStrategy):
    """Leaf-average outcome; the forest prediction is the average over leaves.

    ``num_outcomes`` is the outcome width, e.g. 4 when four outcome columns are
    modelled jointly. The variance is reported per outcome column.
    """

    OUTCOME = 0

    def __init__(self, num_outcomes: int = 1) -> None:
        if num_outcomes < 1:
            raise ValueError("num_outcomes must be at least 1")
        self.num_outcomes = num_outcomes
        self.bayes_debiaser = BayesDebiaser()

    def prediction_length(self) -> int:
        return self.num_outcomes

    def prediction_value_length(self) -> int:
        return 1

    def precompute_prediction_values(
        self,
        leaf_samples: Sequence[np.ndarray],
        observations: Observations,
    ) -> PredictionValues:
        outcomes = observations.get_matrix(OUTCOME)
        values: list[list[np.ndarray]] = []
        for samples in leaf_samples:
            if len(samples) == 0:
                values.append([])
                continue
            values.append([outcomes[np.asarray(samples, dtype=np.int64)].mean(axis=0)])

        return PredictionValues(values, len(leaf_samples), self.prediction_value_length())

    def predict(self, average_prediction_values: Sequence[np.ndarray]) -> np.ndarray:
        return np.array(average_prediction_values[self.OUTCOME], dtype=np.float64)

    def compute_variance(
        self,
        average_prediction_values: Sequence[np.ndarray],
        leaf_prediction_values: PredictionValues,
        ci_group_size: int,
    ) -> np.ndarray:
        average_outcome = average_prediction_values[self.OUTCOME]
        psi_by_tree = [
            None if leaf_prediction_values.empty(tree) else leaf_prediction_values.get(tree, self.OUTCOME) - average_outcome
            for tree in range(leaf_prediction_values.get_num_nodes())
        ]
        return grouped_jackknife_variance(psi_by_tree, ci_group_size, self.bayes_debiaser)


class InstrumentalPredictionStrategy(OptimizedPredictionStrategy):
    """Local instrumental-variable effect ``(E[ZY] - E[Z]E[Y]) / (E[ZW] - E[Z]E[W])``.

    Each leaf stores the averages of Y, W, Z, ZY and ZW. The variance applies
    the grouped jackknife to the per-tree linearisation of the effect.
    """

    OUTCOME = 0
    TREATMENT = 1
    INSTRUMENT = 2
    OUTCOME_INSTRUMENT = 3
    TREATMENT_INSTRUMENT = 4

    def __init__(self) -> None:
        self.bayes_debiaser = BayesDebiaser()

    def prediction_length(self) -> int:
        return 1

    def prediction_value_length(self) -> int:
        return 5

    def precompute_prediction_values(
        self,
        leaf_samples: Sequence[np.ndarray],
        observations: Observations,
    ) -> PredictionValues:
        outcome = observations.get_matrix(OUTCOME)[:, 0]
        treatment = observations.get_matrix(TREATMENT)[:, 0]
        instrument = observations.get_matrix(INSTRUMENT)[:, 0]

        values: list[list[np.ndarray]] = []
        for samples in leaf_samples:
            if len(samples) == 0:
                values.append([])
                continue
            idx = np.asarray(samples, dtype=np.int64)
            y, w, z = outcome[idx], treatment[idx], instrument[idx]
            values.append(
                [
                    np.array([y.mean()]),
                    np.array([w.mean()]),
                    np.array([z.mean()]),
                    np.array([(z * y).mean()]),
                    np.array([(z * w).mean()]),
                ]
            )

        return PredictionValues(values, len(leaf_samples), self.prediction_value_length())

    def _effect_terms(self, average: Sequence[np.ndarray]) -> tuple[float, float]:
        y = float(average[self.OUTCOME][0])
        w = float(average[self.TREATMENT][0])
        z = float(average[self.INSTRUMENT][0])
        numerator = float(average[self.OUTCOME_INSTRUMENT][0]) - z * y
        first_stage = float(average[self.TREATMENT_INSTRUMENT][0]) - z * w
        return numerator, first_stage

    def predict(self, average_prediction_values: Sequence[np.ndarray]) -> np.ndarray:
        numerator, first_stage = self._effect_terms(average_prediction_values)
        if first_stage == 0.0:
            return np.array([np.nan])
        return np.array([numerator / first_stage])

    def compute_variance(
        self,
        average_prediction_values: Sequence[np.ndarray],
        leaf_prediction_values: PredictionValues,
        ci_group_size: int,
    ) -> np.ndarray:
        numerator, first_stage = self._effect_terms(average_prediction_values)
        if first_stage == 0.0:
            logger.warning("No variance estimate: the local first stage is zero")
            return np.array([np.nan])
        effect = numerator / first_stage

        y = float(average_prediction_values[self.OUTCOME][0])
        w = float(average_prediction_values[self.TREATMENT][0])
        z = float(average_prediction_values[self.INSTRUMENT][0])
        zy = float(average_prediction_values[self.OUTCOME_INSTRUMENT][0])
        zw = float(average_prediction_values[self.TREATMENT_INSTRUMENT][0])

        psi_by_tree: list[np.ndarray | None] = []
        for tree in range(leaf_prediction_values.get_num_nodes()):
            if leaf_prediction_values.empty(tree):
                psi_by_tree.append(None)
                continue
            leaf = [float(v[0]) for v in leaf_prediction_values.get_values(tree)]
            d_y = leaf[self.OUTCOME] - y
            d_w = leaf[self.TREATMENT] - w
            d_z = leaf[self.INSTRUMENT] - z
            d_numerator = (leaf[self.OUTCOME_INSTRUMENT] - zy) - z * d_y - y * d_z
            d_first_stage = (leaf[self.TREATMENT_INSTRUMENT] - zw) - z * d_w - w * d_z
            psi_by_tree.append(np.array([(d_numerator - effect * d_first_stage) / first_stage]))

        return grouped_jackknife_variance(psi_by_tree, ci_group_size, self.bayes_debiaser)


class DefaultPredictionStrategy(ABC):
    """Predicts from forest neighbour weights instead of precomputed leaf statistics.

    ``weights`` has one entry per training sample: the average over
    contributing trees of ``1 / leaf size`` for the samples sharing the test
    sample's leaf. The weights sum to one.
    """

    @abstractmethod
    def prediction_length(self) -> int:
        """Number of entries in a point estimate."""

    @abstractmethod
    def predict(self, weights: np.ndarray, observations: Observations) -> np.ndarray:
        ...


class QuantilePredictionStrategy(DefaultPredictionStrategy):
    """Quantiles of the outcome under the forest neighbour weights.

    For each requested quantile ``q`` the prediction is the smallest neighbour
    outcome whose cumulative weight, in order of increasing outcome, reaches ``q``.
    Predictions follow the order the quantiles were given in.
    """

    def __init__(self, quantiles: Sequence[float]) -> None:
        quantiles = [float(q) for q in quantiles]
        if not quantiles:
            raise ValueError("At least one quantile is required")
        if any(not (0.0 < q < 1.0) for q in quantiles):
            raise ValueError("Quantiles must lie strictly between 0 and 1")
        self.quantiles = np.array(quantiles, dtype=np.float64)

    def prediction_length(self) -> int:
        return int(self.quantiles.size)

    def predict(self, weights: np.ndarray, observations: Observations) -> np.ndarray:
        neighbours = np.flatnonzero(weights > 0.0)
        outcomes = observations.get_matrix(OUTCOME)[neighbours, 0]

        order = np.argsort(outcomes, kind="stable")
        sorted_outcomes = outcomes[order]
        cumulative = np.cumsum(weights[neighbours][order])

        positions = np.searchsorted(cumulative, self.quantiles, side="left")
        return sorted_outcomes[np.minimum(positions, sorted_outcomes.size - 1)]
