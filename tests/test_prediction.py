import numpy as np
import pytest
from scipy.stats import norm

from honestforest.bayes_debiaser import BayesDebiaser
from honestforest.data_structures import Forest, Observations, PredictionValues, Tree
from honestforest.exceptions import InsufficientGroupsError, PredictionLengthMismatchError
from honestforest.logging import enable_logging
from honestforest.prediction_collector import DefaultPredictionCollector, OptimizedPredictionCollector
from honestforest.prediction_strategy import (
    InstrumentalPredictionStrategy,
    QuantilePredictionStrategy,
    RegressionPredictionStrategy,
    grouped_jackknife_variance,
)


def _leaf_only_tree(value):
    prediction_values = PredictionValues([[] if value is None else [np.array([value])]], 1, 1)
    return Tree(0, [[0], [0]], [[0, 1]], [0], [-1.0], prediction_values=prediction_values)


def _forest(values, ci_group_size):
    return Forest([_leaf_only_tree(v) for v in values], Observations([np.zeros(2)]), ci_group_size)


def _leaf_nodes(forest, num_samples=2):
    return [np.zeros(num_samples, dtype=np.int64) for _ in range(forest.num_trees)]


def test_debiaser_never_goes_negative():
    debiaser = BayesDebiaser()

    assert debiaser.debias(0.1, 10.0, 2) >= 0.0
    assert debiaser.debias(1e-8, 1e3, 1) >= 0.0
    assert debiaser.debias(0.0, 0.0, 5) == 0.0


def test_debiaser_leaves_precise_estimates_nearly_unchanged():
    assert np.isclose(BayesDebiaser().debias(10.0, 0.0, 1000), 10.0)


def test_debiaser_handles_every_column_at_once():
    var_between = np.array([1.0, 0.1, 0.0, 1e-300])
    group_noise = np.array([0.0, 10.0, 0.0, 1.0])

    debiased = BayesDebiaser().debias(var_between, group_noise, 2)

    assert debiased.shape == (4,)
    assert np.all(debiased >= 0.0)
    assert debiased[2] == 0.0
    for column in range(4):
        assert np.isclose(debiased[column], BayesDebiaser().debias(var_between[column], group_noise[column], 2))


def test_debiaser_requires_good_groups():
    with pytest.raises(ValueError):
        BayesDebiaser().debias(1.0, 0.5, 0)


def test_grouped_jackknife_matches_truncated_normal_mean():
    psi = [np.array([1.0]), np.array([1.0]), np.array([-1.0]), np.array([-1.0])]

    variance = grouped_jackknife_variance(psi, 2, BayesDebiaser())

    # var_between = 1, group_noise = 0, standard error = 1.
    assert np.isclose(variance[0], 1.0 + norm.pdf(1.0) / norm.cdf(1.0))


def test_grouped_jackknife_skips_incomplete_groups():
    psi = [np.array([1.0]), np.array([1.0]), None, np.array([5.0]), np.array([-1.0]), np.array([-1.0])]

    variance = grouped_jackknife_variance(psi, 2, BayesDebiaser())
    expected = grouped_jackknife_variance([psi[0], psi[1], psi[4], psi[5]], 2, BayesDebiaser())

    assert np.allclose(variance, expected)


def test_grouped_jackknife_without_complete_group_fails():
    with pytest.raises(InsufficientGroupsError):
        grouped_jackknife_variance([np.array([1.0]), None, None, np.array([2.0])], 2, BayesDebiaser())


def test_regression_strategy_precomputes_leaf_means():
    observations = Observations([np.array([1.0, 3.0, 5.0])])

    values = RegressionPredictionStrategy().precompute_prediction_values([[0, 1], [], [2]], observations)

    assert values.get_num_nodes() == 3
    assert values.get(0, 0)[0] == 2.0
    assert values.empty(1)
    assert values.get(2, 0)[0] == 5.0


def test_regression_strategy_supports_multiple_outcome_columns():
    strategy = RegressionPredictionStrategy(num_outcomes=4)
    outcomes = np.arange(8, dtype=np.float64).reshape(2, 4)

    values = strategy.precompute_prediction_values([[0, 1]], Observations([outcomes]))

    assert strategy.prediction_length() == 4
    assert np.allclose(strategy.predict([values.get(0, 0)]), [2.0, 3.0, 4.0, 5.0])


def test_instrumental_strategy_recovers_effect_from_leaf_moments():
    rng = np.random.default_rng(0)
    z = rng.normal(size=500)
    w = z + 0.3 * rng.normal(size=500)
    y = 1.5 * w
    strategy = InstrumentalPredictionStrategy()

    values = strategy.precompute_prediction_values([np.arange(500)], Observations([y, w, z]))
    prediction = strategy.predict(list(values.get_values(0)))

    assert np.isclose(prediction[0], 1.5)


def test_collector_averages_over_trees_with_variance():
    forest = _forest([1.0, 2.0, 3.0, 4.0], ci_group_size=2)
    collector = OptimizedPredictionCollector(RegressionPredictionStrategy(), ci_group_size=2)

    predictions = collector.collect_predictions(forest, _leaf_nodes(forest))

    assert len(predictions) == 2
    assert np.isclose(predictions[0].get_predictions()[0], 2.5)
    assert predictions[0].contains_variance_estimates()
    assert predictions[0].get_variance_estimates()[0] >= 0.0


def test_collector_returns_nan_when_no_leaf_has_values():
    forest = _forest([None, None], ci_group_size=1)
    collector = OptimizedPredictionCollector(RegressionPredictionStrategy())

    predictions = collector.collect_predictions(forest, _leaf_nodes(forest))

    assert np.isnan(predictions[0].get_predictions()).all()
    assert not predictions[0].contains_variance_estimates()


def test_collector_reports_nan_variance_without_complete_groups():
    forest = _forest([1.0, None, None, 3.0], ci_group_size=2)
    collector = OptimizedPredictionCollector(RegressionPredictionStrategy(), ci_group_size=2)

    predictions = collector.collect_predictions(forest, _leaf_nodes(forest), samples=[1])

    assert len(predictions) == 1
    assert np.isclose(predictions[0].get_predictions()[0], 2.0)
    assert np.isnan(predictions[0].get_variance_estimates()).all()


def test_collector_skips_masked_trees():
    forest = _forest([1.0, 5.0], ci_group_size=1)
    trees_by_sample = np.array([[True, False], [False, True]])
    collector = OptimizedPredictionCollector(RegressionPredictionStrategy())

    predictions = collector.collect_predictions(forest, _leaf_nodes(forest), trees_by_sample)

    assert predictions[0].get_predictions()[0] == 1.0
    assert predictions[1].get_predictions()[0] == 5.0


def test_collector_rejects_predictions_of_wrong_length():
    class TwoValueStrategy(RegressionPredictionStrategy):
        def predict(self, average_prediction_values):
            return np.array([1.0, 2.0])

    forest = _forest([1.0], ci_group_size=1)
    collector = OptimizedPredictionCollector(TwoValueStrategy())

    with pytest.raises(PredictionLengthMismatchError):
        collector.collect_predictions(forest, _leaf_nodes(forest))


def test_instrumental_variance_warns_on_zero_first_stage():
    messages = []
    average = [np.array([1.0]), np.array([1.0]), np.array([1.0]), np.array([1.0]), np.array([1.0])]
    strategy = InstrumentalPredictionStrategy()

    with enable_logging(level="WARNING", sink=messages.append):
        variance = strategy.compute_variance(average, PredictionValues([], 2, 5), 2)

    assert np.isnan(variance).all()
    assert any("first stage is zero" in str(message) for message in messages)


def test_quantile_strategy_reads_weighted_neighbour_outcomes():
    observations = Observations([np.array([3.0, 1.0, 2.0, 9.0])])
    weights = np.array([0.25, 0.25, 0.5, 0.0])

    prediction = QuantilePredictionStrategy([0.9, 0.25, 0.5]).predict(weights, observations)

    assert prediction.tolist() == [3.0, 1.0, 2.0]


def test_quantile_strategy_rejects_bad_quantiles():
    with pytest.raises(ValueError):
        QuantilePredictionStrategy([0.5, 1.0])


def test_neighbour_collector_weights_samples_by_leaf_size():
    observations = Observations([np.array([1.0, 2.0, 3.0])])
    trees = [
        Tree(0, [[0], [0]], [[0, 1]], [0], [-1.0]),
        Tree(0, [[0], [0]], [[1, 2]], [0], [-1.0]),
    ]
    forest = Forest(trees, observations, 1)
    collector = DefaultPredictionCollector(QuantilePredictionStrategy([0.25, 0.5, 0.9]))

    predictions = collector.collect_predictions(forest, [np.zeros(1, dtype=np.int64)] * 2)

    # Weights are 0.25, 0.5 and 0.25 for outcomes 1, 2 and 3.
    assert predictions[0].get_predictions().tolist() == [1.0, 2.0, 3.0]
    assert not predictions[0].contains_variance_estimates()


def test_neighbour_collector_returns_nan_without_contributing_trees():
    forest = Forest([Tree(0, [[0], [0]], [[0, 1]], [0], [-1.0])], Observations([np.zeros(2)]), 1)
    collector = DefaultPredictionCollector(QuantilePredictionStrategy([0.5]))

    predictions = collector.collect_predictions(forest, [np.zeros(1, dtype=np.int64)], np.array([[False]]))

    assert np.isnan(predictions[0].get_predictions()).all()
