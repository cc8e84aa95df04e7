import numpy as np
import pytest

from honestforest.data_structures import DefaultData, Observations
from honestforest.relabeling import (
    InstrumentalRelabelingStrategy,
    NoopRelabelingStrategy,
    QuantileRelabelingStrategy,
)
from honestforest.splitting import (
    ProbabilitySplittingRuleFactory,
    RegressionSplittingRule,
    RegressionSplittingRuleFactory,
)


def _step_problem(num_samples=10):
    x = np.arange(num_samples, dtype=np.float64)
    constant = np.ones(num_samples)
    data = DefaultData(np.column_stack([x, constant]))
    y = np.where(x < num_samples // 2, 0.0, 10.0)
    return data, y


def test_noop_relabeling_returns_outcomes():
    y = np.array([1.5, -2.0, 3.0])
    observations = Observations([y])

    relabeled = NoopRelabelingStrategy().relabel(np.array([0, 2]), observations)

    assert sorted(relabeled) == [0, 2]
    assert relabeled[0][0] == 1.5
    assert relabeled[2][0] == 3.0


def test_instrumental_relabeling_residuals_sum_to_zero():
    rng = np.random.default_rng(4)
    z = rng.normal(size=60)
    w = z + 0.5 * rng.normal(size=60)
    y = 2.0 * w + rng.normal(size=60)
    observations = Observations([y, w, z])

    relabeled = InstrumentalRelabelingStrategy().relabel(np.arange(60), observations)

    assert len(relabeled) == 60
    assert np.isclose(sum(r[0] for r in relabeled.values()), 0.0, atol=1e-9)


def test_instrumental_relabeling_declines_zero_first_stage():
    y = np.array([1.0, 2.0, 3.0, 4.0])
    w = np.ones(4)
    observations = Observations([y, w, w])

    assert InstrumentalRelabelingStrategy().relabel(np.arange(4), observations) == {}


def test_quantile_relabeling_assigns_buckets():
    y = np.arange(1, 11, dtype=np.float64)
    strategy = QuantileRelabelingStrategy([0.5])

    relabeled = strategy.relabel(np.arange(10), Observations([y]))

    assert strategy.num_classes == 2
    assert [int(relabeled[i][0]) for i in range(10)] == [0] * 5 + [1] * 5


def test_quantile_relabeling_rejects_bad_quantiles():
    with pytest.raises(ValueError):
        QuantileRelabelingStrategy([0.0, 0.5])


def test_regression_rule_finds_step_split():
    data, y = _step_problem()
    responses = {i: np.array([y[i]]) for i in range(10)}
    split_vars = [0]
    split_values = [0.0]

    rule = RegressionSplittingRuleFactory(alpha=0.05).create(data)
    stop = rule.find_best_split(0, np.array([0, 1]), responses, [np.arange(10)], split_vars, split_values)

    assert not stop
    assert split_vars[0] == 0
    assert split_values[0] == 4.0


def test_regression_rule_ignores_samples_without_response():
    data, _ = _step_problem()
    y = np.array([0.0, 0.0, 0.0, 0.0, 10.0, 10.0, 10.0, 10.0])
    responses = {i: np.array([y[i]]) for i in range(8)}
    split_vars = [0]
    split_values = [0.0]

    rule = RegressionSplittingRule(data, alpha=0.05)
    stop = rule.find_best_split(0, np.array([0]), responses, [np.arange(10)], split_vars, split_values)

    assert not stop
    assert split_values[0] == 3.0


def test_regression_rule_stops_on_constant_responses():
    data, _ = _step_problem()
    responses = {i: np.array([1.0]) for i in range(10)}

    rule = RegressionSplittingRule(data, alpha=0.05)
    stop = rule.find_best_split(0, np.array([0, 1]), responses, [np.arange(10)], [0], [0.0])

    assert stop


def test_regression_rule_stops_when_no_variable_can_split():
    data, y = _step_problem()
    responses = {i: np.array([y[i]]) for i in range(10)}

    rule = RegressionSplittingRule(data, alpha=0.05)
    stop = rule.find_best_split(0, np.array([1]), responses, [np.arange(10)], [0], [0.0])

    assert stop


def test_splitting_rule_rejects_alpha_of_one_half():
    data, _ = _step_problem()

    with pytest.raises(ValueError):
        RegressionSplittingRule(data, alpha=0.5)


def test_probability_rule_splits_on_class_boundary():
    data, y = _step_problem()
    responses = {i: np.array([0.0 if y[i] == 0.0 else 1.0]) for i in range(10)}
    split_vars = [0]
    split_values = [0.0]

    rule = ProbabilitySplittingRuleFactory(num_classes=2).create(data)
    stop = rule.find_best_split(0, np.array([0, 1]), responses, [np.arange(10)], split_vars, split_values)

    assert not stop
    assert split_values[0] == 4.0


def test_factory_creates_a_fresh_rule_per_call():
    data, _ = _step_problem()
    factory = RegressionSplittingRuleFactory()

    assert factory.create(data) is not factory.create(data)
