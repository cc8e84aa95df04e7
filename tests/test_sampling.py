import numpy as np
import pytest

from honestforest.exceptions import InsufficientCandidatesError
from honestforest.sampling import RandomSampler


def test_subsample_is_reproducible_for_same_seed():
    samples = np.arange(50)

    first, first_rest = RandomSampler(13).subsample(samples, 0.3)
    second, second_rest = RandomSampler(13).subsample(samples, 0.3)

    assert np.array_equal(first, second)
    assert np.array_equal(first_rest, second_rest)


def test_subsample_partitions_samples_with_ceiled_size():
    samples = np.arange(10)

    subsample, rest = RandomSampler(0).subsample(samples, 0.33)

    assert subsample.size == 4
    assert rest.size == 6
    assert np.intersect1d(subsample, rest).size == 0
    assert np.array_equal(np.sort(np.concatenate([subsample, rest])), samples)


def test_subsample_rejects_fraction_outside_unit_interval():
    with pytest.raises(ValueError):
        RandomSampler(0).subsample(np.arange(5), 1.5)


def test_draw_with_skip_returns_every_remaining_index_when_exhausted():
    drawn = RandomSampler(1).draw_without_replacement_skip(10, [0, 3, 5], 7)

    assert drawn.size == 7
    assert sorted(drawn.tolist()) == [1, 2, 4, 6, 7, 8, 9]


def test_draw_with_skip_fails_when_too_few_candidates():
    with pytest.raises(InsufficientCandidatesError) as exc_info:
        RandomSampler(1).draw_without_replacement_skip(10, [0, 3, 5], 8)

    assert exc_info.value.requested == 8
    assert exc_info.value.available == 7


def test_draw_with_zero_count_is_empty():
    assert RandomSampler(1).draw_without_replacement_skip(4, [], 0).size == 0
    assert RandomSampler(1).draw_without_replacement_weighted([1, 2], 0, [1.0, 1.0]).size == 0


def test_weighted_draw_never_returns_zero_weight_candidates():
    sampler = RandomSampler(5)

    for _ in range(20):
        drawn = sampler.draw_without_replacement_weighted([1, 2, 3], 2, [0.0, 1.0, 3.0])
        assert sorted(drawn.tolist()) == [2, 3]


def test_weighted_draw_counts_only_positive_weights_as_available():
    with pytest.raises(InsufficientCandidatesError) as exc_info:
        RandomSampler(5).draw_without_replacement_weighted([1, 2, 3], 3, [0.0, 1.0, 3.0])

    assert exc_info.value.available == 2


def test_weighted_draw_rejects_negative_weights():
    with pytest.raises(ValueError):
        RandomSampler(5).draw_without_replacement_weighted([1, 2], 1, [-1.0, 1.0])


def test_sample_poisson_is_non_negative():
    sampler = RandomSampler(2)

    draws = [sampler.sample_poisson(3.0) for _ in range(100)]

    assert min(draws) >= 0
    assert sampler.sample_poisson(0.0) == 0
