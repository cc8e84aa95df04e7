from __future__ import annotations

import numpy as np
from scipy.special import erfc


class BayesDebiaser:
    """Objective-Bayes correction of the between-group variance estimate.

    The naive estimate ``var_between - group_noise`` can go negative when there
    are few groups. Instead the true variance is given a flat prior on
    ``[0, inf)`` and the naive estimate is treated as normal around it, with
    standard error ``max(var_between, group_noise) * sqrt(2 / num_good_groups)``.
    The returned value is the posterior mean, i.e. the mean of a normal
    truncated at zero, which is never negative.

    ``var_between`` and ``group_noise`` may be scalars or arrays of the same
    shape (one entry per outcome column); they are debiased elementwise.
    """

    def debias(self, var_between, group_noise, num_good_groups: float) -> np.ndarray:
        if num_good_groups <= 0:
            raise ValueError("num_good_groups must be positive")

        var_between = np.asarray(var_between, dtype=np.float64)
        group_noise = np.asarray(group_noise, dtype=np.float64)

        initial_estimate = var_between - group_noise
        initial_se = np.maximum(var_between, group_noise) * np.sqrt(2.0 / num_good_groups)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore", under="ignore"):
            ratio = initial_estimate / initial_se
            # Standard normal density and CDF at the ratio.
            numerator = np.exp(-(ratio**2) / 2.0) / np.sqrt(2.0 * np.pi)
            denominator = 0.5 * erfc(-ratio / np.sqrt(2.0))
            posterior_mean = initial_estimate + initial_se * numerator / denominator
            # Far in the lower tail the truncated mean tends to se / |ratio|.
            tail_mean = initial_se / np.abs(ratio)

        underflow = (ratio < 0.0) & ((denominator <= 0.0) | (numerator <= 0.0))
        corrected = np.where(underflow, tail_mean, posterior_mean)
        corrected = np.where(initial_se > 0.0, corrected, initial_estimate)
        return np.maximum(corrected, 0.0)
