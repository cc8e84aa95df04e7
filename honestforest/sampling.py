from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from honestforest.exceptions import InsufficientCandidatesError


class RandomSampler:
    """Seeded source of subsamples and variable draws for one unit of forest training.

    All randomness used while growing a tree flows through one instance, so the
    same seed and the same sequence of calls always produce the same draws.
    """

    def __init__(self, seed: int | Sequence[int] = 0) -> None:
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def subsample(self, samples: np.ndarray, fraction: float) -> tuple[np.ndarray, np.ndarray]:
        """Randomly split ``samples`` into a ``ceil(fraction * n)`` part and the remainder."""
        if not (0.0 <= fraction <= 1.0):
            raise ValueError("fraction must be in [0, 1]")

        shuffled = self.shuffle(samples)
        size = int(np.ceil(shuffled.size * fraction))
        return shuffled[:size], shuffled[size:]

    def shuffle(self, samples: np.ndarray) -> np.ndarray:
        shuffled = np.array(samples, dtype=np.int64).reshape(-1)
        self.rng.shuffle(shuffled)
        return shuffled

    def sample_poisson(self, mean: float) -> int:
        if mean < 0:
            raise ValueError("Poisson mean must be non-negative")
        return int(self.rng.poisson(mean))

    def draw_without_replacement_skip(
        self,
        universe_size: int,
        skip_indices: Sequence[int] | np.ndarray,
        count: int,
    ) -> np.ndarray:
        """Uniformly draw ``count`` distinct indices from ``[0, universe_size)`` minus ``skip_indices``."""
        candidates = np.setdiff1d(
            np.arange(universe_size, dtype=np.int64),
            np.asarray(skip_indices, dtype=np.int64),
            assume_unique=False,
        )
        if count > candidates.size:
            raise InsufficientCandidatesError(requested=count, available=int(candidates.size))
        if count <= 0:
            return np.empty(0, dtype=np.int64)

        return np.asarray(self.rng.choice(candidates, size=count, replace=False), dtype=np.int64)

    def draw_without_replacement_weighted(
        self,
        candidate_indices: Sequence[int] | np.ndarray,
        count: int,
        weights: Sequence[float] | np.ndarray,
    ) -> np.ndarray:
        """Draw ``count`` distinct candidates with probability proportional to ``weights``.

        Candidates with zero weight can never be drawn and do not count as available.
        """
        candidates = np.asarray(candidate_indices, dtype=np.int64).reshape(-1)
        weights = np.asarray(weights, dtype=np.float64).reshape(-1)
        if candidates.shape != weights.shape:
            raise ValueError("candidate_indices and weights must have the same length")
        if np.any(weights < 0) or not np.all(np.isfinite(weights)):
            raise ValueError("weights must be finite and non-negative")

        available = int(np.count_nonzero(weights > 0))
        if count > available:
            raise InsufficientCandidatesError(requested=count, available=available)
        if count <= 0:
            return np.empty(0, dtype=np.int64)

        probabilities = weights / weights.sum()
        return np.asarray(self.rng.choice(candidates, size=count, replace=False, p=probabilities), dtype=np.int64)
