from __future__ import annotations

import numpy as np


class Prediction:
    """Point estimate for one test sample, with an optional variance estimate."""

    def __init__(self, predictions: np.ndarray, variance_estimates: np.ndarray | None = None) -> None:
        self.predictions = np.atleast_1d(np.asarray(predictions, dtype=np.float64))
        if variance_estimates is not None:
            variance_estimates = np.atleast_1d(np.asarray(variance_estimates, dtype=np.float64))
        self.variance_estimates = variance_estimates

    def size(self) -> int:
        return int(self.predictions.size)

    def get_predictions(self) -> np.ndarray:
        return self.predictions

    def get_variance_estimates(self) -> np.ndarray | None:
        return self.variance_estimates

    def contains_variance_estimates(self) -> bool:
        return self.variance_estimates is not None and self.variance_estimates.size > 0

    def __repr__(self) -> str:
        return f"Prediction(predictions={self.predictions!r}, variance_estimates={self.variance_estimates!r})"
