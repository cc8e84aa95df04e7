"""Exceptions raised by forest training and prediction.

- InsufficientCandidatesError (subclass ValueError): a draw without
  replacement asked for more indices than the candidate pool holds.
- InsufficientGroupsError (subclass ArithmeticError): no CI group had a
  value from every one of its trees, so the grouped jackknife is undefined.
- PredictionLengthMismatchError (subclass RuntimeError): a prediction
  strategy returned a point estimate whose length differs from its declared
  ``prediction_length()``. This is a defect in the strategy, not bad input.
"""

from __future__ import annotations


class InsufficientCandidatesError(ValueError):
    """Raised when a draw requests more distinct indices than are available.

    Attributes:
        requested (int): Number of indices asked for.
        available (int): Number of candidates that could be drawn.
    """

    def __init__(self, requested: int, available: int) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot draw {requested} distinct indices without replacement from {available} candidates"
        )


class InsufficientGroupsError(ArithmeticError):
    """Raised when a variance estimate has no complete CI group to work with."""

    def __init__(self, ci_group_size: int, num_groups: int) -> None:
        self.ci_group_size = ci_group_size
        self.num_groups = num_groups
        super().__init__(
            f"None of the {num_groups} groups of {ci_group_size} trees contributed a value "
            "from every tree; increase the number of trees or lower ci_group_size"
        )


class PredictionLengthMismatchError(RuntimeError):
    """Raised when a prediction does not have the strategy's declared length."""

    def __init__(self, sample: int, expected: int, actual: int) -> None:
        self.sample = sample
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Prediction for sample {sample} did not have the expected length "
            f"(expected {expected}, got {actual})"
        )
