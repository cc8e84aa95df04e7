from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np

from honestforest.data_structures.observations import INSTRUMENT, OUTCOME, TREATMENT, Observations

# Below this magnitude the local first stage is treated as zero.
_ZERO_FIRST_STAGE_TOLERANCE = 1.0e-10


class RelabelingStrategy(ABC):
    """Turns raw observations into the pseudo-outcomes a node is split on.

    An empty mapping tells the tree trainer not to split the node; samples
    missing from a non-empty mapping are left out of the split search.
    """

    @abstractmethod
    def relabel(self, samples: np.ndarray, observations: Observations) -> dict[int, np.ndarray]:
        ...


class NoopRelabelingStrategy(RelabelingStrategy):
    """Uses the outcome itself as the pseudo-outcome (regression forests)."""

    def relabel(self, samples: np.ndarray, observations: Observations) -> dict[int, np.ndarray]:
        return {int(sample): observations.get(OUTCOME, sample) for sample in samples}


class InstrumentalRelabelingStrategy(RelabelingStrategy):
    """Relabels samples with their influence on the local instrumental-variable effect.

    With node-centred outcome ``Y``, treatment ``W`` and instrument ``Z``, the
    local effect is ``sum(Z * Y) / sum(Z * W)`` and each sample is relabeled to
    ``Z * (Y - effect * W)``. ``split_regularization`` mixes the treatment into
    the instrument, ``(1 - r) * Z + r * W``. A causal forest is this strategy
    with the treatment also used as the instrument.
    """

    def __init__(self, split_regularization: float = 0.0) -> None:
        if not (0.0 <= split_regularization <= 1.0):
            raise ValueError("split_regularization must be in [0, 1]")
        self.split_regularization = split_regularization

    def relabel(self, samples: np.ndarray, observations: Observations) -> dict[int, np.ndarray]:
        samples = np.asarray(samples, dtype=np.int64)
        if samples.size == 0:
            return {}

        outcome = observations.get_matrix(OUTCOME)[samples, 0]
        treatment = observations.get_matrix(TREATMENT)[samples, 0]
        instrument = observations.get_matrix(INSTRUMENT)[samples, 0]

        r = self.split_regularization
        instrument = (1.0 - r) * instrument + r * treatment

        outcome = outcome - outcome.mean()
        treatment = treatment - treatment.mean()
        instrument = instrument - instrument.mean()

        denominator = float(np.dot(instrument, treatment))
        if abs(denominator) <= _ZERO_FIRST_STAGE_TOLERANCE:
            return {}

        local_effect = float(np.dot(instrument, outcome)) / denominator
        residuals = instrument * (outcome - local_effect * treatment)

        return {int(sample): np.array([residual]) for sample, residual in zip(samples, residuals)}


class QuantileRelabelingStrategy(RelabelingStrategy):
    """Relabels each sample with the index of the node-level quantile bucket its outcome falls in."""

    def __init__(self, quantiles: Sequence[float]) -> None:
        quantiles = [float(q) for q in quantiles]
        if not quantiles:
            raise ValueError("At least one quantile is required")
        if any(not (0.0 < q < 1.0) for q in quantiles):
            raise ValueError("Quantiles must lie strictly between 0 and 1")
        self.quantiles = sorted(quantiles)

    @property
    def num_classes(self) -> int:
        return len(self.quantiles) + 1

    def relabel(self, samples: np.ndarray, observations: Observations) -> dict[int, np.ndarray]:
        samples = np.asarray(samples, dtype=np.int64)
        if samples.size == 0:
            return {}

        outcomes = observations.get_matrix(OUTCOME)[samples, 0]
        sorted_outcomes = np.sort(outcomes)

        num_samples = sorted_outcomes.size
        positions = [int(np.ceil(num_samples * q)) - 1 for q in self.quantiles]
        cutoffs = np.unique(sorted_outcomes[np.clip(positions, 0, num_samples - 1)])

        classes = np.searchsorted(cutoffs, outcomes, side="left")
        return {int(sample): np.array([float(label)]) for sample, label in zip(samples, classes)}
