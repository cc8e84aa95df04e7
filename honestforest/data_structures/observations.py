from __future__ import annotations

from collections.abc import Sequence

import numpy as np

OUTCOME = 0
TREATMENT = 1
INSTRUMENT = 2


class Observations:
    """Per-sample observation vectors (outcome, treatment, instrument, ...) shared by all trees.

    Each observation type is stored as a ``(num_samples, width)`` matrix so that
    multi-column outcomes are supported; one-dimensional input becomes a single
    column.
    """

    OUTCOME = OUTCOME
    TREATMENT = TREATMENT
    INSTRUMENT = INSTRUMENT

    def __init__(
        self,
        observations_by_type: Sequence[np.ndarray] | None = None,
        num_samples: int | None = None,
    ) -> None:
        matrices: list[np.ndarray] = []
        for values in observations_by_type or ():
            matrix = np.array(values, dtype=np.float64)
            if matrix.ndim == 1:
                matrix = matrix.reshape(-1, 1)
            if matrix.ndim != 2:
                raise ValueError("Each observation type must be a 1D or 2D array")
            matrix.setflags(write=False)
            matrices.append(matrix)

        if num_samples is None:
            num_samples = matrices[0].shape[0] if matrices else 0
        for type_index, matrix in enumerate(matrices):
            if matrix.shape[0] != num_samples:
                raise ValueError(
                    f"Observation type {type_index} has {matrix.shape[0]} rows, expected {num_samples}"
                )

        self._observations_by_type = tuple(matrices)
        self._num_samples = int(num_samples)

    @property
    def num_types(self) -> int:
        return len(self._observations_by_type)

    def get(self, observation_type: int, sample: int) -> np.ndarray:
        return self._observations_by_type[observation_type][sample]

    def get_column(self, observation_type: int, sample: int) -> float:
        return float(self._observations_by_type[observation_type][sample, 0])

    def get_matrix(self, observation_type: int) -> np.ndarray:
        return self._observations_by_type[observation_type]

    def get_observations_by_type(self) -> tuple[np.ndarray, ...]:
        return self._observations_by_type

    def get_num_samples(self) -> int:
        return self._num_samples
