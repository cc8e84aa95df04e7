from __future__ import annotations

import numpy as np


class DefaultData:
    """Read-only, row/column addressed view over a dense 2-D feature table."""

    def __init__(self, values: np.ndarray) -> None:
        values = np.array(values, dtype=np.float64)
        if values.ndim != 2:
            raise ValueError("Data values must be a 2D array")
        values.setflags(write=False)
        self.values = values

    def get(self, row: int, col: int) -> float:
        return float(self.values[row, col])

    def get_column(self, col: int) -> np.ndarray:
        return self.values[:, col]

    def get_num_rows(self) -> int:
        return int(self.values.shape[0])

    def get_num_cols(self) -> int:
        return int(self.values.shape[1])
