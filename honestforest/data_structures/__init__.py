"""
Data structures for honest forests.

The trained artifacts (trees, forests and their precomputed per-leaf
statistics) together with the read-only training inputs they are built
from. Everything here is array/index based so that a serializer can be
written purely against the public accessors.
"""
from honestforest.data_structures.data import DefaultData
from honestforest.data_structures.forest import Forest
from honestforest.data_structures.observations import INSTRUMENT, OUTCOME, TREATMENT, Observations
from honestforest.data_structures.prediction import Prediction
from honestforest.data_structures.prediction_values import PredictionValues
from honestforest.data_structures.tree import TERMINAL_SPLIT_VALUE, Tree

__all__ = [
    "DefaultData",
    "Forest",
    "INSTRUMENT",
    "OUTCOME",
    "Observations",
    "Prediction",
    "PredictionValues",
    "TERMINAL_SPLIT_VALUE",
    "TREATMENT",
    "Tree",
]
