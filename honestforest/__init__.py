"""
honestforest

Generalized random forests grown with honesty: trees are split on one half
of their subsample and their leaves are populated from the other half, so
that leaf averages are unbiased and the grouped half-sample jackknife gives
valid variance estimates.

A single tree-growing skeleton serves several statistical targets through
pluggable relabeling strategies (regression, instrumental/causal effects,
quantiles), splitting rules and prediction strategies.
"""
from loguru import logger

from honestforest.data_structures import DefaultData, Forest, Observations, Prediction, PredictionValues, Tree
from honestforest.forest_predictor import (
    ForestPredictor,
    instrumental_predictor,
    quantile_predictor,
    regression_predictor,
)
from honestforest.forest_trainer import (
    ForestOptions,
    ForestTrainer,
    causal_trainer,
    instrumental_trainer,
    quantile_trainer,
    regression_trainer,
)
from honestforest.logging import PACKAGE_NAME, LoggingHandle, enable_logging
from honestforest.tree_trainer import TreeOptions, TreeTrainer

logger.disable(PACKAGE_NAME)

__all__ = [
    "DefaultData",
    "Forest",
    "ForestOptions",
    "ForestPredictor",
    "ForestTrainer",
    "LoggingHandle",
    "Observations",
    "Prediction",
    "PredictionValues",
    "Tree",
    "TreeOptions",
    "TreeTrainer",
    "causal_trainer",
    "enable_logging",
    "instrumental_predictor",
    "instrumental_trainer",
    "quantile_predictor",
    "quantile_trainer",
    "regression_predictor",
    "regression_trainer",
]
