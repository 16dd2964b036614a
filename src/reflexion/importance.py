"""
Importance Ranker

Importance of a feature is the absolute value of its fitted coefficient.
Coefficients are ordered intercept, auxiliary covariates, then features.
"""
import logging
from typing import Sequence

from .exceptions import DimensionMismatchError
from .models import FeatureImportance
from .trainer import Model


logger = logging.getLogger(__name__)


def rank_features(
    model: Model,
    feature_names: Sequence[str],
    auxiliary_dim_count: int,
) -> list[FeatureImportance]:
    """Importance of every feature, in feature_names order."""
    expected = len(model.coefficients) - 1 - auxiliary_dim_count
    if len(feature_names) != expected:
        raise DimensionMismatchError(
            f"{len(feature_names)} feature names but {expected} feature coefficients "
            f"({len(model.coefficients)} coefficients, {auxiliary_dim_count} auxiliary)"
        )

    offset = 1 + auxiliary_dim_count
    return [
        FeatureImportance(
            index=i,
            name=name,
            importance=abs(model.coefficients[offset + i]),
        )
        for i, name in enumerate(feature_names)
    ]


def least_important(
    model: Model,
    feature_names: Sequence[str],
    auxiliary_dim_count: int,
) -> FeatureImportance:
    """
    The feature with the smallest importance.

    Ties go to the first feature in feature_names order.

    Raises:
        DimensionMismatchError: if the names don't match the coefficient count
    """
    ranked = rank_features(model, feature_names, auxiliary_dim_count)
    if not ranked:
        raise DimensionMismatchError("No feature coefficients to rank")

    weakest = ranked[0]
    for item in ranked[1:]:
        if item.importance < weakest.importance:
            weakest = item

    logger.debug(
        "Feature importances: "
        + ", ".join(f"{r.name}={r.importance:.4f}" for r in ranked)
    )
    return weakest
