"""
Error Analyzer

Residuals of a trained model, the worst predictions shown to the
feature proposer, and validation reports used for accept/reject.
"""
import logging
from typing import Any, Callable, Sequence

import numpy as np

from .exceptions import DimensionMismatchError, InsufficientDataError
from .models import EvaluationReport, EvidenceEntity
from .trainer import Model, predict, views_from_log


logger = logging.getLogger(__name__)


def worst_predictions(
    entities: Sequence[Any],
    model: Model,
    inputs: Sequence[Sequence[float]],
    targets: Sequence[float],
    k: int,
    inverse: Callable[[float], float] = views_from_log,
) -> list[EvidenceEntity]:
    """
    The k entities with the largest |predicted - actual|.

    Ties keep input order. signed_delta stays in the model scale,
    actual / predicted / abs_diff are mapped back through `inverse`.

    Args:
        entities: One entity per input row (needs a .title)
        model: Trained model
        inputs: Model input rows
        targets: Model-scale targets
        k: How many to return
        inverse: Model scale -> original scale
    """
    if not (len(entities) == len(inputs) == len(targets)):
        raise DimensionMismatchError(
            f"entities={len(entities)}, inputs={len(inputs)}, targets={len(targets)}"
        )
    if k <= 0:
        return []

    predictions = predict(model, inputs)
    deltas = [p - float(t) for p, t in zip(predictions, targets)]

    # sorted() is stable, so equal |delta| keep their original order
    order = sorted(range(len(deltas)), key=lambda i: -abs(deltas[i]))

    worst = []
    for idx in order[:k]:
        actual = inverse(float(targets[idx]))
        predicted = inverse(predictions[idx])
        worst.append(EvidenceEntity(
            title=getattr(entities[idx], "title", str(entities[idx])),
            actual=actual,
            predicted=predicted,
            abs_diff=abs(predicted - actual),
            signed_delta=deltas[idx],
            entity=entities[idx],
        ))
    return worst


def partition_by_sign(
    predictions: Sequence[EvidenceEntity],
) -> tuple[list[EvidenceEntity], list[EvidenceEntity]]:
    """
    Split into (under_predicted, over_predicted).

    Under-predicted: actual beat the prediction (signed_delta < 0).
    Exact hits (signed_delta == 0) belong to neither list.
    """
    under = [p for p in predictions if p.signed_delta < 0]
    over = [p for p in predictions if p.signed_delta > 0]
    return under, over


def evaluate(
    predictions: Sequence[float],
    targets: Sequence[float],
    model: Model | None = None,
    inverse: Callable[[float], float] = views_from_log,
) -> EvaluationReport:
    """
    Mean absolute error in model scale plus the same errors in views.

    Raises:
        InsufficientDataError: if there is nothing to evaluate
        DimensionMismatchError: if the two sequences differ in length
    """
    if len(predictions) != len(targets):
        raise DimensionMismatchError(
            f"Length mismatch: pred={len(predictions)}, actual={len(targets)}"
        )
    n = len(predictions)
    if n == 0:
        raise InsufficientDataError("No rows to evaluate")

    pred = np.asarray(predictions, dtype=float)
    actual = np.asarray(targets, dtype=float)
    pred_views = np.array([inverse(p) for p in pred])
    actual_views = np.array([inverse(a) for a in actual])

    log_errors = np.abs(pred - actual)
    views_errors = np.abs(pred_views - actual_views)
    average_log_error = float(log_errors.mean())

    return EvaluationReport(
        total_log_error=float(log_errors.sum()),
        total_views_error=float(views_errors.sum()),
        average_log_error=average_log_error,
        average_views_error=float(views_errors.mean()),
        typical_factor=float(np.exp(average_log_error)),
        average_predicted_views=float(pred_views.mean()),
        average_actual_views=float(actual_views.mean()),
        count=n,
        coefficients=list(model.coefficients) if model else [],
    )


def format_views(value: float) -> str:
    """Compact view count: 950, 12.3K, 4.1M."""
    if value < 1_000:
        return f"{value:.0f}"
    if value < 1_000_000:
        return f"{value / 1_000:.1f}K"
    return f"{value / 1_000_000:.1f}M"
