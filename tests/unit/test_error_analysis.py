"""
Tests for the error analyzer (src/reflexion/error_analysis.py).

Covers:
- Worst-K selection, ordering and tie-breaking
- Views-scale evidence fields
- Partition by sign
- Validation reports and their edge cases
"""
import math

import numpy as np
import pytest

from src.reflexion.error_analysis import (
    evaluate,
    format_views,
    partition_by_sign,
    worst_predictions,
)
from src.reflexion.exceptions import DimensionMismatchError, InsufficientDataError
from src.reflexion.models import Video
from src.reflexion.trainer import Model


def _identity_model():
    """prediction == the single input value."""
    return Model(
        coefficients=(0.0, 1.0),
        training_inputs=np.zeros((0, 1)),
        training_targets=np.zeros(0),
    )


def _videos(n):
    return [Video(title=f"v{i}", views=100.0) for i in range(n)]


class TestWorstPredictions:
    def test_orders_by_absolute_delta(self):
        deltas = [-2.0, 0.5, 3.0, -0.1, 1.0]
        targets = [5.0] * 5
        inputs = [[t + d] for t, d in zip(targets, deltas)]
        videos = _videos(5)

        worst = worst_predictions(videos, _identity_model(), inputs, targets, k=3)

        assert [w.title for w in worst] == ["v2", "v0", "v4"]
        assert [w.signed_delta for w in worst] == pytest.approx([3.0, -2.0, 1.0])
        assert worst[0].entity is videos[2]

    def test_ties_keep_input_order(self):
        deltas = [1.0, -1.0, 1.0]
        inputs = [[d] for d in deltas]

        worst = worst_predictions(_videos(3), _identity_model(), inputs, [0.0] * 3, k=2)

        assert [w.title for w in worst] == ["v0", "v1"]

    def test_k_larger_than_dataset(self):
        worst = worst_predictions(_videos(2), _identity_model(), [[1.0], [2.0]], [0.0, 0.0], k=10)

        assert len(worst) == 2

    def test_k_zero_returns_empty(self):
        assert worst_predictions(_videos(1), _identity_model(), [[1.0]], [0.0], k=0) == []

    def test_views_fields_use_inverse_transform(self):
        target = math.log(1001.0)
        prediction = math.log(2001.0)

        [worst] = worst_predictions(
            _videos(1), _identity_model(), [[prediction]], [target], k=1
        )

        assert worst.actual == pytest.approx(1000.0)
        assert worst.predicted == pytest.approx(2000.0)
        assert worst.abs_diff == pytest.approx(1000.0)
        assert worst.signed_delta == pytest.approx(prediction - target)

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            worst_predictions(_videos(2), _identity_model(), [[1.0]], [0.0, 0.0], k=1)


class TestPartitionBySign:
    def test_splits_under_and_over(self, evidence):
        items = [evidence("a", -2.0), evidence("b", 3.0), evidence("c", 0.0), evidence("d", -0.1)]

        under, over = partition_by_sign(items)

        assert [e.title for e in under] == ["a", "d"]
        assert [e.title for e in over] == ["b"]

    def test_empty(self):
        assert partition_by_sign([]) == ([], [])


class TestEvaluate:
    def test_mean_absolute_log_error(self):
        report = evaluate([1.0, 2.0, 3.0], [1.5, 2.0, 2.0])

        assert report.count == 3
        assert report.total_log_error == pytest.approx(1.5)
        assert report.average_log_error == pytest.approx(0.5)
        assert report.typical_factor == pytest.approx(math.exp(0.5))

    def test_views_errors(self):
        report = evaluate([math.log(201.0)], [math.log(101.0)])

        assert report.average_views_error == pytest.approx(100.0)
        assert report.average_predicted_views == pytest.approx(200.0)
        assert report.average_actual_views == pytest.approx(100.0)

    def test_includes_model_coefficients(self):
        report = evaluate([1.0], [1.0], model=_identity_model())

        assert report.coefficients == [0.0, 1.0]
        assert report.average_log_error == 0.0

    def test_empty_raises(self):
        with pytest.raises(InsufficientDataError):
            evaluate([], [])

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            evaluate([1.0, 2.0], [1.0])


@pytest.mark.parametrize("value,expected", [
    (950, "950"),
    (12_345, "12.3K"),
    (4_100_000, "4.1M"),
])
def test_format_views(value, expected):
    assert format_views(value) == expected
