"""
Pytest fixtures for the reflexion tests.
"""
from typing import Any, Callable, Mapping, Sequence

import pytest

from src.reflexion.models import EvidenceEntity, Feature


class FakeProposer:
    """Returns queued features in order and remembers what it was shown."""

    def __init__(self, features: Sequence[Feature]):
        self.queue = list(features)
        self.calls: list[dict[str, Any]] = []

    def propose_feature(self, active_features, worst_under, worst_over, rejected):
        self.calls.append({
            "active": [f.name for f in active_features],
            "under": list(worst_under),
            "over": list(worst_over),
            "rejected": [f.name for f in rejected],
        })
        return self.queue.pop(0)


class FakeScorer:
    """Scores from a (title, feature name) -> score function."""

    def __init__(self, score_fn: Callable[[str, str], float]):
        self.score_fn = score_fn
        self.calls: list[tuple[list[str], str]] = []

    def score_entities(self, entities, feature) -> Mapping[str, float]:
        titles = [e.identifier for e in entities]
        self.calls.append((titles, feature.name))
        return {t: self.score_fn(t, feature.name) for t in titles}


class FakeBootstrapper:
    def __init__(self, features: Sequence[Feature]):
        self.features = list(features)

    def bootstrap_features(self, entities):
        return list(self.features)


def make_feature(name: str) -> Feature:
    return Feature(name=name, summary=f"{name} summary", description=f"{name} description")


@pytest.fixture
def evidence() -> Callable[..., EvidenceEntity]:
    def _make(title: str, signed_delta: float) -> EvidenceEntity:
        return EvidenceEntity(
            title=title,
            actual=1000.0,
            predicted=1000.0,
            abs_diff=0.0,
            signed_delta=signed_delta,
        )
    return _make
