"""
External collaborator interfaces consumed by the reflexion loop.

Concrete LLM-backed implementations live in src.reflexion.service;
tests substitute plain fakes.
"""
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from .models import EvidenceEntity, Feature, IterationRecord, RunResult


@runtime_checkable
class FeatureProposer(Protocol):
    """Proposes one new feature from the model's worst predictions."""

    def propose_feature(
        self,
        active_features: Sequence[Feature],
        worst_under: Sequence[EvidenceEntity],
        worst_over: Sequence[EvidenceEntity],
        rejected: Sequence[Feature],
    ) -> Feature:
        """
        Raises:
            ProposalError: if no usable feature could be produced
        """
        ...


@runtime_checkable
class EntityScorer(Protocol):
    """Scores a batch of entities (0-10) against one feature."""

    def score_entities(
        self,
        entities: Sequence[Any],
        feature: Feature,
    ) -> Mapping[str, float]:
        """
        Returns:
            identifier -> score; identifiers may be missing (partial result)

        Raises:
            ScoringError: if the call failed outright
        """
        ...


@runtime_checkable
class FeatureBootstrapper(Protocol):
    """Produces the initial active feature set."""

    def bootstrap_features(self, entities: Sequence[Any]) -> list[Feature]:
        ...


@runtime_checkable
class RunRecorder(Protocol):
    """Persists the audit trail of a run."""

    def record_iteration(self, record: IterationRecord) -> None:
        ...

    def record_run(self, result: RunResult) -> None:
        ...


class NullRecorder:
    """Recorder that keeps nothing."""

    def record_iteration(self, record: IterationRecord) -> None:
        pass

    def record_run(self, result: RunResult) -> None:
        pass
