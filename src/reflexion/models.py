"""
Reflexion Models - Data structures for the feature-discovery loop.

- Feature: a named, human-describable predictor scored 0-10 per video
- Video: the entity being predicted (views) with its recent-history covariates
- ReflexionState: active features + rejection memory, replaced every iteration
- IterationRecord / RunResult: the audit trail of a run
"""
import unicodedata
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from .exceptions import ReflexionConfigError


def normalize_identifier(value: str) -> str:
    """NFKC-normalize an entity identifier for matching model replies."""
    return unicodedata.normalize("NFKC", value).strip()


@dataclass(frozen=True)
class Feature:
    """A title feature. Identity is the exact name."""
    name: str
    summary: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {
            "name": self.name,
            "summary": self.summary,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Feature":
        return cls(
            name=str(data["name"]),
            summary=str(data.get("summary", "")),
            description=str(data.get("description", "")),
        )


@dataclass(frozen=True)
class Video:
    """
    A video with its target and auxiliary covariates.

    recent_views holds log(views + 1) of the channel's previous videos,
    oldest first, and is supplied independently of the reflexion loop.
    """
    title: str
    views: float
    recent_views: tuple[float, ...] = ()
    id: str = ""
    likes: int | None = None
    comments: int | None = None
    date: str | None = None
    duration: float | None = None

    @property
    def identifier(self) -> str:
        return self.title

    @property
    def target(self) -> float:
        return float(self.views)

    @property
    def covariates(self) -> tuple[float, ...]:
        return self.recent_views

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "views": self.views,
            "likes": self.likes,
            "comments": self.comments,
            "date": self.date,
            "duration": self.duration,
            "recent_views": list(self.recent_views),
        }


@dataclass(frozen=True)
class EvidenceEntity:
    """
    One of the model's worst predictions, shown to the feature proposer.

    actual / predicted / abs_diff are in the original (views) scale,
    signed_delta is predicted - actual in the model's log scale.
    """
    title: str
    actual: float
    predicted: float
    abs_diff: float
    signed_delta: float
    entity: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "actual": self.actual,
            "predicted": self.predicted,
            "abs_diff": self.abs_diff,
            "signed_delta": self.signed_delta,
        }


@dataclass(frozen=True)
class FeatureImportance:
    """Importance of one feature in a trained model."""
    index: int
    name: str
    importance: float


def _dedupe_by_name(features: Iterable[Feature]) -> tuple[Feature, ...]:
    seen: set[str] = set()
    unique = []
    for feature in features:
        if feature.name not in seen:
            seen.add(feature.name)
            unique.append(feature)
    return tuple(unique)


def candidate_feature_set(
    active: Iterable[Feature],
    dropped: Feature,
    candidate: Feature,
) -> tuple[Feature, ...]:
    """(active minus dropped) plus candidate, candidate last."""
    return tuple(f for f in active if f.name != dropped.name) + (candidate,)


@dataclass(frozen=True)
class ReflexionState:
    """
    Snapshot of the loop between iterations.

    active_features keeps a fixed cardinality K; rejected_features is the
    rejection memory (insertion ordered, unique by name) and never overlaps
    the active set.
    """
    active_features: tuple[Feature, ...]
    rejected_features: tuple[Feature, ...] = ()
    iteration: int = 0

    def __post_init__(self):
        object.__setattr__(self, "active_features", tuple(self.active_features))
        object.__setattr__(
            self, "rejected_features", _dedupe_by_name(self.rejected_features)
        )
        self.validate()

    def validate(self) -> None:
        """Raise ReflexionConfigError if the state breaks its invariants."""
        if not self.active_features:
            raise ReflexionConfigError("At least one active feature is required")
        names = [f.name for f in self.active_features]
        if len(set(names)) != len(names):
            raise ReflexionConfigError(f"Duplicate active feature names: {names}")
        overlap = set(names) & self.rejected_names
        if overlap:
            raise ReflexionConfigError(
                f"Features both active and rejected: {sorted(overlap)}"
            )
        if self.iteration < 0:
            raise ReflexionConfigError(f"Iteration must be >= 0, got {self.iteration}")

    @property
    def feature_count(self) -> int:
        return len(self.active_features)

    @property
    def active_names(self) -> list[str]:
        return [f.name for f in self.active_features]

    @property
    def rejected_names(self) -> set[str]:
        return {f.name for f in self.rejected_features}

    def is_known(self, name: str) -> bool:
        """True if name is already active or rejected."""
        return name in self.active_names or name in self.rejected_names

    def accept(self, dropped: Feature, candidate: Feature) -> "ReflexionState":
        """Swap dropped for candidate and remember the evicted feature."""
        active = candidate_feature_set(self.active_features, dropped, candidate)
        return ReflexionState(
            active_features=active,
            rejected_features=self.rejected_features + (dropped,),
            iteration=self.iteration + 1,
        )

    def reject(self, candidate: Feature) -> "ReflexionState":
        """Keep the active set and remember the failed newcomer."""
        return ReflexionState(
            active_features=self.active_features,
            rejected_features=self.rejected_features + (candidate,),
            iteration=self.iteration + 1,
        )

    def skip(self) -> "ReflexionState":
        """Advance the iteration counter only."""
        return replace(self, iteration=self.iteration + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_features": [f.to_dict() for f in self.active_features],
            "rejected_features": [f.to_dict() for f in self.rejected_features],
            "iteration": self.iteration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReflexionState":
        return cls(
            active_features=tuple(Feature.from_dict(f) for f in data["active_features"]),
            rejected_features=tuple(
                Feature.from_dict(f) for f in data.get("rejected_features", [])
            ),
            iteration=int(data.get("iteration", 0)),
        )


class Decision(str, Enum):
    """Outcome of one reflexion iteration."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"


@dataclass
class EvaluationReport:
    """Validation metrics of one model, in log and views scale."""
    total_log_error: float
    total_views_error: float
    average_log_error: float
    average_views_error: float
    typical_factor: float  # exp(average_log_error), "off by ~xN"
    average_predicted_views: float
    average_actual_views: float
    count: int
    coefficients: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_log_error": self.total_log_error,
            "total_views_error": self.total_views_error,
            "average_log_error": self.average_log_error,
            "average_views_error": self.average_views_error,
            "typical_factor": self.typical_factor,
            "average_predicted_views": self.average_predicted_views,
            "average_actual_views": self.average_actual_views,
            "count": self.count,
            "coefficients": list(self.coefficients),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EvaluationReport":
        return cls(
            total_log_error=data["total_log_error"],
            total_views_error=data["total_views_error"],
            average_log_error=data["average_log_error"],
            average_views_error=data["average_views_error"],
            typical_factor=data["typical_factor"],
            average_predicted_views=data["average_predicted_views"],
            average_actual_views=data["average_actual_views"],
            count=data["count"],
            coefficients=list(data.get("coefficients", [])),
        )


@dataclass
class IterationRecord:
    """Audit entry for one iteration: state, decision and both validation errors."""
    iteration: int
    decision: Decision
    state: ReflexionState
    dropped_feature: Feature | None = None
    candidate_feature: Feature | None = None
    previous_report: EvaluationReport | None = None
    new_report: EvaluationReport | None = None
    error: str | None = None
    training_titles: list[str] = field(default_factory=list)
    validation_titles: list[str] = field(default_factory=list)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def improved(self) -> bool:
        return self.decision == Decision.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "decision": self.decision.value,
            "state": self.state.to_dict(),
            "dropped_feature": self.dropped_feature.to_dict() if self.dropped_feature else None,
            "candidate_feature": self.candidate_feature.to_dict() if self.candidate_feature else None,
            "previous_report": self.previous_report.to_dict() if self.previous_report else None,
            "new_report": self.new_report.to_dict() if self.new_report else None,
            "error": self.error,
            "training_titles": list(self.training_titles),
            "validation_titles": list(self.validation_titles),
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IterationRecord":
        def feature(key: str) -> Feature | None:
            return Feature.from_dict(data[key]) if data.get(key) else None

        def report(key: str) -> EvaluationReport | None:
            return EvaluationReport.from_dict(data[key]) if data.get(key) else None

        recorded_at = data.get("recorded_at")
        return cls(
            iteration=int(data["iteration"]),
            decision=Decision(data["decision"]),
            state=ReflexionState.from_dict(data["state"]),
            dropped_feature=feature("dropped_feature"),
            candidate_feature=feature("candidate_feature"),
            previous_report=report("previous_report"),
            new_report=report("new_report"),
            error=data.get("error"),
            training_titles=list(data.get("training_titles", [])),
            validation_titles=list(data.get("validation_titles", [])),
            recorded_at=(
                datetime.fromisoformat(recorded_at)
                if recorded_at else datetime.now(timezone.utc)
            ),
        )


@dataclass
class RunResult:
    """Final outcome of a reflexion run."""
    state: ReflexionState
    records: list[IterationRecord] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def active_features(self) -> tuple[Feature, ...]:
        return self.state.active_features

    @property
    def rejected_features(self) -> tuple[Feature, ...]:
        return self.state.rejected_features

    def count(self, decision: Decision) -> int:
        return sum(1 for r in self.records if r.decision == decision)

    @property
    def accepted_count(self) -> int:
        return self.count(Decision.ACCEPTED)

    @property
    def rejected_count(self) -> int:
        return self.count(Decision.REJECTED)

    @property
    def skipped_count(self) -> int:
        return self.count(Decision.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "accepted": self.accepted_count,
            "rejected": self.rejected_count,
            "skipped": self.skipped_count,
            "stopped_early": self.stopped_early,
        }
