"""
Reflexion Module - iterative, model-guided feature discovery.

Improves a linear predictor of video views by alternately:
- Pruning the least important title feature
- Proposing a replacement from the worst predictions
- Validating the swap on held-out videos before accepting it

Rejected features are remembered so they are never proposed again.
"""
from .controller import ReflexionController, ReflexionOptions
from .exceptions import (
    DimensionMismatchError,
    DuplicateFeatureNameError,
    InsufficientDataError,
    ProposalError,
    ReflexionConfigError,
    ReflexionError,
    ScoringError,
)
from .models import (
    Decision,
    EvaluationReport,
    EvidenceEntity,
    Feature,
    IterationRecord,
    ReflexionState,
    RunResult,
    Video,
)
from .recorder import CompositeRecorder, JsonRunRecorder
from .scoring import ScoreBook, ScoringAdapter, ScoringPolicy

__all__ = [
    "ReflexionController",
    "ReflexionOptions",
    "ReflexionState",
    "RunResult",
    "IterationRecord",
    "Decision",
    "EvaluationReport",
    "EvidenceEntity",
    "Feature",
    "Video",
    "ScoreBook",
    "ScoringAdapter",
    "ScoringPolicy",
    "JsonRunRecorder",
    "CompositeRecorder",
    "ReflexionError",
    "ReflexionConfigError",
    "InsufficientDataError",
    "DimensionMismatchError",
    "ScoringError",
    "ProposalError",
    "DuplicateFeatureNameError",
]
