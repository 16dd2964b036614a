"""
Reflexion Controller - iterative feature discovery.

One iteration:
1. Train on the active features (training split)
2. Find the least important feature
3. Collect the worst predictions, split by sign
4. Ask the proposer for a replacement
5. Score the candidate on the training split
6. Retrain with (active - dropped + candidate)
7. Evaluate both models on the validation split
8. Accept iff the new model's mean absolute log error is lower

The rejection memory keeps the evicted feature on accept and the failed
candidate on reject, so a feature shown unhelpful is never proposed again.
"""
import logging
import math
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .collaborators import FeatureBootstrapper, FeatureProposer, NullRecorder, RunRecorder
from .error_analysis import evaluate, partition_by_sign, worst_predictions
from .exceptions import (
    ITERATION_ERRORS,
    DuplicateFeatureNameError,
    ProposalError,
    ReflexionConfigError,
)
from .importance import least_important
from .models import (
    Decision,
    EvaluationReport,
    Feature,
    IterationRecord,
    ReflexionState,
    RunResult,
    candidate_feature_set,
)
from .scoring import ScoreBook, ScoringAdapter
from .trainer import Model, log_target, predict, train, views_from_log


logger = logging.getLogger(__name__)


@dataclass
class ReflexionOptions:
    """Loop settings."""
    max_iterations: int = 10
    worst_k: int = 20
    train_fraction: float = 0.8
    feature_count: int | None = None  # Expected K from the bootstrapper, None = any
    proposal_attempts: int = 3  # Proposer / bootstrapper calls before giving up

    def validate(self) -> None:
        if self.max_iterations < 0:
            raise ReflexionConfigError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if self.worst_k < 1:
            raise ReflexionConfigError(f"worst_k must be >= 1, got {self.worst_k}")
        if not 0.0 < self.train_fraction < 1.0:
            raise ReflexionConfigError(
                f"train_fraction must be between 0 and 1, got {self.train_fraction}"
            )
        if self.feature_count is not None and self.feature_count < 1:
            raise ReflexionConfigError(f"feature_count must be >= 1, got {self.feature_count}")
        if self.proposal_attempts < 1:
            raise ReflexionConfigError(
                f"proposal_attempts must be >= 1, got {self.proposal_attempts}"
            )


class ReflexionController:
    """
    Drives the prune / propose / validate loop.

    The controller owns the run's ScoreBook (scores are reused across
    iterations) but never holds the ReflexionState: every step takes a
    state and returns a record carrying the next one.
    """

    def __init__(
        self,
        proposer: FeatureProposer,
        scoring: ScoringAdapter,
        bootstrapper: FeatureBootstrapper | None = None,
        recorder: RunRecorder | None = None,
        options: ReflexionOptions | None = None,
        rng: random.Random | None = None,
        score_book: ScoreBook | None = None,
        target_transform: Callable[[float], float] = log_target,
        inverse_transform: Callable[[float], float] = views_from_log,
        stop_event: threading.Event | None = None,
    ):
        self.proposer = proposer
        self.scoring = scoring
        self.bootstrapper = bootstrapper
        self.recorder = recorder or NullRecorder()
        self.options = options or ReflexionOptions()
        self.options.validate()
        self.rng = rng or random.Random()
        self.score_book = score_book if score_book is not None else ScoreBook()
        self.target_transform = target_transform
        self.inverse_transform = inverse_transform
        self.stop_event = stop_event or threading.Event()

    # ============ Run ============

    def initialize(self, entities: Sequence[Any]) -> ReflexionState:
        """
        Bootstrap the initial features and score them for every entity.

        Raises:
            ReflexionConfigError: if no bootstrapper is configured or it
                returns an invalid feature set
        """
        if self.bootstrapper is None:
            raise ReflexionConfigError("No bootstrapper configured and no initial state given")

        features = self._with_attempts(
            "Bootstrap", lambda: list(self.bootstrapper.bootstrap_features(entities))
        )
        expected = self.options.feature_count
        if expected is not None and len(features) != expected:
            raise ReflexionConfigError(
                f"Bootstrapper returned {len(features)} features, expected {expected}"
            )
        state = ReflexionState(active_features=tuple(features))
        logger.info(f"Initial features: {', '.join(state.active_names)}")

        self._ensure_scored(entities, state.active_features)
        return state

    def run(
        self,
        entities: Sequence[Any],
        state: ReflexionState | None = None,
    ) -> RunResult:
        """
        Run up to max_iterations iterations, or until stop() is called.

        Args:
            entities: All videos; re-split 80/20 every iteration
            state: State to resume from (bootstraps when None)

        Returns:
            RunResult with the best-known active features and rejection history
        """
        aux_dim = self._check_entities(entities)
        if state is None:
            state = self.initialize(entities)
        else:
            state.validate()

        logger.info(
            f"Starting reflexion with {len(entities)} videos, "
            f"{state.feature_count} features, up to {self.options.max_iterations} iterations"
        )

        result = RunResult(state=state)
        for _ in range(self.options.max_iterations):
            if self.stop_event.is_set():
                logger.info("Stop requested, ending run")
                result.stopped_early = True
                break

            training, validation = self.split(entities)
            record = self.step(result.state, training, validation, aux_dim)
            result.state = record.state
            result.records.append(record)
            self._record(self.recorder.record_iteration, record)

        logger.info(
            f"Reflexion complete: {result.accepted_count} accepted, "
            f"{result.rejected_count} rejected, {result.skipped_count} skipped"
        )
        logger.info(f"Final features: {', '.join(result.state.active_names)}")
        logger.info(
            f"Rejected features: {', '.join(f.name for f in result.rejected_features) or '-'}"
        )
        self._record(self.recorder.record_run, result)
        return result

    def stop(self) -> None:
        """Ask the run to end before the next iteration."""
        self.stop_event.set()

    def split(self, entities: Sequence[Any]) -> tuple[list[Any], list[Any]]:
        """Shuffle and split into (training, validation)."""
        shuffled = list(entities)
        self.rng.shuffle(shuffled)
        training_size = math.floor(len(shuffled) * self.options.train_fraction)
        return shuffled[:training_size], shuffled[training_size:]

    # ============ Iteration ============

    def step(
        self,
        state: ReflexionState,
        training: Sequence[Any],
        validation: Sequence[Any],
        aux_dim: int,
    ) -> IterationRecord:
        """
        Run one iteration.

        Scoring, proposal and data-size failures are logged and produce a
        SKIPPED record whose state only advances the iteration counter.
        """
        index = state.iteration
        active = list(state.active_features)
        dropped: Feature | None = None
        candidate: Feature | None = None
        titles = {
            "training_titles": [e.identifier for e in training],
            "validation_titles": [e.identifier for e in validation],
        }

        logger.info(
            f"Reflexion step #{index} with {len(active)} features: "
            f"{', '.join(state.active_names)}"
        )

        try:
            self._ensure_scored(training, active)
            X, Y = self._design(training, active)
            model = train(X, Y)
            logger.debug(
                "Model coefficients: " + ", ".join(f"{c:.4f}" for c in model.coefficients)
            )

            weakest = least_important(model, state.active_names, aux_dim)
            dropped = active[weakest.index]
            logger.info(
                f"Least important feature: {dropped.name} "
                f"(importance: {weakest.importance:.4f})"
            )

            worst = worst_predictions(
                training, model, X, Y, self.options.worst_k, self.inverse_transform
            )
            under, over = partition_by_sign(worst)

            kept = [f for f in active if f.name != dropped.name]
            rejected = list(state.rejected_features)
            if dropped.name not in state.rejected_names:
                rejected.append(dropped)

            candidate = self._propose(kept, under, over, rejected)
            self._check_candidate(state, candidate)
            logger.info(f"Training new model with feature: {candidate.name}")

            self._ensure_scored(training, [candidate])
            candidates = list(candidate_feature_set(active, dropped, candidate))
            X_new, _ = self._design(training, candidates)
            new_model = train(X_new, Y)

            self._ensure_scored(validation, active + [candidate])
            logger.info("Evaluating previous model on validation set...")
            previous_report = self._validate(model, validation, active)
            logger.info("Evaluating new model on validation set...")
            new_report = self._validate(new_model, validation, candidates)

        except ITERATION_ERRORS as e:
            logger.error(f"Error during reflexion step {index}: {e}")
            return IterationRecord(
                iteration=index,
                decision=Decision.SKIPPED,
                state=state.skip(),
                dropped_feature=dropped,
                candidate_feature=candidate,
                error=f"{type(e).__name__}: {e}",
                **titles,
            )

        improved = new_report.average_log_error < previous_report.average_log_error
        logger.info(
            f"Validation error: previous={previous_report.average_log_error:.4f} "
            f"(~x{previous_report.typical_factor:.2f}), "
            f"new={new_report.average_log_error:.4f} (~x{new_report.typical_factor:.2f})"
        )

        if improved:
            next_state = state.accept(dropped, candidate)
            decision = Decision.ACCEPTED
            logger.info(f"Improved. New features: {', '.join(next_state.active_names)}")
        else:
            next_state = state.reject(candidate)
            decision = Decision.REJECTED
            logger.info(
                f"No improvement. Failed features: "
                f"{', '.join(f.name for f in next_state.rejected_features)}"
            )

        return IterationRecord(
            iteration=index,
            decision=decision,
            state=next_state,
            dropped_feature=dropped,
            candidate_feature=candidate,
            previous_report=previous_report,
            new_report=new_report,
            **titles,
        )

    # ============ Helpers ============

    def _with_attempts(self, label: str, call: Callable[[], Any]) -> Any:
        """Call up to options.proposal_attempts times, retrying on ProposalError."""
        attempts = self.options.proposal_attempts
        for attempt in range(1, attempts + 1):
            try:
                return call()
            except ProposalError as e:
                if attempt == attempts:
                    raise
                logger.warning(f"{label} attempt {attempt}/{attempts} failed: {e}")

    def _propose(self, kept, under, over, rejected) -> Feature:
        def call() -> Feature:
            try:
                candidate = self.proposer.propose_feature(kept, under, over, rejected)
            except ProposalError:
                raise
            except Exception as e:
                raise ProposalError(f"Feature proposer failed: {e}") from e
            if not isinstance(candidate, Feature) or not candidate.name:
                raise ProposalError(f"Proposer returned an unusable feature: {candidate!r}")
            return candidate

        return self._with_attempts("Proposal", call)

    @staticmethod
    def _check_candidate(state: ReflexionState, candidate: Feature) -> None:
        if state.is_known(candidate.name):
            where = "active" if candidate.name in state.active_names else "rejected"
            raise DuplicateFeatureNameError(
                f"Proposed feature '{candidate.name}' is already {where}"
            )

    def _ensure_scored(self, entities: Sequence[Any], features: Sequence[Feature]) -> None:
        """Score every (entity, feature) pair the ScoreBook doesn't have yet."""
        for feature in features:
            missing = self.score_book.missing(entities, feature)
            if not missing:
                continue
            scores = self.scoring.score(missing, feature)
            self.score_book.update(feature.name, scores)

    def _design(
        self,
        entities: Sequence[Any],
        features: Sequence[Feature],
    ) -> tuple[list[list[float]], list[float]]:
        """Model inputs (covariates then feature scores) and log targets."""
        X = [
            list(e.covariates) + self.score_book.vector(e, features)
            for e in entities
        ]
        Y = [self.target_transform(e.target) for e in entities]
        return X, Y

    def _validate(
        self,
        model: Model,
        entities: Sequence[Any],
        features: Sequence[Feature],
    ) -> EvaluationReport:
        X, Y = self._design(entities, features)
        predictions = predict(model, X)
        return evaluate(predictions, Y, model, self.inverse_transform)

    @staticmethod
    def _check_entities(entities: Sequence[Any]) -> int:
        """Validate the dataset and return the auxiliary covariate width."""
        if not entities:
            raise ReflexionConfigError("No entities to run reflexion on")
        widths = {len(e.covariates) for e in entities}
        if len(widths) != 1:
            raise ReflexionConfigError(
                f"Entities have inconsistent covariate widths: {sorted(widths)}"
            )
        return widths.pop()

    @staticmethod
    def _record(method: Callable[[Any], None], payload: Any) -> None:
        try:
            method(payload)
        except Exception as e:
            logger.error(f"Failed to record reflexion progress: {e}")
