"""
Scorer Adapter - batched, concurrent, retried entity scoring

Provides:
- Batching of entities per scoring call (size depends on the backing model)
- Concurrent batch dispatch bounded by a semaphore
- Per-batch retry of the still-missing subset (3 attempts by default)
- A run-wide ScoreBook so each (entity, feature) pair is scored once
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from src.logging_config import create_feature_logger
from .collaborators import EntityScorer
from .exceptions import ScoringError
from .models import Feature, normalize_identifier

logger = logging.getLogger(__name__)

SCORE_MIN = 0.0
SCORE_MAX = 10.0


@dataclass
class ScoringPolicy:
    """Batching and retry settings for the scorer adapter."""
    batch_size: int = 20
    max_attempts: int = 3
    max_concurrent: int = 4


def default_batch_size(provider: str, feature_count: int = 1) -> int:
    """
    Batch size by backing model.

    Local OpenAI-compatible models get small batches; Gemini-hosted models
    take 40 titles when scoring a single feature and 20 otherwise.
    """
    if provider == "openai":
        return 10
    return 40 if feature_count == 1 else 20


def coerce_score(value: Any) -> float | None:
    """Parse a model-supplied score, clamped to [0, 10]. None if unusable."""
    if isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or math.isinf(score):
        return None
    return min(SCORE_MAX, max(SCORE_MIN, score))


class ScoreBook:
    """
    Per-entity feature scores collected during a run.

    Keyed by entity identifier, then feature name.
    """

    def __init__(self, scores: Mapping[str, Mapping[str, float]] | None = None):
        self._scores: dict[str, dict[str, float]] = {
            ident: dict(values) for ident, values in (scores or {}).items()
        }

    def has(self, identifier: str, feature_name: str) -> bool:
        return feature_name in self._scores.get(identifier, {})

    def get(self, identifier: str, feature_name: str) -> float:
        try:
            return self._scores[identifier][feature_name]
        except KeyError:
            raise ScoringError(
                f"No score for '{identifier}' on feature '{feature_name}'"
            ) from None

    def update(self, feature_name: str, scores: Mapping[str, float]) -> None:
        for identifier, score in scores.items():
            self._scores.setdefault(identifier, {})[feature_name] = score

    def missing(self, entities: Iterable[Any], feature: Feature) -> list[Any]:
        """Entities with no score yet for feature (first occurrence of each identifier)."""
        seen: set[str] = set()
        result = []
        for entity in entities:
            ident = entity.identifier
            if ident in seen or self.has(ident, feature.name):
                continue
            seen.add(ident)
            result.append(entity)
        return result

    def vector(self, entity: Any, features: Sequence[Feature]) -> list[float]:
        """Scores of entity in the given feature order."""
        return [self.get(entity.identifier, f.name) for f in features]

    def scores_for(self, identifier: str) -> dict[str, float]:
        return dict(self._scores.get(identifier, {}))

    def __len__(self) -> int:
        return len(self._scores)

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {ident: dict(values) for ident, values in self._scores.items()}


class ScoringAdapter:
    """
    Scores every entity against a feature through an EntityScorer.

    Batches are dispatched concurrently; the blocking scorer runs in worker
    threads. Each batch returns its own mapping and the results are merged
    only after all batches are done.
    """

    def __init__(self, scorer: EntityScorer, policy: ScoringPolicy | None = None):
        self.scorer = scorer
        self.policy = policy or ScoringPolicy()
        if self.policy.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.policy.batch_size}")
        if self.policy.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.policy.max_attempts}")

    def score(self, entities: Sequence[Any], feature: Feature) -> dict[str, float]:
        """
        Synchronous wrapper for score_async.

        Returns:
            identifier -> score for every entity

        Raises:
            ScoringError: if any batch is still incomplete after max_attempts
        """
        if not entities:
            return {}
        return asyncio.run(self.score_async(entities, feature))

    async def score_async(
        self,
        entities: Sequence[Any],
        feature: Feature,
    ) -> dict[str, float]:
        unique: dict[str, Any] = {}
        for entity in entities:
            unique.setdefault(entity.identifier, entity)
        pending = list(unique.values())
        if not pending:
            return {}

        size = self.policy.batch_size
        batches = [pending[i:i + size] for i in range(0, len(pending), size)]
        semaphore = asyncio.Semaphore(max(1, self.policy.max_concurrent))

        logger.info(
            f"Scoring {len(pending)} entities in {len(batches)} batches",
            extra={"feature": feature.name},
        )

        results = await asyncio.gather(
            *(self._score_batch(batch, feature, semaphore) for batch in batches),
            return_exceptions=True,
        )

        merged: dict[str, float] = {}
        failures: list[BaseException] = []
        for result in results:
            if isinstance(result, BaseException):
                failures.append(result)
            else:
                merged.update(result)

        if failures:
            first = failures[0]
            if isinstance(first, ScoringError):
                raise first
            raise ScoringError(f"Scoring failed for '{feature.name}': {first}") from first

        return merged

    async def _score_batch(
        self,
        batch: list[Any],
        feature: Feature,
        semaphore: asyncio.Semaphore,
    ) -> dict[str, float]:
        """Score one batch, retrying only the entities still missing."""
        log = create_feature_logger(logger, feature.name)
        by_key = {normalize_identifier(e.identifier): e for e in batch}
        scored: dict[str, float] = {}
        missing = list(batch)
        last_error: Exception | None = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                async with semaphore:
                    reply = await asyncio.to_thread(
                        self.scorer.score_entities, missing, feature
                    )
            except Exception as e:
                last_error = e
                log.warning(f"Scoring attempt {attempt}/{self.policy.max_attempts} failed: {e}")
                continue

            for identifier, value in (reply or {}).items():
                entity = by_key.get(normalize_identifier(str(identifier)))
                if entity is None:
                    continue
                score = coerce_score(value)
                if score is None:
                    continue
                scored[entity.identifier] = score

            missing = [e for e in batch if e.identifier not in scored]
            if not missing:
                return scored

            log.warning(
                f"Attempt {attempt}/{self.policy.max_attempts}: "
                f"{len(missing)} of {len(batch)} entities unscored",
            )

        message = (
            f"{len(missing)} of {len(batch)} entities unscored for '{feature.name}' "
            f"after {self.policy.max_attempts} attempts"
        )
        if last_error is not None:
            message += f" (last error: {last_error})"
        raise ScoringError(message)
