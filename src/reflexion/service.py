"""
LLM-backed collaborators for the reflexion loop.

- LLMFeatureBootstrapper: contrasts top vs bottom videos for the initial features
- LLMEntityScorer: scores a batch of titles against one feature
- LLMFeatureProposer: proposes a replacement from the worst predictions

Replies are parsed just enough to build typed values; anything else is
raised as ProposalError / ScoringError for the controller to handle.
"""
import json
import logging
from typing import Any, Sequence

from src.config import config
from src.llm import LLMClient, get_llm_client
from .exceptions import ProposalError, ScoringError
from .models import EvidenceEntity, Feature, Video
from .prompts import (
    build_contrast_prompt,
    build_proposal_prompt,
    build_scoring_prompt,
)


logger = logging.getLogger(__name__)

CONTRAST_VIDEO_COUNT = 20


def extract_json(response: str) -> Any:
    """
    Pull the JSON payload out of a model reply.

    Handles markdown code blocks and leading/trailing chatter.

    Raises:
        ValueError: if no JSON object or array can be parsed
    """
    cleaned = response.strip()
    if "```json" in cleaned:
        start = cleaned.find("```json") + 7
        end = cleaned.find("```", start)
        cleaned = cleaned[start:end if end != -1 else None].strip()
    elif "```" in cleaned:
        start = cleaned.find("```") + 3
        end = cleaned.find("```", start)
        cleaned = cleaned[start:end if end != -1 else None].strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object or array, whichever starts first
    first_brace = cleaned.find("{")
    first_bracket = cleaned.find("[")
    candidates = []
    if first_brace != -1:
        candidates.append((first_brace, cleaned.rfind("}")))
    if first_bracket != -1:
        candidates.append((first_bracket, cleaned.rfind("]")))

    for start, end in sorted(candidates):
        if end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                continue

    raise ValueError("No valid JSON object or array found in response")


def parse_feature(data: Any) -> Feature:
    """Build a Feature from a {name, summary, description} dict."""
    if not isinstance(data, dict):
        raise ValueError(f"Expected a feature object, got {type(data).__name__}")
    name = str(data.get("name", "")).strip()
    if not name:
        raise ValueError("Feature has no name")
    return Feature(
        name=name,
        summary=str(data.get("summary", "")).strip(),
        description=str(data.get("description", "")).strip(),
    )


class LLMFeatureBootstrapper:
    """Initial feature set from a top-vs-bottom contrast prompt."""

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        feature_count: int | None = None,
        model: str | None = None,
    ):
        self.llm_client = llm_client or get_llm_client()
        self.feature_count = feature_count or config.reflexion.feature_count
        self.model_name = model or config.llm.proposal_model

    @staticmethod
    def contrast_videos(
        videos: Sequence[Video],
        count: int = CONTRAST_VIDEO_COUNT,
    ) -> tuple[list[Video], list[Video]]:
        """Top and bottom `count` videos by views, never overlapping."""
        ranked = sorted(videos, key=lambda v: v.views, reverse=True)
        count = min(count, len(ranked) // 2)
        if count == 0:
            return [], []
        return ranked[:count], ranked[-count:]

    def bootstrap_features(self, entities: Sequence[Video]) -> list[Feature]:
        top, bottom = self.contrast_videos(entities)
        prompt = build_contrast_prompt(top, bottom, self.feature_count)

        response = self.llm_client.generate(
            prompt=prompt,
            model=self.model_name,
            temperature=0.3,
            json_mode=True,
        )
        try:
            data = extract_json(response.content)
            items = data.get("features", []) if isinstance(data, dict) else data
            features = [parse_feature(item) for item in items]
        except (ValueError, TypeError, AttributeError) as e:
            raise ProposalError(f"Invalid bootstrap response: {e}") from e

        names = [f.name for f in features]
        if len(set(names)) != len(names):
            raise ProposalError(f"Bootstrap returned duplicate feature names: {names}")

        logger.info(f"Bootstrapped {len(features)} features: {', '.join(names)}")
        return features


class LLMEntityScorer:
    """Scores titles 0-10 for one feature. Missing titles are left to the adapter's retry."""

    def __init__(self, llm_client: LLMClient | None = None, model: str | None = None):
        self.llm_client = llm_client or get_llm_client()
        self.model_name = model or config.llm.scoring_model

    def score_entities(self, entities: Sequence[Video], feature: Feature) -> dict[str, float]:
        prompt = build_scoring_prompt(entities, feature)
        try:
            response = self.llm_client.generate(
                prompt=prompt,
                model=self.model_name,
                temperature=0.1,
                json_mode=True,
            )
        except Exception as e:
            raise ScoringError(f"Scoring request failed: {e}") from e

        try:
            return self._parse_scores(response.content)
        except (ValueError, TypeError, AttributeError) as e:
            raise ScoringError(f"Invalid scoring response: {e}") from e

    @staticmethod
    def _parse_scores(content: str) -> dict[str, float]:
        data = extract_json(content)
        items = data.get("scores", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ValueError("Expected a list of scores")

        scores: dict[str, Any] = {}
        for item in items:
            if not isinstance(item, dict) or "title" not in item:
                continue
            # Range/number checks happen in the scoring adapter
            scores[str(item["title"])] = item.get("score")
        return scores


class LLMFeatureProposer:
    """Proposes the most critical missing feature."""

    def __init__(self, llm_client: LLMClient | None = None, model: str | None = None):
        self.llm_client = llm_client or get_llm_client()
        self.model_name = model or config.llm.proposal_model

    def propose_feature(
        self,
        active_features: Sequence[Feature],
        worst_under: Sequence[EvidenceEntity],
        worst_over: Sequence[EvidenceEntity],
        rejected: Sequence[Feature],
    ) -> Feature:
        prompt = build_proposal_prompt(active_features, worst_under, worst_over, rejected)
        try:
            response = self.llm_client.generate(
                prompt=prompt,
                model=self.model_name,
                temperature=0.7,
                json_mode=True,
            )
        except Exception as e:
            raise ProposalError(f"Proposal request failed: {e}") from e

        try:
            feature = parse_feature(extract_json(response.content))
        except (ValueError, TypeError) as e:
            raise ProposalError(f"Invalid proposal response: {e}") from e

        logger.info(f"Proposed feature: {feature.name} ({feature.summary})")
        return feature
