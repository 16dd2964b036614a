"""
Prompts for the LLM-backed reflexion collaborators.

1. Contrast top and bottom videos to bootstrap the initial features
2. Score a batch of titles 0-10 against one feature
3. Propose the most critical missing feature from the worst predictions
"""
from typing import Sequence

from .error_analysis import format_views
from .models import EvidenceEntity, Feature, Video


def _format_features(features: Sequence[Feature]) -> str:
    if not features:
        return "(none)"
    return "\n".join(
        f"{i + 1}. {f.name} ({f.summary}): {f.description}"
        for i, f in enumerate(features)
    )


def _format_predictions(predictions: Sequence[EvidenceEntity]) -> str:
    if not predictions:
        return "(none)"
    return "\n".join(
        f'- "{p.title}": Actual views = {format_views(p.actual)}, '
        f"Predicted views = {format_views(p.predicted)}"
        for p in predictions
    )


def build_contrast_prompt(
    top_videos: Sequence[Video],
    bottom_videos: Sequence[Video],
    feature_count: int,
) -> str:
    """Ask for the title features that separate top from bottom performers."""
    top = "\n".join(f"- {v.title} ({format_views(v.views)} views)" for v in top_videos)
    bottom = "\n".join(f"- {v.title} ({format_views(v.views)} views)" for v in bottom_videos)

    return f"""You are a data analyst tasked with understanding why some YouTube titles perform better than others.

You will be provided with two lists of YouTube titles for a given channel.
One list contains the {len(top_videos)} top performing titles (based on view counts).
The second list contains the {len(bottom_videos)} bottom performing titles.

Your task is to identify the key features in the title that contribute the most to performance.

For each feature, provide a name for the feature, a one-sentence summary, and a detailed description.
The description should include examples that illustrate why the feature is important.

Please provide exactly {feature_count} distinct features that are mutually exclusive and collectively exhaustive.

Respond in JSON: {{"features": [{{"name": "...", "summary": "...", "description": "..."}}]}}

Top videos:
{top}

Bottom videos:
{bottom}
"""


def build_scoring_prompt(videos: Sequence[Video], feature: Feature) -> str:
    """Ask for a 0-10 score per title for a single feature."""
    titles = "\n".join(f"- {v.title}" for v in videos)

    return f"""You are a data analyst helping to predict the performance of YouTube videos.

You will be provided with a list of YouTube video titles for a given channel, and one
feature identified as important for video performance.

For each video, provide a score from 0 to 10 describing how strongly the title exhibits the feature.
Copy every title exactly as written.

Respond in JSON: {{"scores": [{{"title": "...", "score": 0}}]}}

Feature:
{feature.name} ({feature.summary}): {feature.description}

Videos:
{titles}
"""


def build_proposal_prompt(
    features: Sequence[Feature],
    worst_under: Sequence[EvidenceEntity],
    worst_over: Sequence[EvidenceEntity],
    rejected: Sequence[Feature],
) -> str:
    """Ask for one missing title feature that would fix the worst predictions."""
    return f"""You are a senior data analyst reviewing a model that predicts YouTube video title performance.

Your task is to improve the model by identifying and adding the most critical missing feature.

You will be provided with the existing set of title features used by the model.
The goal is to identify an additional title feature that is not currently included,
but which would significantly enhance the model's predictive accuracy.

To help you with this task, you will be provided with the model's worst predictions,
split into those that underestimated performance and those that overestimated it.

You will also be provided with failed title features that were previously tried but did
not improve the model. Do not suggest any of them again, and use a new, unique name.

Respond in JSON: {{"name": "...", "summary": "...", "description": "..."}}

Existing features:
{_format_features(features)}

Underestimated (actual views above prediction):
{_format_predictions(worst_under)}

Overestimated (actual views below prediction):
{_format_predictions(worst_over)}

Failed features:
{_format_features(rejected)}
"""
