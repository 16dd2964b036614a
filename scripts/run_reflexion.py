#!/usr/bin/env python3
"""
Reflexion Script

Runs the feature-discovery loop for one channel:
1. Loads the channel's videos and derives recent-view covariates
2. Bootstraps title features (or resumes from a previous run directory)
3. Iterates prune -> propose -> score -> validate -> accept/reject
4. Saves every iteration and the final features

Ctrl+C asks the loop to stop after the current iteration.
"""
import argparse
import random
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import config
from src.data.video_loader import load_videos
from src.llm import get_llm_client
from src.logging_config import get_logger, setup_logging
from src.reflexion import (
    CompositeRecorder,
    JsonRunRecorder,
    ReflexionController,
    ReflexionError,
    ReflexionOptions,
    ScoringAdapter,
    ScoringPolicy,
)
from src.reflexion.scoring import default_batch_size
from src.reflexion.service import (
    LLMEntityScorer,
    LLMFeatureBootstrapper,
    LLMFeatureProposer,
)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Iterative title feature discovery for video view prediction"
    )
    parser.add_argument("videos", type=Path, help="Video export (.json or .csv)")
    parser.add_argument(
        "--out",
        type=Path,
        default=Path("data/reflexion"),
        help="Run directory for iteration records (default: data/reflexion)",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=config.reflexion.max_iterations,
        help="Maximum number of iterations",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=config.reflexion.seed,
        help="Seed for the train/validation shuffles",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume from the state saved in --out if available",
    )
    parser.add_argument(
        "--supabase",
        action="store_true",
        help="Also record iterations to Supabase",
    )
    parser.add_argument(
        "--run-id",
        help="Run ID for Supabase records; with --resume, continues that run",
    )
    return parser.parse_args()


def main():
    """Run the reflexion loop."""
    args = parse_args()

    run_id = args.run_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    setup_logging(run_id=run_id)
    logger = get_logger(__name__)

    logger.info("=" * 50)
    logger.info(f"Starting reflexion run {run_id}")
    logger.info("=" * 50)

    try:
        videos = load_videos(args.videos, recent_count=config.reflexion.recent_videos)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Failed to load videos: {e}")
        sys.exit(1)

    json_recorder = JsonRunRecorder(args.out)
    recorder = json_recorder
    supabase_recorder = None
    if args.supabase:
        from src.data.supabase_client import SupabaseRunRecorder
        supabase_recorder = SupabaseRunRecorder(run_id=run_id)
        recorder = CompositeRecorder(json_recorder, supabase_recorder)

    try:
        llm_client = get_llm_client()
    except ValueError as e:
        logger.error(f"Failed to initialize LLM client: {e}")
        sys.exit(1)

    policy = ScoringPolicy(
        batch_size=config.scoring.batch_size or default_batch_size(config.llm.provider),
        max_attempts=config.scoring.max_attempts,
        max_concurrent=config.scoring.max_concurrent,
    )
    controller = ReflexionController(
        proposer=LLMFeatureProposer(llm_client),
        scoring=ScoringAdapter(LLMEntityScorer(llm_client), policy),
        bootstrapper=LLMFeatureBootstrapper(llm_client, config.reflexion.feature_count),
        recorder=recorder,
        options=ReflexionOptions(
            max_iterations=args.iterations,
            worst_k=config.reflexion.worst_k,
            train_fraction=config.reflexion.train_fraction,
            feature_count=config.reflexion.feature_count,
            proposal_attempts=config.reflexion.proposal_attempts,
        ),
        rng=random.Random(args.seed),
        score_book=json_recorder.load_scores() if args.resume else None,
    )

    signal.signal(signal.SIGINT, lambda *_: controller.stop())

    state = None
    if args.resume:
        state = json_recorder.load_state()
        if state is None and supabase_recorder is not None:
            state = supabase_recorder.client.get_latest_state(run_id)
    if state is not None:
        logger.info(f"Resuming from iteration {state.iteration}")

    try:
        result = controller.run(videos, state=state)
    except ReflexionError as e:
        logger.error(f"Reflexion run failed: {e}")
        sys.exit(1)
    finally:
        json_recorder.save_scores(controller.score_book)
        logger.info(f"Saved scores for {len(controller.score_book)} videos")

    logger.info("Final features:")
    for feature in result.active_features:
        logger.info(f"  - {feature.name}: {feature.summary}")
    logger.info(f"Failed features: {', '.join(f.name for f in result.rejected_features) or '-'}")


if __name__ == "__main__":
    main()
