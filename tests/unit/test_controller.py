"""
Tests for the reflexion controller (src/reflexion/controller.py).

Views are generated as an exact log-linear function of known feature
scores, so whether a swap helps on validation is decided by construction:
- dropping a feature with a non-zero weight for a noise feature hurts
- swapping a zero-weight feature for the hidden signal feature helps

Covers:
- All-rejected runs leave the active set unchanged
- Accepted swaps and the rejection memory
- Equal validation error counts as no improvement
- Bounded retries of bad proposer / bootstrapper replies
- Fixed feature count and active/rejected disjointness
- Skipped iterations (scoring, proposal, duplicate, data-size failures)
- Stop requests, resuming and recorder calls
"""
import math
import random
import threading
from unittest.mock import MagicMock

import pytest

from src.reflexion.controller import ReflexionController, ReflexionOptions
from src.reflexion.exceptions import ProposalError, ReflexionConfigError, ScoringError
from src.reflexion.models import Decision, ReflexionState, Video
from src.reflexion.scoring import ScoreBook, ScoringAdapter, ScoringPolicy
from conftest import FakeBootstrapper, FakeProposer, FakeScorer, make_feature


INITIAL = ("length", "question", "number")


def feature_score(title: str, feature: str) -> float:
    return float(random.Random(f"{title}|{feature}").randint(0, 10))


def build_videos(weights: dict[str, float], n: int = 60) -> list[Video]:
    """Videos whose log views are exactly 6 + 0.1 * aux + sum(w * score)."""
    rng = random.Random(7)
    videos = []
    for i in range(n):
        title = f"Video {i}"
        aux = rng.uniform(7.0, 12.0)
        log_views = 6.0 + 0.1 * aux + sum(
            w * feature_score(title, name) for name, w in weights.items()
        )
        videos.append(Video(title=title, views=math.exp(log_views) - 1.0, recent_views=(aux,)))
    return videos


def build_controller(proposer, scorer=None, max_iterations=3, proposal_attempts=3, **kwargs):
    scorer = scorer or FakeScorer(feature_score)
    return ReflexionController(
        proposer=proposer,
        scoring=ScoringAdapter(scorer, ScoringPolicy(batch_size=25, max_attempts=1)),
        bootstrapper=FakeBootstrapper([make_feature(n) for n in INITIAL]),
        options=ReflexionOptions(
            max_iterations=max_iterations,
            worst_k=10,
            feature_count=3,
            proposal_attempts=proposal_attempts,
        ),
        rng=random.Random(0),
        **kwargs,
    )


@pytest.fixture
def exact_videos():
    """Views fully explained by the initial features."""
    return build_videos({"length": 0.3, "question": 0.2, "number": 0.1})


@pytest.fixture
def hidden_signal_videos():
    """'number' carries nothing, the missing 'hidden' feature does."""
    return build_videos({"length": 0.3, "question": 0.2, "number": 0.0, "hidden": 0.15})


class TestAllRejected:
    def test_active_set_unchanged(self, exact_videos):
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(3)])
        controller = build_controller(proposer)

        result = controller.run(exact_videos)

        assert [r.decision for r in result.records] == [Decision.REJECTED] * 3
        assert [f.name for f in result.active_features] == list(INITIAL)
        assert [f.name for f in result.rejected_features] == ["noise0", "noise1", "noise2"]
        assert result.state.iteration == 3

    def test_drops_weakest_and_reports_errors(self, exact_videos):
        proposer = FakeProposer([make_feature("noise0")])
        controller = build_controller(proposer, max_iterations=1)

        [record] = controller.run(exact_videos).records

        assert record.dropped_feature.name == "number"
        assert record.candidate_feature.name == "noise0"
        assert record.previous_report.average_log_error < 1e-6
        assert record.new_report.average_log_error > record.previous_report.average_log_error

    def test_proposer_sees_dropped_feature_as_rejected(self, exact_videos):
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(2)])
        controller = build_controller(proposer, max_iterations=2)

        controller.run(exact_videos)

        assert proposer.calls[0]["active"] == ["length", "question"]
        assert proposer.calls[0]["rejected"] == ["number"]
        assert proposer.calls[1]["rejected"] == ["noise0", "number"]

    def test_worst_predictions_are_split_by_sign(self, exact_videos):
        proposer = FakeProposer([make_feature("noise0")])
        controller = build_controller(proposer, max_iterations=1)

        controller.run(exact_videos)

        call = proposer.calls[0]
        assert len(call["under"]) + len(call["over"]) <= 10
        assert all(e.signed_delta < 0 for e in call["under"])
        assert all(e.signed_delta > 0 for e in call["over"])


class TestAccepted:
    def test_swap_accepted_when_validation_improves(self, hidden_signal_videos):
        proposer = FakeProposer([make_feature("hidden")])
        controller = build_controller(proposer, max_iterations=1)

        result = controller.run(hidden_signal_videos)

        [record] = result.records
        assert record.decision == Decision.ACCEPTED
        assert record.improved
        assert record.new_report.average_log_error < record.previous_report.average_log_error
        assert [f.name for f in result.active_features] == ["length", "question", "hidden"]
        assert [f.name for f in result.rejected_features] == ["number"]

    def test_evicted_feature_cannot_return(self, hidden_signal_videos):
        proposer = FakeProposer([make_feature("hidden"), make_feature("number")])
        controller = build_controller(proposer, max_iterations=2)

        result = controller.run(hidden_signal_videos)

        assert result.records[1].decision == Decision.SKIPPED
        assert "DuplicateFeatureNameError" in result.records[1].error
        assert "number" not in result.state.active_names

    def test_equal_validation_error_is_rejected(self, exact_videos):
        # The candidate scores every video exactly like the dropped feature
        def score(title, feature):
            return feature_score(title, "number" if feature == "number_copy" else feature)

        proposer = FakeProposer([make_feature("number_copy")])
        controller = build_controller(proposer, scorer=FakeScorer(score), max_iterations=1)

        result = controller.run(exact_videos)

        [record] = result.records
        assert record.dropped_feature.name == "number"
        assert record.new_report.average_log_error == record.previous_report.average_log_error
        assert record.decision == Decision.REJECTED
        assert result.state.active_names == list(INITIAL)
        assert result.state.rejected_names == {"number_copy"}


class FlakyProposer(FakeProposer):
    """Fails the first `failures` calls with a bad-reply ProposalError."""

    def __init__(self, features, failures=1):
        super().__init__(features)
        self.failures = failures
        self.attempts = 0

    def propose_feature(self, *args):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ProposalError("Invalid proposal response: no JSON")
        return super().propose_feature(*args)


class FlakyBootstrapper(FakeBootstrapper):
    def __init__(self, features, failures=1):
        super().__init__(features)
        self.failures = failures
        self.attempts = 0

    def bootstrap_features(self, entities):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ProposalError("Invalid bootstrap response: no JSON")
        return super().bootstrap_features(entities)


class TestProposalRetries:
    def test_bad_reply_is_retried_within_the_iteration(self, exact_videos):
        proposer = FlakyProposer([make_feature("noise0")], failures=1)
        controller = build_controller(proposer, max_iterations=1)

        [record] = controller.run(exact_videos).records

        assert proposer.attempts == 2
        assert record.decision == Decision.REJECTED
        assert record.candidate_feature.name == "noise0"

    def test_skipped_after_attempts_run_out(self, exact_videos):
        proposer = FlakyProposer([make_feature("noise0")], failures=3)
        controller = build_controller(proposer, max_iterations=1, proposal_attempts=3)

        [record] = controller.run(exact_videos).records

        assert proposer.attempts == 3
        assert record.decision == Decision.SKIPPED
        assert "ProposalError" in record.error

    def test_single_attempt_does_not_retry(self, exact_videos):
        proposer = FlakyProposer([make_feature("noise0")], failures=1)
        controller = build_controller(proposer, max_iterations=1, proposal_attempts=1)

        [record] = controller.run(exact_videos).records

        assert proposer.attempts == 1
        assert record.decision == Decision.SKIPPED

    def test_duplicate_name_is_not_retried(self, exact_videos):
        proposer = FakeProposer([make_feature("length"), make_feature("noise0")])
        controller = build_controller(proposer, max_iterations=1)

        [record] = controller.run(exact_videos).records

        assert len(proposer.calls) == 1
        assert "DuplicateFeatureNameError" in record.error

    def test_bootstrap_bad_reply_is_retried(self, exact_videos):
        controller = build_controller(FakeProposer([]), max_iterations=0)
        controller.bootstrapper = FlakyBootstrapper(
            [make_feature(n) for n in INITIAL], failures=2
        )

        result = controller.run(exact_videos)

        assert controller.bootstrapper.attempts == 3
        assert result.state.active_names == list(INITIAL)

    def test_bootstrap_failure_surfaces_after_attempts(self, exact_videos):
        controller = build_controller(FakeProposer([]), max_iterations=0)
        controller.bootstrapper = FlakyBootstrapper(
            [make_feature(n) for n in INITIAL], failures=3
        )

        with pytest.raises(ProposalError):
            controller.run(exact_videos)
        assert controller.bootstrapper.attempts == 3


class TestInvariants:
    def test_feature_count_and_disjointness_hold(self, hidden_signal_videos):
        proposer = FakeProposer(
            [make_feature("hidden")] + [make_feature(f"noise{i}") for i in range(4)]
        )
        controller = build_controller(proposer, max_iterations=5)

        result = controller.run(hidden_signal_videos)

        for record in result.records:
            assert record.state.feature_count == 3
            assert not set(record.state.active_names) & record.state.rejected_names
        assert [r.iteration for r in result.records] == [0, 1, 2, 3, 4]

    def test_rejection_memory_only_grows(self, exact_videos):
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(3)])
        controller = build_controller(proposer)

        result = controller.run(exact_videos)

        sizes = [len(r.state.rejected_features) for r in result.records]
        assert sizes == sorted(sizes)

    def test_scores_cached_across_iterations(self, exact_videos):
        scorer = FakeScorer(feature_score)
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(3)])
        controller = build_controller(proposer, scorer=scorer)

        controller.run(exact_videos)

        scored = [
            (title, feature) for titles, feature in scorer.calls for title in titles
        ]
        assert len(scored) == len(set(scored))


class TestSkippedIterations:
    def test_repeated_rejected_name_is_skipped(self, exact_videos):
        proposer = FakeProposer([make_feature("noise0"), make_feature("noise0")])
        controller = build_controller(proposer, max_iterations=2)

        result = controller.run(exact_videos)

        skipped = result.records[1]
        assert skipped.decision == Decision.SKIPPED
        assert "DuplicateFeatureNameError" in skipped.error
        assert [f.name for f in result.rejected_features] == ["noise0"]
        assert result.state.iteration == 2

    def test_active_name_is_skipped(self, exact_videos):
        controller = build_controller(FakeProposer([make_feature("length")]), max_iterations=1)

        [record] = controller.run(exact_videos).records

        assert record.decision == Decision.SKIPPED
        assert record.state.active_names == list(INITIAL)

    def test_proposer_failure_is_skipped(self, exact_videos):
        proposer = MagicMock()
        proposer.propose_feature.side_effect = RuntimeError("model offline")
        controller = build_controller(proposer, max_iterations=2)

        result = controller.run(exact_videos)

        assert result.skipped_count == 2
        assert "ProposalError" in result.records[0].error
        assert result.state.iteration == 2

    def test_proposer_returning_garbage_is_skipped(self, exact_videos):
        proposer = MagicMock()
        proposer.propose_feature.return_value = {"name": "not a Feature"}
        controller = build_controller(proposer, max_iterations=1)

        [record] = controller.run(exact_videos).records

        assert record.decision == Decision.SKIPPED

    def test_scoring_failure_is_skipped(self, exact_videos):
        def score(title, feature):
            if feature == "flaky":
                raise ScoringError("quota exceeded")
            return feature_score(title, feature)

        proposer = FakeProposer([make_feature("flaky"), make_feature("noise0")])
        controller = build_controller(proposer, scorer=FakeScorer(score), max_iterations=2)

        result = controller.run(exact_videos)

        assert result.records[0].decision == Decision.SKIPPED
        assert "ScoringError" in result.records[0].error
        assert result.records[0].candidate_feature.name == "flaky"
        assert result.records[1].decision == Decision.REJECTED
        assert "flaky" not in result.state.rejected_names

    def test_too_few_videos_is_skipped(self):
        videos = build_videos({"length": 0.3}, n=5)
        controller = build_controller(FakeProposer([]), max_iterations=2)

        result = controller.run(videos)

        assert result.skipped_count == 2
        assert all("InsufficientDataError" in r.error for r in result.records)


class TestRunControl:
    def test_stop_ends_run_before_next_iteration(self, exact_videos):
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(5)])
        controller = build_controller(proposer, max_iterations=5)

        original = proposer.propose_feature

        def propose_then_stop(*args):
            controller.stop()
            return original(*args)

        proposer.propose_feature = propose_then_stop

        result = controller.run(exact_videos)

        assert len(result.records) == 1
        assert result.stopped_early

    def test_external_stop_event(self, exact_videos):
        event = threading.Event()
        event.set()
        controller = build_controller(FakeProposer([]), stop_event=event)

        result = controller.run(exact_videos)

        assert result.records == []
        assert result.stopped_early

    def test_resume_from_state(self, exact_videos):
        state = ReflexionState(
            active_features=tuple(make_feature(n) for n in INITIAL),
            rejected_features=(make_feature("old"),),
            iteration=4,
        )
        proposer = FakeProposer([make_feature("noise0"), make_feature("old")])
        controller = build_controller(proposer, max_iterations=2)
        controller.bootstrapper = None

        result = controller.run(exact_videos, state=state)

        assert [r.iteration for r in result.records] == [4, 5]
        assert result.records[1].decision == Decision.SKIPPED
        assert result.state.iteration == 6
        assert [f.name for f in result.rejected_features] == ["old", "noise0"]

    def test_zero_iterations_returns_initial_state(self, exact_videos):
        controller = build_controller(FakeProposer([]), max_iterations=0)

        result = controller.run(exact_videos)

        assert result.records == []
        assert result.state.active_names == list(INITIAL)
        assert len(controller.score_book) == len(exact_videos)

    def test_recorder_called_for_each_iteration(self, exact_videos):
        recorder = MagicMock()
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(2)])
        controller = build_controller(proposer, max_iterations=2, recorder=recorder)

        result = controller.run(exact_videos)

        assert recorder.record_iteration.call_count == 2
        recorder.record_run.assert_called_once_with(result)

    def test_recorder_failure_does_not_stop_run(self, exact_videos):
        recorder = MagicMock()
        recorder.record_iteration.side_effect = OSError("disk full")
        proposer = FakeProposer([make_feature(f"noise{i}") for i in range(2)])
        controller = build_controller(proposer, max_iterations=2, recorder=recorder)

        result = controller.run(exact_videos)

        assert len(result.records) == 2

    def test_reuses_given_score_book(self, exact_videos):
        book = ScoreBook()
        controller = build_controller(FakeProposer([]), max_iterations=0, score_book=book)

        controller.run(exact_videos)

        assert controller.score_book is book
        assert len(book) == len(exact_videos)


class TestSplit:
    def test_split_sizes(self, exact_videos):
        controller = build_controller(FakeProposer([]))

        training, validation = controller.split(exact_videos)

        assert len(training) == 48
        assert len(validation) == 12
        assert {v.title for v in training} | {v.title for v in validation} == {
            v.title for v in exact_videos
        }

    def test_split_is_seeded(self, exact_videos):
        first = build_controller(FakeProposer([])).split(exact_videos)
        second = build_controller(FakeProposer([])).split(exact_videos)

        assert first == second


class TestConfigErrors:
    def test_no_bootstrapper_and_no_state(self, exact_videos):
        controller = build_controller(FakeProposer([]))
        controller.bootstrapper = None

        with pytest.raises(ReflexionConfigError):
            controller.run(exact_videos)

    def test_bootstrapper_count_mismatch(self, exact_videos):
        controller = build_controller(FakeProposer([]))
        controller.bootstrapper = FakeBootstrapper([make_feature("only")])

        with pytest.raises(ReflexionConfigError):
            controller.run(exact_videos)

    def test_inconsistent_covariates(self):
        videos = [
            Video(title="a", views=1.0, recent_views=(1.0,)),
            Video(title="b", views=1.0, recent_views=(1.0, 2.0)),
        ]
        controller = build_controller(FakeProposer([]))

        with pytest.raises(ReflexionConfigError):
            controller.run(videos)

    def test_no_entities(self):
        with pytest.raises(ReflexionConfigError):
            build_controller(FakeProposer([])).run([])

    @pytest.mark.parametrize("options", [
        ReflexionOptions(max_iterations=-1),
        ReflexionOptions(worst_k=0),
        ReflexionOptions(train_fraction=1.0),
        ReflexionOptions(feature_count=0),
        ReflexionOptions(proposal_attempts=0),
    ])
    def test_invalid_options(self, options):
        with pytest.raises(ReflexionConfigError):
            ReflexionController(
                proposer=FakeProposer([]),
                scoring=ScoringAdapter(FakeScorer(feature_score)),
                options=options,
            )
