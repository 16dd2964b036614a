"""
Supabase Client

Handles reflexion persistence:
- Run summaries (final features, rejection history)
- Per-iteration audit records (state, decision, validation errors)
"""
import logging
from typing import Any
from uuid import uuid4

from supabase import create_client, Client

from src.config import config
from src.reflexion.models import IterationRecord, ReflexionState, RunResult


logger = logging.getLogger(__name__)


class SupabaseClient:
    """Supabase database client."""

    def __init__(self, url: str | None = None, key: str | None = None):
        """Initialize the Supabase client."""
        url = url or config.supabase.url
        key = key or config.supabase.service_role_key or config.supabase.anon_key

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        self._client: Client = create_client(url, key)

    # ============ Iterations ============

    def save_iteration(self, run_id: str, record: IterationRecord) -> dict[str, Any]:
        """
        Save one iteration record.

        Args:
            run_id: Correlation ID of the run
            record: IterationRecord to store

        Returns:
            Inserted record
        """
        data = {
            "run_id": run_id,
            "iteration": record.iteration,
            "decision": record.decision.value,
            "active_features": [f.to_dict() for f in record.state.active_features],
            "rejected_features": [f.to_dict() for f in record.state.rejected_features],
            "dropped_feature": record.dropped_feature.to_dict() if record.dropped_feature else None,
            "candidate_feature": (
                record.candidate_feature.to_dict() if record.candidate_feature else None
            ),
            "previous_log_error": (
                record.previous_report.average_log_error if record.previous_report else None
            ),
            "new_log_error": record.new_report.average_log_error if record.new_report else None,
            "error": record.error,
            "recorded_at": record.recorded_at.isoformat(),
        }

        result = self._client.table("reflexion_iterations").upsert(
            data,
            on_conflict="run_id,iteration",
        ).execute()

        return result.data[0] if result.data else {}

    def get_latest_state(self, run_id: str) -> ReflexionState | None:
        """State after the most recent recorded iteration, for resuming a run."""
        result = self._client.table("reflexion_iterations").select("*").eq(
            "run_id", run_id
        ).order("iteration", desc=True).limit(1).execute()

        if not result.data:
            return None
        row = result.data[0]
        return ReflexionState.from_dict({
            "active_features": row["active_features"],
            "rejected_features": row.get("rejected_features") or [],
            "iteration": row["iteration"] + 1,
        })

    # ============ Runs ============

    def save_run(self, run_id: str, result: RunResult) -> dict[str, Any]:
        """Save the final outcome of a run."""
        data = {
            "run_id": run_id,
            "features": [f.to_dict() for f in result.active_features],
            "failed_features": [f.to_dict() for f in result.rejected_features],
            "iterations": result.state.iteration,
            "accepted": result.accepted_count,
            "rejected": result.rejected_count,
            "skipped": result.skipped_count,
            "stopped_early": result.stopped_early,
        }

        result_row = self._client.table("reflexion_runs").upsert(
            data,
            on_conflict="run_id",
        ).execute()

        return result_row.data[0] if result_row.data else {}


class SupabaseRunRecorder:
    """RunRecorder that writes to the reflexion_* tables."""

    def __init__(self, client: SupabaseClient | None = None, run_id: str | None = None):
        self.client = client or SupabaseClient()
        self.run_id = run_id or uuid4().hex

    def record_iteration(self, record: IterationRecord) -> None:
        self.client.save_iteration(self.run_id, record)

    def record_run(self, result: RunResult) -> None:
        self.client.save_run(self.run_id, result)
        logger.info(f"Saved reflexion run {self.run_id} to Supabase")
