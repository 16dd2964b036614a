"""
Run recorders - persistence of the reflexion audit trail.

JsonRunRecorder layout (one directory per run):
    iteration-000.json   IterationRecord for each iteration
    state.json           latest ReflexionState, rewritten every iteration
    features.json        final active + rejected features
    scores.json          ScoreBook snapshot (optional)
"""
import json
import logging
from pathlib import Path
from typing import Any

from .models import IterationRecord, ReflexionState, RunResult
from .scoring import ScoreBook


logger = logging.getLogger(__name__)


class JsonRunRecorder:
    """Writes each iteration to a JSON file and can resume from the latest state."""

    STATE_FILE = "state.json"
    FEATURES_FILE = "features.json"
    SCORES_FILE = "scores.json"

    def __init__(self, run_dir: str | Path):
        self.run_dir = Path(run_dir)
        self.run_dir.mkdir(parents=True, exist_ok=True)

    def _write(self, name: str, payload: Any) -> Path:
        path = self.run_dir / name
        # Write then rename so a crash never leaves a half-written state file
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        return path

    def record_iteration(self, record: IterationRecord) -> None:
        path = self._write(f"iteration-{record.iteration:03d}.json", record.to_dict())
        self._write(self.STATE_FILE, record.state.to_dict())
        logger.debug(f"Recorded iteration {record.iteration} to {path}")

    def record_run(self, result: RunResult) -> None:
        self._write(self.FEATURES_FILE, {
            "features": [f.to_dict() for f in result.active_features],
            "failed_features": [f.to_dict() for f in result.rejected_features],
            "summary": result.to_dict(),
        })
        self._write(self.STATE_FILE, result.state.to_dict())
        logger.info(f"Saved reflexion results to {self.run_dir}")

    def save_scores(self, score_book: ScoreBook) -> None:
        self._write(self.SCORES_FILE, score_book.to_dict())

    def load_scores(self) -> ScoreBook:
        path = self.run_dir / self.SCORES_FILE
        if not path.exists():
            return ScoreBook()
        return ScoreBook(json.loads(path.read_text(encoding="utf-8")))

    def load_state(self) -> ReflexionState | None:
        """Latest recorded state, or None for a fresh run directory."""
        path = self.run_dir / self.STATE_FILE
        if not path.exists():
            return None
        return ReflexionState.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def load_records(self) -> list[IterationRecord]:
        """All recorded iterations, in iteration order."""
        records = [
            IterationRecord.from_dict(json.loads(p.read_text(encoding="utf-8")))
            for p in self.run_dir.glob("iteration-*.json")
        ]
        return sorted(records, key=lambda r: r.iteration)


class CompositeRecorder:
    """Forwards every record to several recorders, in order."""

    def __init__(self, *recorders):
        self.recorders = list(recorders)

    def record_iteration(self, record: IterationRecord) -> None:
        for recorder in self.recorders:
            recorder.record_iteration(record)

    def record_run(self, result: RunResult) -> None:
        for recorder in self.recorders:
            recorder.record_run(result)
