"""
Video Loader

Reads a channel's video export (JSON or CSV) into Video entities and
derives the auxiliary covariates: log(views + 1) of the previous N videos,
oldest first. The first N videos have no full history and are dropped.
"""
import logging
from pathlib import Path
from typing import Any, Iterable

import numpy as np
import pandas as pd

from src.reflexion.models import Video


logger = logging.getLogger(__name__)

RECENT_VIDEOS_COUNT = 5
REQUIRED_COLUMNS = ("title", "views")


def _optional(value: Any) -> Any:
    """pandas NaN/NaT -> None."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _as_int(value: Any) -> int | None:
    value = _optional(value)
    return int(value) if value is not None else None


def _as_float(value: Any) -> float | None:
    value = _optional(value)
    return float(value) if value is not None else None


def videos_from_frame(frame: pd.DataFrame, recent_count: int = RECENT_VIDEOS_COUNT) -> list[Video]:
    """
    Build Video entities from a DataFrame.

    Args:
        frame: One row per video with at least title and views
        recent_count: Number of previous videos used as covariates

    Returns:
        Videos in publication order, minus the first recent_count

    Raises:
        ValueError: if required columns are missing or recent_count < 0
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"Video data is missing columns: {missing}")
    if recent_count < 0:
        raise ValueError(f"recent_count must be >= 0, got {recent_count}")

    df = frame.copy()
    df = df[df["title"].notna() & df["views"].notna()]
    df["title"] = df["title"].astype(str)
    df["views"] = pd.to_numeric(df["views"], errors="coerce")
    df = df[df["views"].notna() & (df["views"] >= 0)]

    if "date" in df.columns:
        df["_sort_date"] = pd.to_datetime(df["date"], errors="coerce", utc=True)
        df = df.sort_values("_sort_date", kind="stable", na_position="first")
    df = df.reset_index(drop=True)

    log_views = np.log1p(df["views"].astype(float))
    # Oldest first: shift(recent_count) ... shift(1)
    lag_columns = [f"_lag_{j}" for j in range(recent_count)]
    for j, column in enumerate(lag_columns):
        df[column] = log_views.shift(recent_count - j)
    if lag_columns:
        df = df.dropna(subset=lag_columns)

    videos = []
    for row in df.to_dict(orient="records"):
        videos.append(Video(
            title=row["title"],
            views=float(row["views"]),
            recent_views=tuple(float(row[c]) for c in lag_columns),
            id=str(_optional(row.get("id")) or ""),
            likes=_as_int(row.get("likes")),
            comments=_as_int(row.get("comments")),
            date=str(row["date"]) if _optional(row.get("date")) is not None else None,
            duration=_as_float(row.get("duration")),
        ))

    logger.info(
        f"Loaded {len(videos)} videos with {recent_count} recent-view covariates "
        f"({len(frame) - len(videos)} dropped)"
    )
    return videos


def videos_from_records(
    records: Iterable[dict[str, Any]],
    recent_count: int = RECENT_VIDEOS_COUNT,
) -> list[Video]:
    """Build Video entities from plain dicts (e.g. a parsed JSON export)."""
    return videos_from_frame(pd.DataFrame(list(records)), recent_count)


def load_videos(path: str | Path, recent_count: int = RECENT_VIDEOS_COUNT) -> list[Video]:
    """
    Load videos from a .json (array of records) or .csv file.

    Raises:
        FileNotFoundError: if the file doesn't exist
        ValueError: for unsupported file types or missing columns
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Video file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        frame = pd.read_json(path, orient="records", dtype={"title": str, "id": str})
    elif suffix == ".csv":
        frame = pd.read_csv(path, dtype={"title": str, "id": str})
    else:
        raise ValueError(f"Unsupported video file type: {suffix}")

    return videos_from_frame(frame, recent_count)
