# Data loading and persistence package

from src.data.video_loader import (
    RECENT_VIDEOS_COUNT,
    load_videos,
    videos_from_frame,
    videos_from_records,
)

__all__ = [
    "RECENT_VIDEOS_COUNT",
    "load_videos",
    "videos_from_frame",
    "videos_from_records",
]
