from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class VideoMetadata:
    """Descriptive payload attached to a detected remote clip."""
    source_url: Optional[str] = None
    prompt: Optional[str] = None
    author: Optional[str] = None
    job_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], source_url: Optional[str] = None) -> "VideoMetadata":
        data = data or {}
        return cls(
            source_url=source_url or data.get("source_url"),
            prompt=data.get("prompt") or None,
            author=data.get("author") or None,
            job_id=data.get("job_id") or None,
        )


@dataclass(frozen=True, slots=True)
class VideoRecord:
    id: str
    local_path: str
    saved_at: datetime = field(default_factory=datetime.now)

    source_url: Optional[str] = None
    prompt: Optional[str] = None
    author: Optional[str] = None
    external_job_id: Optional[str] = None

    duration: Optional[float] = None
    resolution: Optional[str] = None
    file_size_bytes: Optional[int] = None
    thumbnail_path: Optional[str] = None

    favorite: bool = False
    play_count: int = 0
    last_played_at: Optional[datetime] = None

    # ------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "VideoRecord":
        keys = set(row.keys())

        def col(name: str, default: Any = None) -> Any:
            return row[name] if name in keys else default

        return cls(
            id=row["id"],
            local_path=row["local_path"],
            saved_at=_parse_timestamp(col("saved_at")) or datetime.fromtimestamp(0),
            source_url=col("source_url"),
            prompt=col("prompt"),
            author=col("author"),
            external_job_id=col("external_job_id"),
            duration=col("duration"),
            resolution=col("resolution"),
            file_size_bytes=col("file_size"),
            thumbnail_path=col("thumbnail_path"),
            favorite=bool(col("favorite", 0)),
            play_count=int(col("play_count", 0) or 0),
            last_played_at=_parse_timestamp(col("last_played")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_url": self.source_url,
            "prompt": self.prompt,
            "author": self.author,
            "external_job_id": self.external_job_id,
            "saved_at": self.saved_at.isoformat(),
            "duration": self.duration,
            "resolution": self.resolution,
            "file_size": self.file_size_bytes,
            "local_path": self.local_path,
            "thumbnail_path": self.thumbnail_path,
            "favorite": 1 if self.favorite else 0,
            "play_count": self.play_count,
            "last_played": self.last_played_at.isoformat() if self.last_played_at else None,
        }

    # ------------------------------------------------------------
    # Mutations (return new records)
    # ------------------------------------------------------------

    def with_favorite(self, favorite: bool) -> "VideoRecord":
        return replace(self, favorite=favorite)

    def with_play(self, when: Optional[datetime] = None) -> "VideoRecord":
        return replace(self, play_count=self.play_count + 1, last_played_at=when or datetime.now())

    # ------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------

    @property
    def file_name(self) -> str:
        return Path(self.local_path).name

    @property
    def exists(self) -> bool:
        return Path(self.local_path).is_file()

    @property
    def display_duration(self) -> str:
        if not self.duration:
            return "--:--"
        total = int(self.duration)
        return f"{total // 60}:{total % 60:02d}"

    @property
    def display_file_size(self) -> str:
        size = self.file_size_bytes
        if size is None:
            return "Unknown"
        if size < 1024:
            return f"{size} B"
        value = float(size)
        for unit in ("KB", "MB"):
            value /= 1024
            if value < 1024:
                return f"{value:.1f} {unit}"
        return f"{value / 1024:.1f} GB"

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match over prompt and author."""
        needle = query.lower()
        return any(needle in (value or "").lower() for value in (self.prompt, self.author))
