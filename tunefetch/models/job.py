"""
Records describing conversion jobs, playlists, and the metadata derived for them.
"""

import dataclasses
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={id}"


class JobStatus(str, Enum):
    """Lifecycle states of a job."""

    QUEUED = "queued"
    RUNNING = "running"
    TAGGING = "tagging"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


# Allowed forward transitions; a job never leaves a terminal state.
ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.ERROR},
    JobStatus.RUNNING: {JobStatus.TAGGING, JobStatus.COMPLETED, JobStatus.ERROR},
    JobStatus.TAGGING: {JobStatus.COMPLETED, JobStatus.ERROR},
    JobStatus.COMPLETED: set(),
    JobStatus.ERROR: set(),
}


@dataclass
class TrackMetadata:
    """Descriptive tags for one audio file. Unset fields stay None."""

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    year: Optional[str] = None
    genre: Optional[str] = None
    comment: Optional[str] = None
    duration: Optional[float] = None
    track_number: Optional[int] = None

    def merged_over(self, base: "TrackMetadata") -> "TrackMetadata":
        """Returns a copy where fields set on self win over those on base."""
        values = {
            f.name: getattr(self, f.name)
            if getattr(self, f.name) is not None
            else getattr(base, f.name)
            for f in dataclasses.fields(self)
        }
        return TrackMetadata(**values)

    def as_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class VideoInfo(BaseModel):
    """
    The subset of the extractor's JSON description that the engine relies on.

    Everything is optional; defaults are applied once in `to_metadata`.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: Optional[str] = None
    uploader: Optional[str] = None
    channel: Optional[str] = None
    webpage_url: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[float] = None
    upload_date: Optional[str] = None
    categories: Optional[list[str]] = None
    playlist_title: Optional[str] = None
    playlist_uploader: Optional[str] = None

    @classmethod
    def placeholder(cls, source_url: str) -> "VideoInfo":
        """The record used when the info query could not be completed."""
        return cls(webpage_url=source_url)

    def entry_url(self) -> Optional[str]:
        """Resolves the canonical URL of a flat playlist entry."""
        for candidate in (self.url, self.webpage_url):
            if candidate and candidate.startswith(("http://", "https://")):
                return candidate
        if self.id:
            return YOUTUBE_WATCH_URL.format(id=self.id)
        return None

    def to_metadata(
        self, album_hint: Optional[str] = None, artist_fallback: Optional[str] = None
    ) -> TrackMetadata:
        """
        Applies the defaulting rules. A playlist title given as `album_hint`
        overrides the album; `artist_fallback` is used only when the item has
        no uploader of its own.
        """
        title = self.title or "Unknown Title"
        year = (
            self.upload_date[:4]
            if self.upload_date and len(self.upload_date) >= 4
            else str(datetime.now().year)
        )
        genre = next((c for c in self.categories or [] if c), None)
        return TrackMetadata(
            title=title,
            artist=self.uploader or self.channel or artist_fallback or "Unknown Artist",
            album=album_hint or self.title or "Unknown Album",
            year=year,
            genre=genre or "Unknown Genre",
            comment=self.webpage_url or "",
            duration=self.duration or 0,
        )


@dataclass
class Job:
    """One requested URL-to-audio conversion and its tracked state."""

    id: str
    source_url: str
    quality: int = 0
    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0
    output_path: Optional[str] = None
    title: Optional[str] = None
    metadata: Optional[TrackMetadata] = None
    # Inherited from a playlist: album and track number override derived
    # values, artist only fills in for a missing uploader.
    hints: TrackMetadata = field(default_factory=TrackMetadata)
    size_bytes: Optional[int] = None
    error: Optional[str] = None
    playlist_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    def snapshot(self) -> "Job":
        return dataclasses.replace(
            self,
            metadata=dataclasses.replace(self.metadata) if self.metadata else None,
            hints=dataclasses.replace(self.hints),
        )

    def to_status_dict(self) -> dict[str, Any]:
        """Renders the public status view served to polling clients."""
        view: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "progress": round(self.progress, 1),
        }
        if self.title:
            view["title"] = self.title
        if self.error:
            view["error"] = self.error
        if self.size_bytes is not None:
            view["size"] = self.size_bytes
        if self.metadata and self.metadata.duration:
            view["duration"] = self.metadata.duration
        if self.playlist_id:
            view["playlistId"] = self.playlist_id
        view["lastUpdated"] = datetime.fromtimestamp(
            self.last_updated, tz=timezone.utc
        ).isoformat()
        return view


@dataclass
class Playlist:
    """An aggregate over the jobs enumerated from one playlist URL."""

    id: str
    source_url: str
    title: str
    member_job_ids: tuple[str, ...]
    directory: Optional[str] = None
    archive_path: Optional[str] = None
    archive_error: Optional[str] = None
    packaged: bool = False
    created_at: float = field(default_factory=time.time)

    def snapshot(self) -> "Playlist":
        return dataclasses.replace(self)


def playlist_status(playlist: Playlist, members: list[Job]) -> str:
    """
    Derives a playlist's status from its members.

    'error' if any member errored or the archive could not be built,
    'completed' once every member completed and the packaging step has
    finished, otherwise 'processing'.
    """
    if playlist.archive_error:
        return "error"
    if any(job.status is JobStatus.ERROR for job in members):
        return "error"
    if playlist.packaged and len(members) == len(playlist.member_job_ids) and all(
        job.status is JobStatus.COMPLETED for job in members
    ):
        return "completed"
    return "processing"
