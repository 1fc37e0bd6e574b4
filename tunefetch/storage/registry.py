"""
Process-scoped, thread-safe store of job and playlist records.
"""

import logging
import threading
import time
import uuid
from typing import Callable, Iterable, Optional

from tunefetch.exceptions import InvalidTransitionError, JobNotFoundError
from tunefetch.models.job import (
    ALLOWED_TRANSITIONS,
    Job,
    JobStatus,
    Playlist,
    TrackMetadata,
)

log = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("job", "lock")

    def __init__(self, job: Job):
        self.job = job
        self.lock = threading.Lock()


class JobRegistry:
    """
    Holds every job and playlist created during the life of the process.

    Each record carries its own lock, so updates to different jobs never
    contend; the registry-wide lock only guards the index itself. Callers only
    ever receive snapshots, never the stored records.
    """

    def __init__(self):
        self._entries: dict[str, _Entry] = {}
        self._playlists: dict[str, Playlist] = {}
        self._index_lock = threading.Lock()

    def create(
        self,
        source_url: str,
        *,
        quality: int = 0,
        playlist_id: Optional[str] = None,
        hints: Optional[TrackMetadata] = None,
    ) -> Job:
        job = Job(
            id=uuid.uuid4().hex,
            source_url=source_url,
            quality=quality,
            playlist_id=playlist_id,
            hints=hints or TrackMetadata(),
        )
        with self._index_lock:
            self._entries[job.id] = _Entry(job)
        log.debug(f"Registered job {job.id} for {source_url}")
        return job.snapshot()

    def _entry(self, job_id: str) -> Optional[_Entry]:
        with self._index_lock:
            return self._entries.get(job_id)

    def get(self, job_id: str) -> Optional[Job]:
        entry = self._entry(job_id)
        if entry is None:
            return None
        with entry.lock:
            return entry.job.snapshot()

    def update(self, job_id: str, mutator: Callable[[Job], None]) -> Job:
        """
        Applies `mutator` to the stored job under that job's lock.

        The mutator edits the job in place. The state machine is enforced after
        it runs: a terminal job cannot change status, and progress may not go
        backwards while running. Raises JobNotFoundError for unknown ids.
        """
        entry = self._entry(job_id)
        if entry is None:
            raise JobNotFoundError(f"Job '{job_id}' does not exist.")

        with entry.lock:
            current = entry.job
            draft = current.snapshot()
            mutator(draft)

            if draft.status is not current.status:
                if draft.status not in ALLOWED_TRANSITIONS[current.status]:
                    raise InvalidTransitionError(
                        f"Job '{job_id}' cannot move from {current.status.value} "
                        f"to {draft.status.value}."
                    )
            elif current.status.is_terminal and draft != current:
                raise InvalidTransitionError(
                    f"Job '{job_id}' is {current.status.value} and can no longer change."
                )

            draft.progress = min(100.0, max(0.0, draft.progress))
            if (
                draft.status is JobStatus.RUNNING
                and current.status is JobStatus.RUNNING
                and draft.progress < current.progress
            ):
                draft.progress = current.progress
            if draft.status is not JobStatus.ERROR:
                draft.error = None

            draft.id = current.id
            draft.source_url = current.source_url
            draft.last_updated = time.time()
            entry.job = draft
            return draft.snapshot()

    def list_jobs(self, ids: Optional[Iterable[str]] = None) -> list[Job]:
        """Returns snapshots of the requested jobs (all jobs when ids is None)."""
        with self._index_lock:
            if ids is None:
                entries = list(self._entries.values())
            else:
                entries = [e for i in ids if (e := self._entries.get(i)) is not None]
        jobs = []
        for entry in entries:
            with entry.lock:
                jobs.append(entry.job.snapshot())
        return jobs

    def new_playlist_id(self) -> str:
        return uuid.uuid4().hex

    def register_playlist(self, playlist: Playlist) -> Playlist:
        """Stores a playlist whose id was reserved with `new_playlist_id`."""
        with self._index_lock:
            if playlist.id in self._playlists:
                raise InvalidTransitionError(
                    f"Playlist '{playlist.id}' is already registered."
                )
            self._playlists[playlist.id] = playlist.snapshot()
        return playlist.snapshot()

    def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        with self._index_lock:
            playlist = self._playlists.get(playlist_id)
            return playlist.snapshot() if playlist else None

    def update_playlist(self, playlist_id: str, **changes) -> Playlist:
        """Sets archive fields on a playlist. Membership is fixed at creation."""
        if "member_job_ids" in changes or "id" in changes:
            raise InvalidTransitionError("Playlist membership cannot change.")
        with self._index_lock:
            playlist = self._playlists.get(playlist_id)
            if playlist is None:
                raise JobNotFoundError(f"Playlist '{playlist_id}' does not exist.")
            for key, value in changes.items():
                setattr(playlist, key, value)
            return playlist.snapshot()

    def list_playlists(self) -> list[Playlist]:
        with self._index_lock:
            return [p.snapshot() for p in self._playlists.values()]
