"""
Resolves finished jobs and playlists to files on disk and streams them.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import aiofiles

from tunefetch.exceptions import ArtifactFileMissing, ArtifactNotFound, ArtifactNotReady
from tunefetch.models.job import JobStatus
from tunefetch.storage.registry import JobRegistry

log = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Artifact:
    path: Path
    filename: str
    size: int


class ArtifactServer:
    """Serves the output file of completed jobs and built playlist archives."""

    def __init__(self, registry: JobRegistry, chunk_size: int = CHUNK_SIZE):
        self.registry = registry
        self.chunk_size = chunk_size

    def resolve(self, job_id: str) -> Artifact:
        """
        Finds the file for a job.

        Raises:
            ArtifactNotFound: No such job.
            ArtifactNotReady: The job has not completed.
            ArtifactFileMissing: The job completed but its file is gone.
        """
        job = self.registry.get(job_id)
        if job is None:
            raise ArtifactNotFound(f"Download '{job_id}' not found.")
        if job.status is not JobStatus.COMPLETED or not job.output_path:
            raise ArtifactNotReady(f"Download '{job_id}' is not ready (status: {job.status.value}).")
        return self._stat(Path(job.output_path))

    def resolve_playlist(self, playlist_id: str) -> Artifact:
        playlist = self.registry.get_playlist(playlist_id)
        if playlist is None:
            raise ArtifactNotFound(f"Playlist '{playlist_id}' not found.")
        if not playlist.archive_path:
            raise ArtifactNotReady(f"Archive for playlist '{playlist_id}' is not ready.")
        return self._stat(Path(playlist.archive_path))

    @staticmethod
    def _stat(path: Path) -> Artifact:
        try:
            size = os.stat(path).st_size
        except FileNotFoundError as e:
            raise ArtifactFileMissing(f"File '{path.name}' is no longer available.") from e
        return Artifact(path=path, filename=path.name, size=size)

    async def stream(self, artifact: Artifact) -> AsyncIterator[bytes]:
        """Yields the file in chunks. A client disconnect closes the file and stops."""
        try:
            async with aiofiles.open(artifact.path, "rb") as f:
                while chunk := await f.read(self.chunk_size):
                    yield chunk
        except asyncio.CancelledError:
            log.debug(f"Client disconnected while streaming '{artifact.filename}'")
            raise
