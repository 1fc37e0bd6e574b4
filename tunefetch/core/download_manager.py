"""
The main orchestrator for turning submitted URLs into jobs and running them.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Coroutine, Iterable, Optional

from tunefetch.exceptions import ArchiveError, TunefetchError, ValidationError
from tunefetch.media.extractor import Extractor
from tunefetch.media.tagger import Tagger
from tunefetch.models.config import ServerConfig, validate_quality
from tunefetch.models.job import Job, JobStatus, Playlist, playlist_status
from tunefetch.storage.archive import ArchiveBuilder
from tunefetch.storage.registry import JobRegistry
from tunefetch.utils.path import create_dir, is_playlist_url
from tunefetch.utils.playlist import generate_m3u
from tunefetch.utils.structured_logger import JobEventLogger, create_event_logger

from .playlist import PlaylistExpander
from .supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


@dataclass
class StartResult:
    """The jobs and playlists created for one start request."""

    job_ids: list[str] = field(default_factory=list)
    playlists: list[Playlist] = field(default_factory=list)


class DownloadManager:
    """Orchestrates job creation, supervision, and playlist packaging."""

    def __init__(
        self,
        config: ServerConfig,
        registry: Optional[JobRegistry] = None,
        extractor: Optional[Extractor] = None,
        tagger: Optional[Tagger] = None,
        archive_builder: Optional[ArchiveBuilder] = None,
        events: Optional[JobEventLogger] = None,
    ):
        self.config = config
        self.downloads_dir = Path(config.downloads_dir)
        self.registry = registry or JobRegistry()
        self.extractor = extractor or Extractor(
            config.ytdlp_path, embed_thumbnail=config.embed_thumbnail
        )
        self.events = events or create_event_logger(
            Path(config.log_dir) if config.log_dir else None
        )
        self.archive_builder = archive_builder or ArchiveBuilder()
        self.supervisor = ProcessSupervisor(
            self.registry,
            self.extractor,
            tagger or Tagger(),
            self.downloads_dir,
            max_concurrent=config.max_concurrent,
            cancel_grace_seconds=config.cancel_grace_seconds,
            events=self.events,
        )
        self.expander = PlaylistExpander(
            self.registry, self.extractor, self.downloads_dir, events=self.events
        )
        self._tasks: set[asyncio.Task] = set()
        create_dir(self.downloads_dir)

    async def start(self, urls: Iterable[str], quality: int) -> StartResult:
        """
        Creates jobs for every URL and starts them in the background.

        Playlists are enumerated before any job is created, so a NoItemsFound
        from any of them fails the whole request with nothing left behind.
        Raises ValidationError when no URL is given or the quality is invalid.
        """
        expanded = [u.strip() for u in urls if u and u.strip()]
        if not expanded:
            raise ValidationError("No URLs were given.")
        try:
            validate_quality(quality)
        except ValueError as e:
            raise ValidationError(
                "Validation failed",
                [{"path": "quality", "location": "body", "msg": str(e), "type": "value_error"}],
            ) from e
        unique_urls = list(dict.fromkeys(expanded))
        if len(unique_urls) < len(expanded):
            log.info(f"Removed {len(expanded) - len(unique_urls)} duplicate URLs.")

        playlist_urls = [u for u in unique_urls if is_playlist_url(u)]
        listings = await asyncio.gather(
            *(self.expander.enumerate(u) for u in playlist_urls)
        )
        listing_by_url = dict(zip(playlist_urls, listings))

        result = StartResult()
        for url in unique_urls:
            if url in listing_by_url:
                playlist = self.expander.materialize(listing_by_url[url], quality)
                result.playlists.append(playlist)
                result.job_ids.extend(playlist.member_job_ids)
                self._spawn(self._run_playlist(playlist, quality))
            else:
                job = self.registry.create(url, quality=quality)
                result.job_ids.append(job.id)
                self._spawn(self._run_job(job.id, quality))

        log.info(
            f"Queued {len(result.job_ids)} job(s) from {len(unique_urls)} URL(s) "
            f"({len(result.playlists)} playlist(s))."
        )
        return result

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_job(
        self, job_id: str, quality: int, output_dir: Optional[Path] = None
    ) -> Optional[Job]:
        try:
            return await self.supervisor.run(job_id, quality, output_dir)
        except TunefetchError as e:
            log.error(f"[red]✗ Job {job_id[:8]} failed:[/red] {e}")
        except Exception as e:
            log.error(
                f"[red]✗ An unexpected error occurred for job {job_id[:8]}: {e}[/red]",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
        return None

    async def _run_playlist(self, playlist: Playlist, quality: int) -> None:
        """Runs every member independently, then packages what completed."""
        directory = Path(playlist.directory)
        await asyncio.gather(
            *(self._run_job(jid, quality, directory) for jid in playlist.member_job_ids)
        )

        members = self.registry.list_jobs(playlist.member_job_ids)
        completed = [j for j in members if j.status is JobStatus.COMPLETED]
        if not completed:
            log.warning(
                f"[yellow]No track of playlist '{playlist.title}' completed; "
                "skipping archive.[/yellow]"
            )
            self.registry.update_playlist(playlist.id, packaged=True)
            return

        await asyncio.to_thread(generate_m3u, directory, playlist.title)
        archive_path = self.downloads_dir / f"{directory.name}.zip"
        try:
            built = await asyncio.to_thread(
                self.archive_builder.build, directory, archive_path
            )
        except ArchiveError as e:
            log.error(f"[red]✗ Archive for playlist '{playlist.title}' failed:[/red] {e}")
            self.registry.update_playlist(
                playlist.id, archive_error=str(e), packaged=True
            )
            self.events.archive_failed(playlist.id, str(e))
            return

        self.registry.update_playlist(
            playlist.id, archive_path=str(built), packaged=True
        )
        self.events.archive_built(playlist.id, str(built), os.path.getsize(built))

    async def cancel(self, job_id: str) -> bool:
        return await self.supervisor.cancel(job_id)

    def job_statuses(self, ids: Optional[list[str]] = None) -> list[dict[str, Any]]:
        """Status views for the given ids, in request order; unknown ids are flagged."""
        if ids is None:
            return [job.to_status_dict() for job in self.registry.list_jobs()]
        found = {job.id: job for job in self.registry.list_jobs(ids)}
        return [
            found[i].to_status_dict() if i in found else {"id": i, "error": "not found"}
            for i in ids
        ]

    def playlist_view(self, playlist_id: str) -> Optional[dict[str, Any]]:
        playlist = self.registry.get_playlist(playlist_id)
        if playlist is None:
            return None
        members = self.registry.list_jobs(playlist.member_job_ids)
        view = {
            "id": playlist.id,
            "sourceUrl": playlist.source_url,
            "title": playlist.title,
            "status": playlist_status(playlist, members),
            "memberJobIds": list(playlist.member_job_ids),
            "archiveReady": playlist.archive_path is not None,
        }
        if playlist.archive_error:
            view["error"] = playlist.archive_error
        return view

    async def wait_idle(self) -> None:
        """Waits until every scheduled job and playlist has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancels outstanding work; running extractions are terminated."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.debug(f"Download manager shut down ({len(tasks)} task(s) cancelled).")
