"""
Runs one extraction subprocess per job and reconciles its outcome into the registry.
"""

import asyncio
import logging
import os
import time
from collections import deque
from pathlib import Path
from typing import AsyncIterator, Optional

from tunefetch.exceptions import (
    ExtractionFailed,
    ExtractorError,
    InvalidTransitionError,
    JobCancelledError,
    JobNotFoundError,
    MetadataWriteFailed,
    TunefetchError,
)
from tunefetch.media.extractor import Extractor
from tunefetch.media.integrity import check_mp3, verify_output
from tunefetch.media.tagger import Tagger, parse_title_artist
from tunefetch.models.job import Job, JobStatus, TrackMetadata, VideoInfo
from tunefetch.storage.registry import JobRegistry
from tunefetch.utils.path import OutputPathAllocator, create_dir
from tunefetch.utils.progress import (
    DOWNLOAD_PHASE_END,
    INFO_PHASE_END,
    parse_progress_line,
    scale_download_progress,
)
from tunefetch.utils.structured_logger import JobEventLogger, create_event_logger

log = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"
STDERR_TAIL_LINES = 20


class ProcessSupervisor:
    """
    Owns the extraction subprocess of every running job.

    At most one process is associated with a job id. The live handle is kept
    in `_processes` until the process exits so that `cancel` can terminate it.
    An optional semaphore caps the number of simultaneous extractions; jobs
    waiting for a slot stay queued.
    """

    def __init__(
        self,
        registry: JobRegistry,
        extractor: Extractor,
        tagger: Tagger,
        output_dir: Path,
        max_concurrent: Optional[int] = None,
        cancel_grace_seconds: float = 5.0,
        allocator: Optional[OutputPathAllocator] = None,
        events: Optional[JobEventLogger] = None,
    ):
        self.registry = registry
        self.extractor = extractor
        self.tagger = tagger
        self.output_dir = Path(output_dir)
        self.cancel_grace_seconds = cancel_grace_seconds
        self.allocator = allocator or OutputPathAllocator()
        self.events = events or create_event_logger()
        self._slots = asyncio.Semaphore(max_concurrent) if max_concurrent else None
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._active: set[str] = set()
        self._cancel_requested: set[str] = set()
        self._settling: set[str] = set()

    def is_running(self, job_id: str) -> bool:
        return job_id in self._processes

    async def run(
        self, job_id: str, quality: int, output_dir: Optional[Path] = None
    ) -> Job:
        """
        Runs the job to a terminal state and returns its final snapshot.

        Failures are recorded on the job (status error, partial output removed)
        and then re-raised: ExtractionFailed, OutputMissing, OutputEmpty or
        JobCancelledError. Tagging problems never fail a job.
        """
        if self._slots is None:
            return await self._run_guarded(job_id, quality, output_dir)
        async with self._slots:
            return await self._run_guarded(job_id, quality, output_dir)

    async def _run_guarded(
        self, job_id: str, quality: int, output_dir: Optional[Path]
    ) -> Job:
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' does not exist.")
        if job.status.is_terminal:
            # Cancelled while waiting for a slot.
            return job

        self._active.add(job_id)
        output_path: Optional[Path] = None
        started = time.monotonic()
        try:
            output_path = await self._prepare(job, output_dir or self.output_dir)
            size = await self._extract(job, output_path, quality)
            return await self._finalize(job, output_path, size, started)
        except asyncio.CancelledError:
            await self._fail(job_id, JobCancelledError(CANCELLED_REASON), output_path)
            raise
        except TunefetchError as e:
            await self._fail(job_id, e, output_path)
            raise
        except Exception as e:
            log.error(
                f"Unexpected error while running job {job_id}: {e}",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            await self._fail(job_id, e, output_path)
            raise
        finally:
            self._active.discard(job_id)
            self._cancel_requested.discard(job_id)
            self._settling.discard(job_id)
            self.allocator.release(output_path)

    async def _lookup_info(self, url: str) -> VideoInfo:
        try:
            return await self.extractor.fetch_info(url)
        except ExtractorError as e:
            log.warning(f"Info query failed for {url}, using placeholder title: {e}")
            return VideoInfo.placeholder(url)

    def _derive_metadata(self, info: VideoInfo, hints: TrackMetadata) -> TrackMetadata:
        metadata = info.to_metadata(album_hint=hints.album, artist_fallback=hints.artist)
        if metadata.artist == "Unknown Artist" and info.title:
            artist, title = parse_title_artist(info.title)
            metadata.artist = artist
            metadata.title = title
        metadata.track_number = hints.track_number
        return metadata

    async def _prepare(self, job: Job, directory: Path) -> Path:
        info = await self._lookup_info(job.source_url)
        self._raise_if_cancelled(job.id)

        title = info.title or "Unknown Title"
        metadata = self._derive_metadata(info, job.hints)
        await asyncio.to_thread(create_dir, directory)
        output_path = self.allocator.reserve(directory, title, job.id)

        def mark_running(j: Job) -> None:
            j.status = JobStatus.RUNNING
            j.progress = INFO_PHASE_END
            j.title = title
            j.metadata = metadata
            j.output_path = str(output_path)

        self.registry.update(job.id, mark_running)
        self.events.job_started(job.id, title, job.quality, str(output_path))
        return output_path

    async def _extract(self, job: Job, output_path: Path, quality: int) -> int:
        command = self.extractor.download_command(job.source_url, output_path, quality)
        log.debug(f"Launching extraction for job {job.id}: {command}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionFailed(
                None, str(e), message=f"could not start extractor: {e}"
            ) from e

        self._processes[job.id] = proc
        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        try:
            if job.id in self._cancel_requested:
                # Cancelled between marking the job running and spawning.
                await self._terminate(job.id)
            await asyncio.gather(
                self._consume_stdout(job.id, proc.stdout),
                self._drain_stderr(job.id, proc.stderr, stderr_tail),
            )
            returncode = await proc.wait()
        except BaseException:
            await self._terminate(job.id)
            raise
        finally:
            self._processes.pop(job.id, None)

        self._raise_if_cancelled(job.id)
        # Past this point the job can no longer be cancelled.
        self._settling.add(job.id)
        if returncode != 0:
            raise ExtractionFailed(returncode, "\n".join(stderr_tail))

        size = await asyncio.to_thread(verify_output, str(output_path))
        await asyncio.to_thread(check_mp3, str(output_path))
        return size

    async def _consume_stdout(self, job_id: str, stream: asyncio.StreamReader) -> None:
        last = INFO_PHASE_END
        async for line in read_lines(job_id, stream):
            percent = parse_progress_line(line)
            if percent is None:
                continue
            scaled = scale_download_progress(percent)
            if scaled <= last:
                continue
            last = scaled

            def advance(j: Job, value: float = scaled) -> None:
                if j.status is JobStatus.RUNNING:
                    j.progress = value

            self.registry.update(job_id, advance)

    async def _drain_stderr(
        self, job_id: str, stream: asyncio.StreamReader, tail: deque
    ) -> None:
        async for line in read_lines(job_id, stream):
            line = line.rstrip()
            if line:
                tail.append(line)
                log.debug(f"[{job_id[:8]}] extractor stderr: {line}")

    async def _finalize(
        self, job: Job, output_path: Path, size: int, started: float
    ) -> Job:
        def mark_tagging(j: Job) -> None:
            j.status = JobStatus.TAGGING
            j.progress = DOWNLOAD_PHASE_END

        current = self.registry.update(job.id, mark_tagging)
        try:
            await asyncio.to_thread(
                self.tagger.write_tags, str(output_path), current.metadata
            )
        except MetadataWriteFailed as e:
            log.warning(f"Tagging failed for job {job.id}, keeping file: {e}")
            self.events.tagging_failed(job.id, str(e))

        size = (await asyncio.to_thread(os.stat, output_path)).st_size or size

        def mark_completed(j: Job) -> None:
            j.status = JobStatus.COMPLETED
            j.progress = 100.0
            j.size_bytes = size

        final = self.registry.update(job.id, mark_completed)
        self.events.job_completed(
            job.id, final.title or "", size, time.monotonic() - started
        )
        return final

    def _raise_if_cancelled(self, job_id: str) -> None:
        if job_id in self._cancel_requested:
            raise JobCancelledError(CANCELLED_REASON)

    async def _fail(
        self, job_id: str, error: Exception, output_path: Optional[Path]
    ) -> None:
        if output_path is not None:
            await asyncio.to_thread(remove_partial_output, output_path)

        message = str(error) or type(error).__name__

        def mark_error(j: Job) -> None:
            j.status = JobStatus.ERROR
            j.error = message

        try:
            self.registry.update(job_id, mark_error)
        except InvalidTransitionError:
            log.debug(f"Job {job_id} already terminal; not recording '{message}'.")
            return
        self.events.job_failed(job_id, message, type(error).__name__)

    async def _terminate(self, job_id: str) -> None:
        proc = self._processes.get(job_id)
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=self.cancel_grace_seconds)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            log.warning(f"Extractor for job {job_id} ignored SIGTERM; killing it.")
            proc.kill()
            await proc.wait()

    async def cancel(self, job_id: str) -> bool:
        """
        Requests termination of a job.

        A job that has not started yet is marked cancelled immediately. A
        running job has its subprocess terminated; its run then records the
        cancellation and removes the partial file. Returns False for unknown,
        terminal, or tagging jobs, and once the extraction has already exited.
        """
        job = self.registry.get(job_id)
        if job is None or job.status.is_terminal or job.status is JobStatus.TAGGING:
            return False
        if job_id in self._settling:
            log.info(f"Job {job_id} has finished extracting; too late to cancel.")
            return False

        if job_id not in self._active:
            await self._fail(job_id, JobCancelledError(CANCELLED_REASON), None)
            return True

        self._cancel_requested.add(job_id)
        await self._terminate(job_id)
        log.info(f"Cancellation requested for job {job_id}")
        return True


def remove_partial_output(output_path: Path) -> None:
    """Deletes the output file and any intermediate files sharing its stem."""
    stem = output_path.with_suffix("").name
    for candidate in output_path.parent.glob(f"{stem}.*"):
        try:
            candidate.unlink()
            log.debug(f"Removed partial file '{candidate.name}'")
        except FileNotFoundError:
            pass
        except OSError as e:
            log.error(f"Failed to clean up '{candidate}': {e}")


async def read_lines(job_id: str, stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yields decoded lines, skipping any that overrun the reader's buffer limit."""
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            log.debug(f"[{job_id[:8]}] skipped an over-long extractor output line")
            continue
        if not raw:
            return
        yield raw.decode("utf-8", errors="replace")
