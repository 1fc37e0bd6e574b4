"""
Invocation contract for the external extraction binary (yt-dlp).

Every call passes the source URL as a discrete argument; nothing is ever
interpolated into a shell string.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from tunefetch.exceptions import ExtractorError
from tunefetch.models.config import BEST_QUALITY
from tunefetch.models.job import VideoInfo

log = logging.getLogger(__name__)


@dataclass
class PlaylistListing:
    """The flat enumeration of one playlist URL."""

    source_url: str
    title: Optional[str] = None
    entries: list[VideoInfo] = field(default_factory=list)


def audio_quality_arg(quality: int) -> str:
    """
    Translates a requested bitrate into yt-dlp's --audio-quality value.

    0 means best available and maps to yt-dlp's best VBR setting; any other
    value is a constant bitrate in kbps.
    """
    return "0" if quality == BEST_QUALITY else f"{quality}K"


class Extractor:
    """Builds and runs yt-dlp invocations."""

    def __init__(
        self,
        binary: str = "yt-dlp",
        embed_thumbnail: bool = True,
        query_timeout: float = 120.0,
    ):
        self.binary = binary
        self.embed_thumbnail = embed_thumbnail
        self.query_timeout = query_timeout

    def info_args(self, url: str) -> list[str]:
        return [
            self.binary,
            "--dump-json",
            "--no-warnings",
            "--no-playlist",
            "--skip-download",
            "--",
            url,
        ]

    def playlist_args(self, url: str) -> list[str]:
        return [
            self.binary,
            "--flat-playlist",
            "--dump-json",
            "--no-warnings",
            "--ignore-errors",
            "--",
            url,
        ]

    def download_command(self, url: str, output_path: Path, quality: int) -> list[str]:
        """
        Returns the argument list for the long-running extraction of one item.

        The output template keeps the stem of `output_path` and lets yt-dlp
        pick the extension of intermediate files; the final audio file lands
        exactly at `output_path`.
        """
        output_template = str(output_path.with_suffix("")) + ".%(ext)s"
        args = [
            self.binary,
            "--extract-audio",
            "--audio-format",
            "mp3",
            "--audio-quality",
            audio_quality_arg(quality),
            "--output",
            output_template,
            "--no-mtime",
            "--no-playlist",
            "--newline",
            "--no-colors",
            "--add-metadata",
        ]
        if self.embed_thumbnail:
            args.append("--embed-thumbnail")
        args.extend(["--", url])
        return args

    async def _run_query(self, args: list[str]) -> str:
        """Runs a short-lived query and returns its stdout."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractorError(f"Could not start '{self.binary}': {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.query_timeout
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ExtractorError(
                f"'{self.binary}' query timed out after {self.query_timeout:.0f}s"
            ) from e

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            raise ExtractorError(
                f"'{self.binary}' exited with code {proc.returncode}"
                + (f": {detail[-1]}" if detail else "")
            )
        return stdout.decode("utf-8", errors="replace")

    async def fetch_info(self, url: str) -> VideoInfo:
        """Queries the title and descriptive metadata of a single item."""
        output = await self._run_query(self.info_args(url))
        first_line = next((line for line in output.splitlines() if line.strip()), "")
        try:
            return VideoInfo.model_validate(json.loads(first_line))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ExtractorError(f"Unreadable info for {url}: {e}") from e

    async def fetch_playlist_entries(self, url: str) -> PlaylistListing:
        """Lists a playlist's members without downloading them."""
        output = await self._run_query(self.playlist_args(url))
        listing = PlaylistListing(source_url=url)
        for line in output.splitlines():
            if not line.strip():
                continue
            try:
                entry = VideoInfo.model_validate(json.loads(line))
            except (json.JSONDecodeError, PydanticValidationError) as e:
                log.warning(f"Skipping unreadable playlist entry: {e}")
                continue
            listing.entries.append(entry)
            if listing.title is None and entry.playlist_title:
                listing.title = entry.playlist_title
        log.debug(f"Enumerated {len(listing.entries)} entries from {url}")
        return listing
