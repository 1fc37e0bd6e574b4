"""
Utilities for handling file paths, output naming, and URL inspection.
"""

import re
import threading
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from pathvalidate import sanitize_filename

AUDIO_EXT = "mp3"


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def sanitize_title(title: str, fallback: str) -> str:
    """
    Derives a filesystem-safe file stem from a human title.

    Non-word characters are stripped and runs of whitespace collapse to a
    single underscore. Falls back to `fallback` when nothing survives.
    """
    stem = re.sub(r"[^\w\s-]", "", title)
    stem = re.sub(r"\s+", "_", stem.strip())
    stem = sanitize_filename(stem, platform="auto")[:120]
    return stem or fallback


def is_playlist_url(url: str) -> bool:
    """
    Detects playlist-shaped URLs structurally, without probing their content.

    A URL is a playlist when it carries a `list` query parameter or its path
    is a playlist page.
    """
    parsed = urlparse(url)
    if "list" in parse_qs(parsed.query):
        return True
    return parsed.path.rstrip("/").endswith("/playlist")


class OutputPathAllocator:
    """
    Hands out distinct output paths across concurrently running jobs.

    A path is taken when a file already exists there or another job holds it.
    Collisions are resolved by appending a prefix of the requesting job's id.
    """

    def __init__(self):
        self._reserved: set[str] = set()
        self._lock = threading.Lock()

    def reserve(self, directory: Path, title: str, job_id: str) -> Path:
        stem = sanitize_title(title, fallback=job_id)
        candidates = [
            directory / f"{stem}.{AUDIO_EXT}",
            directory / f"{stem}-{job_id[:8]}.{AUDIO_EXT}",
            directory / f"{stem}-{job_id}.{AUDIO_EXT}",
        ]
        with self._lock:
            for candidate in candidates:
                key = str(candidate)
                if key not in self._reserved and not candidate.exists():
                    self._reserved.add(key)
                    return candidate
            # The full job id is unique, so this only happens if a stale file
            # with that exact name is left over from a previous run.
            candidate = candidates[-1]
            self._reserved.add(str(candidate))
            return candidate

    def release(self, path: Path | str | None) -> None:
        if path is None:
            return
        with self._lock:
            self._reserved.discard(str(path))
