"""
Helper functions for formatting job data into human-readable strings.
"""

from typing import Optional

from tunefetch.models.job import JobStatus

STATUS_STYLES = {
    JobStatus.QUEUED: "dim",
    JobStatus.RUNNING: "cyan",
    JobStatus.TAGGING: "magenta",
    JobStatus.COMPLETED: "green",
    JobStatus.ERROR: "red",
}


def format_size(bytes_size: Optional[int]) -> str:
    """Formats bytes into a human-readable size string (e.g., '4.2 MB')."""
    if not bytes_size or bytes_size <= 0:
        return "-"
    size = float(bytes_size)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def format_duration(seconds: Optional[float]) -> str:
    """Formats seconds as 'm:ss', or 'h:mm:ss' past an hour, like a track length."""
    if seconds is None or seconds < 0:
        return "-"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def shorten(text: str, width: int = 48) -> str:
    """
    Shortens a track description to `width` characters. For 'Artist - Title'
    strings the title end is kept, since that is what distinguishes tracks.
    """
    if len(text) <= width:
        return text
    artist, sep, title = text.partition(" - ")
    if sep and len(artist) < width // 2:
        keep = width - len(artist) - len(sep) - 1
        return f"{artist}{sep}…{title[-keep:]}"
    return text[: width - 1] + "…"


def styled_status(status: JobStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"
