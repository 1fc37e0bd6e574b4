"""
Parsing of the extractor's textual progress output.
"""

import re
from typing import Optional

# yt-dlp prints e.g. "[download]  45.2% of 3.45MiB at 1.2MiB/s ETA 00:02"
_PROGRESS_RE = re.compile(r"\[download\]\s+(?P<pct>\d+(?:\.\d+)?)%")

# The share of the overall progress bar reserved for each phase.
INFO_PHASE_END = 10.0
DOWNLOAD_PHASE_END = 90.0


def parse_progress_line(line: str) -> Optional[float]:
    """
    Extracts the download percentage from one line of extractor output.

    Args:
        line: A single stdout line, with or without the trailing newline.

    Returns:
        The percentage as a float clamped to [0, 100], or None when the line
        carries no progress information.
    """
    match = _PROGRESS_RE.search(line)
    if not match:
        return None
    return min(100.0, max(0.0, float(match.group("pct"))))


def scale_download_progress(percent: float) -> float:
    """Maps 0-100% of download activity onto the 10-90 band of job progress."""
    percent = min(100.0, max(0.0, percent))
    span = DOWNLOAD_PHASE_END - INFO_PHASE_END
    return INFO_PHASE_END + percent * span / 100.0
