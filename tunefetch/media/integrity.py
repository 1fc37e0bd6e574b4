"""
Provides methods for checking the integrity of extracted audio files.
"""

import logging
import os

from mutagen.mp3 import MP3, HeaderNotFoundError

from tunefetch.exceptions import OutputEmpty, OutputMissing

log = logging.getLogger(__name__)


def verify_output(filepath: str) -> int:
    """
    Confirms the extractor left a finalized file behind.

    Args:
        filepath: Where the extractor was told to write.

    Returns:
        The file size in bytes.

    Raises:
        OutputMissing: No file exists at `filepath`.
        OutputEmpty: The file exists but is zero bytes; it is deleted.
    """
    if not os.path.isfile(filepath):
        raise OutputMissing(
            f"Output file was not created: {os.path.basename(filepath)}"
        )
    size = os.path.getsize(filepath)
    if size == 0:
        os.remove(filepath)
        raise OutputEmpty(f"Downloaded file is empty: {os.path.basename(filepath)}")
    return size


def check_mp3(filepath: str) -> bool:
    """
    Performs a basic integrity check on an MP3 file.

    Checks if the file can be opened by mutagen and has valid stream info. The
    result is advisory; callers only log a failure.
    """
    try:
        audio = MP3(filepath)
        if audio.info and audio.info.length > 0:
            return True
        log.warning(
            f"MP3 integrity check failed for '{filepath}': No valid stream info."
        )
        return False
    except HeaderNotFoundError:
        log.warning(f"MP3 integrity check failed for '{filepath}': Missing MP3 header.")
        return False
    except Exception as e:
        log.debug(f"MP3 check failed for '{filepath}' with unexpected error: {e}")
        return False
