"""
Utility for generating M3U playlist files.
"""

import logging
from pathlib import Path

from mutagen import File as MutagenFile
from mutagen import MutagenError

log = logging.getLogger(__name__)


def _track_number(audio) -> int:
    if not audio:
        return 999
    value = (audio.get("tracknumber") or ["999"])[0]
    head = value.split("/")[0]
    return int(head) if head.isdigit() else 999


def generate_m3u(playlist_directory: Path, playlist_name: str | None = None) -> Path | None:
    """
    Generates an M3U playlist file for all MP3 tracks in a given directory.

    Tracks are ordered by their track-number tag, then by file name. Returns
    the playlist path, or None when there was nothing to list or writing failed.
    """
    playlist_path = playlist_directory / f"{playlist_name or playlist_directory.name}.m3u"

    entries = []
    for audio_path in playlist_directory.glob("*.mp3"):
        try:
            audio = MutagenFile(audio_path, easy=True)
        except MutagenError:
            audio = None
        entries.append((_track_number(audio), audio_path.name, audio_path, audio))

    if not entries:
        log.debug(f"No audio files found in '{playlist_directory}' to create playlist.")
        return None

    content = ["#EXTM3U"]
    for _, _, audio_path, audio in sorted(entries, key=lambda e: (e[0], e[1])):
        if audio is not None and audio.info:
            length = int(audio.info.length)
            artist = (audio.get("artist") or ["Unknown Artist"])[0]
            title = (audio.get("title") or [audio_path.stem])[0]
            content.append(f"#EXTINF:{length},{artist} - {title}")
        else:
            content.append(f"#EXTINF:-1,{audio_path.stem}")
        content.append(audio_path.name)

    try:
        with open(playlist_path, "w", encoding="utf-8") as f:
            f.write("\n".join(content) + "\n")
        log.info(f"Generated playlist: '{playlist_path}'")
        return playlist_path
    except OSError as e:
        log.error(f"Failed to write playlist file: {e}")
        return None
