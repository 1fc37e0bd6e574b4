"""
Handles deriving track metadata and writing it as ID3 tags to extracted files.
"""

import logging
import os
import re
import shutil
from typing import Optional

import mutagen.id3 as id3
from mutagen import MutagenError
from mutagen.id3 import ID3NoHeaderError

from tunefetch.exceptions import MetadataWriteFailed
from tunefetch.models.job import TrackMetadata

log = logging.getLogger(__name__)

ENCODED_BY = "tunefetch"
TAG_DEFAULTS = TrackMetadata(album="Unknown Album", genre="Unknown Genre")

# Fields compared after writing to confirm the tags landed.
VERIFIED_FIELDS = ("title", "artist", "album")

_TITLE_PATTERNS = [
    # Artist - Title (Official Video)
    re.compile(r"^(?P<artist>[^-]+?)\s*-\s*(?P<title>[^(]+?)(?:\s*\([^)]*\))*\s*$"),
    # Artist "Title" (Official Video)
    re.compile(r'^(?P<artist>[^"]+?)\s*"(?P<title>[^"]+)"(?:\s*\([^)]*\))*\s*$'),
    # [Official Video] Artist - Title
    re.compile(
        r"^(?:\[.*?\]\s*)?(?P<artist>[^-]+?)\s*-\s*(?P<title>.+?)(?:\s*\([^)]*\))*\s*$"
    ),
]


def parse_title_artist(video_title: str) -> tuple[str, str]:
    """
    Splits a video title such as "Artist - Title (Official Video)" into
    (artist, title). Unrecognised titles give ("Unknown Artist", title).
    """
    for pattern in _TITLE_PATTERNS:
        match = pattern.match(video_title)
        if match:
            return match.group("artist").strip(), match.group("title").strip()
    return "Unknown Artist", video_title.strip()


def merge_tags(incoming: TrackMetadata, existing: TrackMetadata) -> TrackMetadata:
    """Incoming values win, then values already in the file, then fixed defaults."""
    return incoming.merged_over(existing).merged_over(TAG_DEFAULTS)


def _first_text(tags: id3.ID3, frame_id: str) -> Optional[str]:
    frames = tags.getall(frame_id)
    if not frames or not frames[0].text:
        return None
    return str(frames[0].text[0])


def read_tags(path: str) -> TrackMetadata:
    """
    Reads the ID3 tags of `path` into a TrackMetadata.

    Raises ID3NoHeaderError when the file has no tag, and MutagenError or
    OSError when it cannot be read.
    """
    tags = id3.ID3(path)
    track = _first_text(tags, "TRCK")
    comments = [
        str(c.text[0]) for c in tags.getall("COMM") if c.text and c.desc == ""
    ]
    return TrackMetadata(
        title=_first_text(tags, "TIT2"),
        artist=_first_text(tags, "TPE1"),
        album=_first_text(tags, "TALB"),
        year=_first_text(tags, "TDRC"),
        genre=_first_text(tags, "TCON"),
        comment=comments[0] if comments else None,
        track_number=int(track.split("/")[0])
        if track and track.split("/")[0].isdigit()
        else None,
    )


class TagTransaction:
    """
    Guards an in-place tag write with a backup copy of the file.

    Entering copies the file aside. Leaving normally deletes the copy; leaving
    with an exception moves the copy back over the original.
    """

    def __init__(self, path: str):
        self.path = path
        self.backup_path = f"{path}.bak"

    def __enter__(self) -> "TagTransaction":
        shutil.copy2(self.path, self.backup_path)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    def commit(self) -> None:
        try:
            os.remove(self.backup_path)
        except OSError as e:
            log.warning(f"Failed to remove tag backup '{self.backup_path}': {e}")

    def rollback(self) -> None:
        try:
            os.replace(self.backup_path, self.path)
            log.info(f"Restored '{os.path.basename(self.path)}' from backup.")
        except OSError as e:
            log.error(f"Failed to restore '{self.path}' from backup: {e}")


class Tagger:
    """Writes metadata tags to MP3 files."""

    def write_tags(self, path: str, metadata: TrackMetadata) -> TrackMetadata:
        """
        Merges `metadata` into the file's tags.

        Returns the tag set that was written. Raises MetadataWriteFailed if the
        write or its verification fails, after restoring the original file.
        """
        name = os.path.basename(path)
        merged = merge_tags(metadata, self._read_existing(path))
        log.debug(
            f"Writing tags to '{name}': title={merged.title!r} "
            f"artist={merged.artist!r} album={merged.album!r}"
        )
        try:
            with TagTransaction(path):
                self._write(path, merged)
                self._verify(path, merged)
        except MetadataWriteFailed:
            raise
        except (MutagenError, OSError) as e:
            raise MetadataWriteFailed(f"Failed to tag file '{name}': {e}") from e
        log.info(f"Tagged '{name}'")
        return merged

    def _read_existing(self, path: str) -> TrackMetadata:
        try:
            return read_tags(path)
        except ID3NoHeaderError:
            return TrackMetadata()
        except (MutagenError, OSError, ValueError) as e:
            log.warning(f"Could not read existing tags from '{path}': {e}")
            return TrackMetadata()

    def _write(self, path: str, tags: TrackMetadata) -> None:
        try:
            audio = id3.ID3(path)
        except ID3NoHeaderError:
            audio = id3.ID3()

        if tags.title:
            audio.setall("TIT2", [id3.TIT2(encoding=3, text=tags.title)])
        if tags.artist:
            audio.setall("TPE1", [id3.TPE1(encoding=3, text=tags.artist)])
        audio.setall("TALB", [id3.TALB(encoding=3, text=tags.album)])
        audio.setall("TCON", [id3.TCON(encoding=3, text=tags.genre)])
        if tags.year:
            audio.setall("TDRC", [id3.TDRC(encoding=3, text=tags.year)])
        if tags.track_number:
            audio.setall("TRCK", [id3.TRCK(encoding=3, text=str(tags.track_number))])
        if tags.comment:
            audio.setall(
                "COMM",
                [
                    id3.COMM(encoding=3, lang="eng", desc="", text=tags.comment),
                    id3.COMM(
                        encoding=3,
                        lang="eng",
                        desc="Source",
                        text=f"Source: {tags.comment}",
                    ),
                ],
            )
        audio.setall("TENC", [id3.TENC(encoding=3, text=ENCODED_BY)])
        audio.save(filename=path, v2_version=3)

    def _verify(self, path: str, expected: TrackMetadata) -> None:
        try:
            written = read_tags(path)
        except (MutagenError, OSError) as e:
            raise MetadataWriteFailed(
                f"Could not read back tags from '{os.path.basename(path)}': {e}"
            ) from e
        for field_name in VERIFIED_FIELDS:
            want = getattr(expected, field_name)
            got = getattr(written, field_name)
            if want and want != got:
                raise MetadataWriteFailed(
                    f"Tag '{field_name}' did not persist in "
                    f"'{os.path.basename(path)}' (wrote {want!r}, read {got!r})"
                )
