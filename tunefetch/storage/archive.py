"""
Packages a playlist's downloaded tracks into a single compressed archive.
"""

import logging
import os
import zipfile
from pathlib import Path

from tunefetch.exceptions import ArchiveError

log = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ArchiveBuilder:
    """
    Writes every file under a directory into a ZIP archive at maximum
    compression. The archive is assembled under a temporary name and only
    moved into place once complete.
    """

    def __init__(self, compresslevel: int = 9):
        self.compresslevel = compresslevel

    def build(self, source_dir: Path, out_path: Path) -> Path:
        """
        Packages `source_dir` into `out_path`.

        Raises:
            ArchiveError: The directory is missing or empty, or any read or
            write failed. No partial archive is left behind.
        """
        source_dir = Path(source_dir)
        out_path = Path(out_path)
        if not source_dir.is_dir():
            raise ArchiveError(f"Source directory '{source_dir}' does not exist.")

        files = sorted(
            p for p in source_dir.rglob("*") if p.is_file() and p != out_path
        )
        if not files:
            raise ArchiveError(f"Nothing to archive in '{source_dir}'.")

        part_path = out_path.with_name(out_path.name + ".part")
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(
                part_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compresslevel,
            ) as archive:
                for file_path in files:
                    arcname = file_path.relative_to(source_dir).as_posix()
                    with open(file_path, "rb") as src, archive.open(arcname, "w") as dst:
                        while chunk := src.read(CHUNK_SIZE):
                            dst.write(chunk)
            os.replace(part_path, out_path)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            try:
                part_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                log.error(f"Failed to remove partial archive '{part_path}': {cleanup_error}")
            raise ArchiveError(f"Failed to build archive '{out_path.name}': {e}") from e

        log.info(f"Built archive '{out_path.name}' with {len(files)} files.")
        return out_path
