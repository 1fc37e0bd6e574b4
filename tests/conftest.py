import sys
from pathlib import Path
from typing import Optional

import pytest

# Ensure tests can import the package regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from tunefetch.exceptions import ExtractorError  # noqa: E402
from tunefetch.media.extractor import Extractor, PlaylistListing  # noqa: E402
from tunefetch.models.config import ServerConfig  # noqa: E402
from tunefetch.models.job import VideoInfo  # noqa: E402

# One MPEG-1 Layer III frame: 128 kbps, 44.1 kHz, joint stereo, 417 bytes.
MP3_FRAME = b"\xff\xfb\x90\x64" + b"\x00" * 413


def mp3_bytes(frames: int = 40) -> bytes:
    return MP3_FRAME * frames


def write_mp3(path: Path, frames: int = 40) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(mp3_bytes(frames))
    return path


# Stands in for yt-dlp: argv is [output_path, mode].
FAKE_EXTRACTOR_SCRIPT = r"""
import sys
import time

out, mode = sys.argv[1], sys.argv[2]
frame = b"\xff\xfb\x90\x64" + b"\x00" * 413

if mode == "fail":
    sys.stderr.write("ERROR: Video unavailable\n")
    sys.exit(2)

if mode == "noisy":
    sys.stderr.write("x" * 200000 + "\n")
    sys.stderr.flush()
    mode = "ok"

for pct in ("12.5", "50.0", "100.0"):
    print(f"[download]  {pct}% of 1.00MiB at 1.00MiB/s ETA 00:00", flush=True)

if mode == "hang":
    with open(out[: -len(".mp3")] + ".webm.part", "wb") as f:
        f.write(b"partial")
    time.sleep(60)
elif mode == "empty":
    open(out, "wb").close()
elif mode == "ok":
    with open(out, "wb") as f:
        f.write(frame * 40)
"""


class FakeExtractor(Extractor):
    """
    Serves canned info and playlist listings and runs a small Python script
    in place of the real extraction binary. `modes` maps a URL to one of
    ok, noisy, fail, empty, missing or hang.
    """

    def __init__(
        self,
        infos: Optional[dict[str, dict]] = None,
        playlists: Optional[dict[str, PlaylistListing]] = None,
        modes: Optional[dict[str, str]] = None,
    ):
        super().__init__(binary=sys.executable, embed_thumbnail=False)
        self.infos = infos or {}
        self.playlists = playlists or {}
        self.modes = modes or {}
        self.commands: list[list[str]] = []

    async def fetch_info(self, url: str) -> VideoInfo:
        if url not in self.infos:
            raise ExtractorError(f"no info for {url}")
        return VideoInfo.model_validate(self.infos[url])

    async def fetch_playlist_entries(self, url: str) -> PlaylistListing:
        if url not in self.playlists:
            raise ExtractorError(f"not a playlist: {url}")
        listing = self.playlists[url]
        return PlaylistListing(
            source_url=listing.source_url,
            title=listing.title,
            entries=list(listing.entries),
        )

    def download_command(self, url: str, output_path: Path, quality: int) -> list[str]:
        command = [
            sys.executable,
            "-c",
            FAKE_EXTRACTOR_SCRIPT,
            str(output_path),
            self.modes.get(url, "ok"),
        ]
        self.commands.append(command)
        return command


@pytest.fixture
def config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(
        downloads_dir=str(tmp_path / "downloads"),
        cancel_grace_seconds=2.0,
        config_path=str(tmp_path),
    )
