"""
Expands playlist URLs into one child job per enumerated item.
"""

import logging
from pathlib import Path

from tunefetch.exceptions import ExtractorError, NoItemsFound
from tunefetch.media.extractor import Extractor, PlaylistListing
from tunefetch.models.job import Playlist, TrackMetadata
from tunefetch.storage.registry import JobRegistry
from tunefetch.utils.path import sanitize_title
from tunefetch.utils.structured_logger import JobEventLogger, create_event_logger

log = logging.getLogger(__name__)


class PlaylistExpander:
    """
    Turns a playlist URL into a Playlist record and its member jobs.

    Expansion happens in two steps so that a request naming several playlists
    can enumerate all of them before creating any job: `enumerate` only queries
    the extractor, `materialize` only touches the registry.
    """

    def __init__(
        self,
        registry: JobRegistry,
        extractor: Extractor,
        downloads_dir: Path,
        events: JobEventLogger | None = None,
    ):
        self.registry = registry
        self.extractor = extractor
        self.downloads_dir = Path(downloads_dir)
        self.events = events or create_event_logger()

    async def enumerate(self, url: str) -> PlaylistListing:
        """
        Lists the playlist's items.

        Raises NoItemsFound when the extractor fails or yields no usable item.
        """
        try:
            listing = await self.extractor.fetch_playlist_entries(url)
        except ExtractorError as e:
            raise NoItemsFound(f"Could not enumerate playlist {url}: {e}") from e

        usable = [entry for entry in listing.entries if entry.entry_url()]
        if len(usable) < len(listing.entries):
            log.warning(
                f"Dropped {len(listing.entries) - len(usable)} playlist entries "
                f"without an id or URL from {url}"
            )
        if not usable:
            raise NoItemsFound(f"No items found in playlist {url}")
        listing.entries = usable
        return listing

    def materialize(self, listing: PlaylistListing, quality: int) -> Playlist:
        """
        Creates one job per item, in enumeration order, and the Playlist
        record over them. Jobs are created but not started.
        """
        playlist_id = self.registry.new_playlist_id()
        title = listing.title or f"playlist_{playlist_id[:8]}"
        directory = self.downloads_dir / (
            f"{sanitize_title(title, fallback='playlist')}-{playlist_id[:8]}"
        )

        member_ids = []
        for index, entry in enumerate(listing.entries, start=1):
            hints = TrackMetadata(
                album=title,
                artist=entry.uploader or entry.channel or entry.playlist_uploader,
                track_number=index,
            )
            job = self.registry.create(
                entry.entry_url(),
                quality=quality,
                playlist_id=playlist_id,
                hints=hints,
            )
            member_ids.append(job.id)

        playlist = self.registry.register_playlist(
            Playlist(
                id=playlist_id,
                source_url=listing.source_url,
                title=title,
                member_job_ids=tuple(member_ids),
                directory=str(directory),
            )
        )
        self.events.playlist_expanded(playlist.id, title, len(member_ids))
        return playlist

    async def expand(self, url: str, quality: int) -> Playlist:
        """Enumerates and materializes a single playlist URL."""
        return self.materialize(await self.enumerate(url), quality)
