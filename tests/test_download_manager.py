import asyncio
import zipfile
from pathlib import Path

import pytest
from conftest import FakeExtractor

from tunefetch.core.download_manager import DownloadManager
from tunefetch.exceptions import ArchiveError, NoItemsFound, ValidationError
from tunefetch.media.extractor import PlaylistListing
from tunefetch.media.tagger import read_tags
from tunefetch.models.job import JobStatus, VideoInfo

SINGLE = "https://www.example.com/watch?v=single"
PLAYLIST = "https://www.example.com/playlist?list=PL1"
EMPTY_PLAYLIST = "https://www.example.com/playlist?list=EMPTY"


def _listing(*entries) -> PlaylistListing:
    return PlaylistListing(
        source_url=PLAYLIST,
        title="Road Trip",
        entries=[VideoInfo(**e) for e in entries],
    )


def _extractor(modes=None) -> FakeExtractor:
    urls = [f"https://www.example.com/watch?v={i}" for i in ("t1", "t2")]
    return FakeExtractor(
        infos={
            SINGLE: {"title": "Solo Song", "uploader": "Solo"},
            urls[0]: {"title": "First", "uploader": "Band"},
            urls[1]: {"title": "Second", "uploader": "Band"},
        },
        playlists={
            PLAYLIST: _listing(
                {"id": "t1", "url": urls[0], "uploader": "Band"},
                {"id": "t2", "url": urls[1]},
            ),
            EMPTY_PLAYLIST: PlaylistListing(source_url=EMPTY_PLAYLIST),
        },
        modes=modes,
    )


def _run(manager: DownloadManager, urls, quality=192):
    async def scenario():
        result = await manager.start(urls, quality)
        await manager.wait_idle()
        return result

    return asyncio.run(scenario())


def test_start_deduplicates_urls_and_keeps_order(config) -> None:
    manager = DownloadManager(config, extractor=_extractor())

    result = _run(manager, [SINGLE, SINGLE, f"  {SINGLE}  "])

    assert len(result.job_ids) == 1
    job = manager.registry.get(result.job_ids[0])
    assert job.status is JobStatus.COMPLETED
    assert Path(job.output_path).parent == Path(config.downloads_dir)


def test_playlist_members_are_tagged_and_archived(config) -> None:
    manager = DownloadManager(config, extractor=_extractor())

    result = _run(manager, [SINGLE, PLAYLIST])

    assert len(result.job_ids) == 3
    playlist = manager.registry.get_playlist(result.playlists[0].id)
    assert playlist.member_job_ids == tuple(result.job_ids[1:])
    members = manager.registry.list_jobs(playlist.member_job_ids)
    assert all(m.status is JobStatus.COMPLETED for m in members)

    first = read_tags(members[0].output_path)
    assert first.album == "Road Trip"
    assert first.track_number == 1
    assert read_tags(members[1].output_path).track_number == 2

    archive_path = Path(playlist.archive_path)
    assert archive_path.parent == Path(config.downloads_dir)
    with zipfile.ZipFile(archive_path) as archive:
        names = archive.namelist()
    assert sorted(n for n in names if n.endswith(".mp3")) == ["First.mp3", "Second.mp3"]
    assert "Road Trip.m3u" in names

    view = manager.playlist_view(playlist.id)
    assert view["status"] == "completed"
    assert view["archiveReady"] is True


def test_failed_member_does_not_stop_siblings(config) -> None:
    modes = {"https://www.example.com/watch?v=t2": "fail"}
    manager = DownloadManager(config, extractor=_extractor(modes))

    result = _run(manager, [PLAYLIST])

    statuses = [j.status for j in manager.registry.list_jobs(result.job_ids)]
    assert statuses == [JobStatus.COMPLETED, JobStatus.ERROR]
    view = manager.playlist_view(result.playlists[0].id)
    assert view["status"] == "error"
    assert view["archiveReady"] is True


def test_empty_playlist_fails_request_before_any_job_exists(config) -> None:
    manager = DownloadManager(config, extractor=_extractor())

    with pytest.raises(NoItemsFound):
        _run(manager, [SINGLE, EMPTY_PLAYLIST])

    assert manager.registry.list_jobs() == []


@pytest.mark.parametrize("urls,quality", [([], 192), (["  "], 192), ([SINGLE], 12)])
def test_start_rejects_bad_input_before_any_job_exists(config, urls, quality) -> None:
    manager = DownloadManager(config, extractor=_extractor())

    with pytest.raises(ValidationError) as excinfo:
        _run(manager, urls, quality)

    assert excinfo.value.status_code == 400
    assert manager.registry.list_jobs() == []


def test_playlist_reports_processing_until_packaged(config) -> None:
    manager = DownloadManager(config, extractor=_extractor())
    views = []
    real_update = manager.registry.update_playlist

    def recording_update(playlist_id, **changes):
        views.append(manager.playlist_view(playlist_id)["status"])
        return real_update(playlist_id, **changes)

    manager.registry.update_playlist = recording_update
    result = _run(manager, [PLAYLIST])

    assert views == ["processing"]
    assert manager.playlist_view(result.playlists[0].id)["status"] == "completed"


def test_archive_failure_is_recorded_on_playlist(config) -> None:
    class BrokenBuilder:
        def build(self, source_dir, out_path):
            raise ArchiveError("disk full")

    manager = DownloadManager(
        config, extractor=_extractor(), archive_builder=BrokenBuilder()
    )

    result = _run(manager, [PLAYLIST])

    playlist = manager.registry.get_playlist(result.playlists[0].id)
    assert playlist.archive_path is None
    assert playlist.archive_error == "disk full"
    assert manager.playlist_view(playlist.id)["status"] == "error"


def test_job_statuses_flags_unknown_ids(config) -> None:
    manager = DownloadManager(config, extractor=_extractor())
    result = _run(manager, [SINGLE])

    statuses = manager.job_statuses(["nope", result.job_ids[0]])

    assert statuses[0] == {"id": "nope", "error": "not found"}
    assert statuses[1]["status"] == "completed"
    assert statuses[1]["progress"] == 100


def test_shutdown_cancels_running_jobs(config) -> None:
    manager = DownloadManager(config, extractor=_extractor({SINGLE: "hang"}))

    async def scenario():
        result = await manager.start([SINGLE], 192)
        job_id = result.job_ids[0]
        for _ in range(200):
            if manager.supervisor.is_running(job_id):
                break
            await asyncio.sleep(0.05)
        await manager.shutdown()
        return job_id

    job_id = asyncio.run(scenario())

    job = manager.registry.get(job_id)
    assert job.status is JobStatus.ERROR
    assert job.error == "cancelled"
