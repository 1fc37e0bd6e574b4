from datetime import datetime

from tunefetch.models.job import (
    Job,
    JobStatus,
    Playlist,
    VideoInfo,
    playlist_status,
)


def test_to_metadata_applies_defaults() -> None:
    metadata = VideoInfo().to_metadata()

    assert metadata.title == "Unknown Title"
    assert metadata.artist == "Unknown Artist"
    assert metadata.album == "Unknown Album"
    assert metadata.genre == "Unknown Genre"
    assert metadata.year == str(datetime.now().year)
    assert metadata.duration == 0


def test_to_metadata_prefers_item_values_and_playlist_album() -> None:
    info = VideoInfo(
        title="Song",
        channel="Channel",
        upload_date="20190102",
        categories=["Music"],
        webpage_url="https://example.com/watch?v=1",
        duration=61,
    )
    metadata = info.to_metadata(album_hint="Road Trip", artist_fallback="Curator")

    assert metadata.artist == "Channel"
    assert metadata.album == "Road Trip"
    assert metadata.year == "2019"
    assert metadata.genre == "Music"
    assert metadata.comment == "https://example.com/watch?v=1"


def test_entry_url_falls_back_to_watch_url_from_id() -> None:
    assert VideoInfo(id="abc").entry_url() == "https://www.youtube.com/watch?v=abc"
    assert VideoInfo(url="https://x.test/v/1").entry_url() == "https://x.test/v/1"
    assert VideoInfo().entry_url() is None


def test_status_dict_omits_unset_fields() -> None:
    job = Job(id="j1", source_url="https://example.com/a")
    view = job.to_status_dict()

    assert view["id"] == "j1"
    assert view["status"] == "queued"
    assert "error" not in view
    assert "size" not in view
    assert view["lastUpdated"].endswith("+00:00")


def test_playlist_status_is_derived_from_members() -> None:
    playlist = Playlist(id="p", source_url="u", title="t", member_job_ids=("a", "b"))
    done = Job(id="a", source_url="u", status=JobStatus.COMPLETED)
    running = Job(id="b", source_url="u", status=JobStatus.RUNNING)
    failed = Job(id="b", source_url="u", status=JobStatus.ERROR)

    assert playlist_status(playlist, [done, running]) == "processing"
    assert playlist_status(playlist, [done, failed]) == "error"
    both_done = [done, Job(id="b", source_url="u", status=JobStatus.COMPLETED)]
    assert playlist_status(playlist, both_done) == "processing"
    playlist.packaged = True
    assert playlist_status(playlist, both_done) == "completed"
