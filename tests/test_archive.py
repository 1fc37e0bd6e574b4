import zipfile
from pathlib import Path

import pytest
from conftest import write_mp3

from tunefetch.exceptions import ArchiveError
from tunefetch.media.tagger import Tagger
from tunefetch.models.job import TrackMetadata
from tunefetch.storage.archive import ArchiveBuilder
from tunefetch.utils.playlist import generate_m3u


def test_build_packages_every_file_with_relative_names(tmp_path: Path) -> None:
    source = tmp_path / "Mix-1234abcd"
    write_mp3(source / "a.mp3")
    write_mp3(source / "b.mp3")
    (source / "Mix.m3u").write_text("#EXTM3U\n", encoding="utf-8")
    out = tmp_path / "Mix-1234abcd.zip"

    result = ArchiveBuilder().build(source, out)

    assert result == out
    with zipfile.ZipFile(out) as archive:
        assert sorted(archive.namelist()) == ["Mix.m3u", "a.mp3", "b.mp3"]
        assert archive.getinfo("a.mp3").compress_type == zipfile.ZIP_DEFLATED
        assert archive.read("a.mp3") == (source / "a.mp3").read_bytes()
    assert not out.with_name(out.name + ".part").exists()


def test_build_rejects_missing_or_empty_directory(tmp_path: Path) -> None:
    builder = ArchiveBuilder()
    with pytest.raises(ArchiveError):
        builder.build(tmp_path / "missing", tmp_path / "x.zip")

    (tmp_path / "empty").mkdir()
    with pytest.raises(ArchiveError):
        builder.build(tmp_path / "empty", tmp_path / "x.zip")
    assert not (tmp_path / "x.zip").exists()


def test_build_failure_leaves_no_partial_archive(monkeypatch, tmp_path: Path) -> None:
    source = tmp_path / "src"
    write_mp3(source / "a.mp3")
    out = tmp_path / "out.zip"

    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("tunefetch.storage.archive.os.replace", _fail)

    with pytest.raises(ArchiveError, match="disk full"):
        ArchiveBuilder().build(source, out)
    assert not out.exists()
    assert not out.with_name("out.zip.part").exists()


def test_generate_m3u_orders_by_track_number(tmp_path: Path) -> None:
    tagger = Tagger()
    for name, number in (("a.mp3", 2), ("b.mp3", 1)):
        path = write_mp3(tmp_path / name)
        tagger.write_tags(
            str(path), TrackMetadata(title=name[0].upper(), artist="Band", track_number=number)
        )

    playlist = generate_m3u(tmp_path, "Mix")

    assert playlist == tmp_path / "Mix.m3u"
    lines = playlist.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "#EXTM3U"
    assert [line for line in lines if not line.startswith("#")] == ["b.mp3", "a.mp3"]
    assert lines[1].startswith("#EXTINF:") and lines[1].endswith("Band - B")


def test_generate_m3u_without_audio_returns_none(tmp_path: Path) -> None:
    assert generate_m3u(tmp_path) is None
