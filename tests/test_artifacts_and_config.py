import asyncio
from pathlib import Path

import pytest

from tunefetch.api.artifacts import ArtifactServer
from tunefetch.api.rate_limiter import RequestRateGate
from tunefetch.exceptions import (
    ArtifactFileMissing,
    ArtifactNotFound,
    ArtifactNotReady,
    ConfigurationError,
)
from tunefetch.models.job import JobStatus
from tunefetch.storage.config_manager import ConfigManager
from tunefetch.storage.registry import JobRegistry


def _completed_job(registry: JobRegistry, path: Path):
    job = registry.create("https://example.com/a")

    def finish(j):
        j.status = JobStatus.RUNNING
        j.output_path = str(path)

    registry.update(job.id, finish)
    registry.update(job.id, lambda j: setattr(j, "status", JobStatus.COMPLETED))
    return job


def test_resolve_rejects_unknown_and_unfinished_jobs(tmp_path: Path) -> None:
    registry = JobRegistry()
    server = ArtifactServer(registry)
    queued = registry.create("https://example.com/a")

    with pytest.raises(ArtifactNotFound):
        server.resolve("missing")
    with pytest.raises(ArtifactNotReady):
        server.resolve(queued.id)


def test_resolve_reports_missing_file(tmp_path: Path) -> None:
    registry = JobRegistry()
    job = _completed_job(registry, tmp_path / "gone.mp3")

    with pytest.raises(ArtifactFileMissing):
        ArtifactServer(registry).resolve(job.id)


def test_stream_yields_file_in_chunks(tmp_path: Path) -> None:
    path = tmp_path / "song.mp3"
    path.write_bytes(b"0123456789" * 10)
    registry = JobRegistry()
    job = _completed_job(registry, path)
    server = ArtifactServer(registry, chunk_size=32)

    artifact = server.resolve(job.id)

    async def collect():
        return [chunk async for chunk in server.stream(artifact)]

    chunks = asyncio.run(collect())
    assert artifact.size == 100
    assert artifact.filename == "song.mp3"
    assert [len(c) for c in chunks] == [32, 32, 32, 4]
    assert b"".join(chunks) == path.read_bytes()


def test_rate_gate_window_is_per_client(monkeypatch) -> None:
    clock = [1000.0]
    monkeypatch.setattr("tunefetch.api.rate_limiter.time.monotonic", lambda: clock[0])
    gate = RequestRateGate(max_requests=2, window=60)

    assert gate.allow("a") and gate.allow("a")
    assert not gate.allow("a")
    assert gate.allow("b")

    clock[0] += 61
    assert gate.allow("a")


def test_rate_gate_forgets_idle_clients(monkeypatch) -> None:
    clock = [1000.0]
    monkeypatch.setattr("tunefetch.api.rate_limiter.time.monotonic", lambda: clock[0])
    gate = RequestRateGate(max_requests=5, window=60)
    gate.allow("a")
    gate.allow("b")

    clock[0] += 61
    gate.allow("c")

    assert set(gate._hits) == {"c"}


def test_rate_gate_disabled_with_zero() -> None:
    gate = RequestRateGate(max_requests=0)
    assert all(gate.allow("a") for _ in range(500))


def test_config_precedence_file_then_env_then_cli(tmp_path: Path) -> None:
    config_file = tmp_path / "config.ini"
    config_file.write_text(
        "[DEFAULT]\ndefault_quality = 256\nport = 4000\nmax_concurrent = 2\n",
        encoding="utf-8",
    )
    manager = ConfigManager(config_file)

    config = manager.load_config(
        {"max_concurrent": 8, "host": None},
        environ={"TUNEFETCH_PORT": "5000", "TUNEFETCH_EMBED_THUMBNAIL": "false"},
    )

    assert config.default_quality == 256
    assert config.port == 5000
    assert config.max_concurrent == 8
    assert config.embed_thumbnail is False
    assert config.host == "0.0.0.0"
    assert "rate_limit_window" in config_file.read_text(encoding="utf-8")


def test_config_defaults_without_file(tmp_path: Path) -> None:
    config = ConfigManager(tmp_path / "absent.ini").load_config(environ={})
    assert config.default_quality == 192
    assert config.ytdlp_path == "yt-dlp"
    assert config.port == 3001


def test_invalid_config_raises_configuration_error(tmp_path: Path) -> None:
    config_file = tmp_path / "config.ini"
    config_file.write_text("[DEFAULT]\ndefault_quality = 50\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigManager(config_file).load_config(environ={})


def test_save_new_config_round_trips(tmp_path: Path) -> None:
    config_file = tmp_path / "nested" / "config.ini"
    manager = ConfigManager(config_file)
    manager.save_new_config({"downloads_dir": "/srv/music", "max_concurrent": 6})

    config = manager.load_config(environ={})
    assert config.downloads_dir == "/srv/music"
    assert config.max_concurrent == 6
    assert config.embed_thumbnail is True
