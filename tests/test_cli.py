import json
from pathlib import Path

from typer.testing import CliRunner

from tunefetch import __version__
from tunefetch.cli.app import app
from tunefetch.utils.structured_logger import create_event_logger

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_then_show_config(tmp_path: Path) -> None:
    config_file = tmp_path / "config.ini"

    result = runner.invoke(
        app,
        ["--config", str(config_file), "init", "--downloads-dir", str(tmp_path / "music")],
    )
    assert result.exit_code == 0, result.output
    assert "downloads_dir" in config_file.read_text(encoding="utf-8")

    result = runner.invoke(app, ["--config", str(config_file), "show-config"])
    assert result.exit_code == 0, result.output
    assert "max_concurrent" in result.output


def test_fetch_rejects_invalid_quality(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["--config", str(tmp_path / "c.ini"), "fetch", "https://example.com/v", "-q", "12"],
    )
    assert result.exit_code == 1


def test_event_logger_writes_jsonl(tmp_path: Path) -> None:
    events = create_event_logger(tmp_path)
    events.job_failed("job1", "exit code 1", "ExtractionFailed")
    events.logger.close()

    (log_file,) = tmp_path.glob("*.jsonl")
    entry = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert entry["event"] == "job_failed"
    assert entry["job_id"] == "job1"
    assert entry["level"] == "ERROR"
