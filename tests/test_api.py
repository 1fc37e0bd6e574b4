import time
from pathlib import Path

import pytest
from conftest import FakeExtractor
from fastapi.testclient import TestClient

from tunefetch.api.app import create_app
from tunefetch.core.download_manager import DownloadManager
from tunefetch.media.extractor import PlaylistListing
from tunefetch.models.job import VideoInfo

URL = "https://www.example.com/watch?v=abc"
HANG_URL = "https://www.example.com/watch?v=slow"
PLAYLIST = "https://www.example.com/playlist?list=PL1"


def _client(config, **extractor_kwargs) -> TestClient:
    extractor = FakeExtractor(
        infos={
            URL: {"title": "Band - Song", "duration": 200},
            HANG_URL: {"title": "Slow Song"},
        },
        playlists={
            PLAYLIST: PlaylistListing(
                source_url=PLAYLIST,
                title="Mix",
                entries=[VideoInfo(id="abc", url=URL)],
            )
        },
        **extractor_kwargs,
    )
    manager = DownloadManager(config, extractor=extractor)
    return TestClient(create_app(config, manager))


def _wait_for(client: TestClient, job_id: str, status: str, timeout: float = 15.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        view = client.get("/downloads/status", params={"ids": job_id}).json()[0]
        if view.get("status") == status:
            return view
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} never reached {status}: {view}")


def test_health(config) -> None:
    with _client(config) as client:
        assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.parametrize(
    "body",
    [
        {"urls": []},
        {"urls": ["not a url"]},
        {"urls": [URL], "quality": 64},
        {"urls": [URL], "quality": 500},
        {},
    ],
)
def test_start_rejects_invalid_requests(config, body) -> None:
    with _client(config) as client:
        response = client.post("/downloads/start", json=body)

        assert response.status_code == 400
        payload = response.json()
        assert payload["success"] is False
        assert payload["message"] == "Validation failed"
        assert payload["errors"]
        assert client.get("/downloads/status").json() == []


def test_download_flow_from_start_to_file(config) -> None:
    with _client(config) as client:
        response = client.post("/downloads/start", json={"urls": [URL], "quality": 0})
        assert response.status_code == 202
        payload = response.json()
        assert payload["status"] == "queued"
        (job_id,) = payload["downloadIds"]

        view = _wait_for(client, job_id, "completed")
        assert view["progress"] == 100
        assert view["title"] == "Band - Song"
        assert view["duration"] == 200

        response = client.get(f"/downloads/{job_id}/file")
        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.headers["cache-control"] == "no-cache"
        assert 'filename="Band_-_Song.mp3"' in response.headers["content-disposition"]
        assert int(response.headers["content-length"]) == view["size"]
        assert response.content == (Path(config.downloads_dir) / "Band_-_Song.mp3").read_bytes()


def test_failed_job_reports_error(config) -> None:
    with _client(config, modes={URL: "fail"}) as client:
        job_id = client.post("/downloads/start", json={"urls": [URL]}).json()["downloadIds"][0]

        view = _wait_for(client, job_id, "error")
        assert view["error"] == "exit code 2"
        assert client.get(f"/downloads/{job_id}/file").status_code == 404


def test_file_endpoint_404s(config) -> None:
    with _client(config) as client:
        assert client.get("/downloads/unknown/file").status_code == 404

        job_id = client.post("/downloads/start", json={"urls": [URL]}).json()["downloadIds"][0]
        view = _wait_for(client, job_id, "completed")
        (Path(config.downloads_dir) / "Band_-_Song.mp3").unlink()

        response = client.get(f"/downloads/{view['id']}/file")
        assert response.status_code == 404
        assert "no longer available" in response.json()["message"]


def test_status_flags_unknown_ids(config) -> None:
    with _client(config) as client:
        assert client.get("/downloads/status", params={"ids": "a,b"}).json() == [
            {"id": "a", "error": "not found"},
            {"id": "b", "error": "not found"},
        ]


def test_cancel_running_job(config) -> None:
    with _client(config, modes={HANG_URL: "hang"}) as client:
        job_id = client.post("/downloads/start", json={"urls": [HANG_URL]}).json()["downloadIds"][0]
        _wait_for(client, job_id, "running")

        response = client.post(f"/downloads/{job_id}/cancel")
        assert response.status_code == 200

        view = _wait_for(client, job_id, "error")
        assert view["error"] == "cancelled"
        assert client.post(f"/downloads/{job_id}/cancel").status_code == 409
        assert client.post("/downloads/unknown/cancel").status_code == 404


def test_playlist_endpoints(config) -> None:
    with _client(config) as client:
        payload = client.post("/downloads/start", json={"urls": [PLAYLIST]}).json()
        playlist = payload["playlists"][0]
        assert playlist["title"] == "Mix"
        assert playlist["memberJobIds"] == payload["downloadIds"]

        _wait_for(client, payload["downloadIds"][0], "completed")
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            view = client.get(f"/playlists/{playlist['id']}").json()
            if view["archiveReady"]:
                break
            time.sleep(0.05)
        assert view["status"] == "completed"

        response = client.get(f"/playlists/{playlist['id']}/archive")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert client.get("/playlists/unknown").status_code == 404


def test_rate_gate_limits_download_routes(config) -> None:
    config.rate_limit_requests = 2
    with _client(config) as client:
        assert client.get("/downloads/status").status_code == 200
        assert client.get("/downloads/status").status_code == 200
        assert client.get("/downloads/status").status_code == 429
        assert client.get("/health").status_code == 200
