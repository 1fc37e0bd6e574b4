"""
HTTP surface of the engine, built with FastAPI.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from tunefetch import __version__
from tunefetch.core.download_manager import DownloadManager
from tunefetch.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    TunefetchError,
    ValidationError,
)
from tunefetch.models.config import ServerConfig, validate_quality

from .artifacts import Artifact, ArtifactServer
from .rate_limiter import RequestRateGate

log = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"^(https?://)?([\w-]+\.)+[\w-]+(/[\w\- ./?%&=]*)?$", re.ASCII)


class StartDownloadRequest(BaseModel):
    urls: list[str] = Field(..., min_length=1)
    quality: Optional[int] = None

    @field_validator("urls")
    @classmethod
    def validate_urls(cls, v: list[str]) -> list[str]:
        if not all(URL_PATTERN.match(url.strip()) for url in v):
            raise ValueError("One or more URLs are invalid")
        return [url.strip() for url in v]

    @field_validator("quality")
    @classmethod
    def check_quality(cls, v: Optional[int]) -> Optional[int]:
        return v if v is None else validate_quality(v)


def _plain_errors(exc: RequestValidationError) -> list[dict]:
    """Reduces pydantic error records to JSON-safe fields."""
    return [
        {
            "path": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "location": str(err.get("loc", ("body",))[0]),
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


def _error_response(exc: TunefetchError) -> JSONResponse:
    content = {"success": False, "message": str(exc)}
    if getattr(exc, "errors", None):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


def _file_response(server: ArtifactServer, artifact: Artifact, media_type: str) -> StreamingResponse:
    headers = {
        "Content-Disposition": f'attachment; filename="{quote(artifact.filename)}"',
        "Content-Length": str(artifact.size),
        "Cache-Control": "no-cache",
    }
    return StreamingResponse(server.stream(artifact), media_type=media_type, headers=headers)


def create_app(config: ServerConfig, manager: Optional[DownloadManager] = None) -> FastAPI:
    """Builds the application around a DownloadManager."""
    manager = manager or DownloadManager(config)
    artifacts = ArtifactServer(manager.registry)
    rate_gate = RequestRateGate(config.rate_limit_requests, config.rate_limit_window)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"Serving downloads from '{manager.downloads_dir}'")
        yield
        await manager.shutdown()

    app = FastAPI(title="tunefetch", version=__version__, lifespan=lifespan)
    app.state.manager = manager

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError("Validation failed", _plain_errors(exc))
        log.warning(f"Validation failed for {request.url.path}: {error.errors}")
        return _error_response(error)

    @app.exception_handler(TunefetchError)
    async def _tunefetch_handler(request: Request, exc: TunefetchError):
        log.error(
            f"[{request.method}] {request.url.path} >> {exc.status_code}: {exc}"
        )
        return _error_response(exc)

    @app.exception_handler(Exception)
    async def _unhandled_handler(request: Request, exc: Exception):
        log.error(
            f"[{request.method}] {request.url.path} >> unhandled error: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "details": str(exc)},
        )

    downloads = APIRouter(prefix="/downloads", dependencies=[Depends(rate_gate)])

    @downloads.post("/start", status_code=202)
    async def start_download(payload: StartDownloadRequest):
        quality = payload.quality if payload.quality is not None else config.default_quality
        result = await manager.start(payload.urls, quality)
        body = {
            "downloadIds": result.job_ids,
            "status": "queued",
            "message": f"Started {len(result.job_ids)} download(s)",
        }
        if result.playlists:
            body["playlists"] = [
                {
                    "id": p.id,
                    "title": p.title,
                    "memberJobIds": list(p.member_job_ids),
                }
                for p in result.playlists
            ]
        return body

    @downloads.get("/status")
    def download_status(ids: Optional[str] = None):
        requested = [i.strip() for i in ids.split(",") if i.strip()] if ids else None
        return manager.job_statuses(requested)

    @downloads.get("/{job_id}/file")
    def download_file(job_id: str):
        return _file_response(artifacts, artifacts.resolve(job_id), "audio/mpeg")

    @downloads.post("/{job_id}/cancel")
    async def cancel_download(job_id: str):
        job = manager.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Download '{job_id}' not found.")
        if not await manager.cancel(job_id):
            raise InvalidTransitionError(
                f"Download '{job_id}' cannot be cancelled (status: {job.status.value})."
            )
        return {"id": job_id, "status": "cancelling"}

    @app.get("/playlists/{playlist_id}")
    def playlist_status(playlist_id: str):
        view = manager.playlist_view(playlist_id)
        if view is None:
            raise HTTPException(status_code=404, detail=f"Playlist '{playlist_id}' not found.")
        return view

    @app.get("/playlists/{playlist_id}/archive")
    def playlist_archive(playlist_id: str):
        return _file_response(
            artifacts, artifacts.resolve_playlist(playlist_id), "application/zip"
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(downloads)
    return app
