"""
HTTP Layer.

This package exposes the job engine over HTTP and serves finished artifacts.
"""

from .app import StartDownloadRequest, create_app
from .artifacts import Artifact, ArtifactServer
from .rate_limiter import RequestRateGate

__all__ = [
    "Artifact",
    "ArtifactServer",
    "RequestRateGate",
    "StartDownloadRequest",
    "create_app",
]
