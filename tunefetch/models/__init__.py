"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application, such as jobs and configuration.
"""

from .config import ServerConfig
from .job import Job, JobStatus, Playlist, TrackMetadata, VideoInfo

__all__ = ["Job", "JobStatus", "Playlist", "ServerConfig", "TrackMetadata", "VideoInfo"]
