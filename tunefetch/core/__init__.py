"""
Core application engine for running jobs.

This package contains the primary logic. The `DownloadManager` acts as the
coordinator of a request, expanding playlists through the `PlaylistExpander`
and delegating each job's extraction to the `ProcessSupervisor`.
"""
