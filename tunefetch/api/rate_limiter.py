"""
Provides a sliding-window request gate to protect the download endpoints.
"""

import logging
import threading
import time
from collections import deque

from fastapi import HTTPException, Request

log = logging.getLogger(__name__)


class RequestRateGate:
    """
    Admits at most `max_requests` requests per client host within `window`
    seconds. Used as a FastAPI dependency; rejected requests get a 429.
    """

    def __init__(self, max_requests: int = 100, window: float = 15 * 60):
        """
        Initializes the gate.

        Args:
            max_requests: Requests allowed per client within the window. 0 disables the gate.
            window: Length of the sliding window in seconds.
        """
        self.max_requests = max_requests
        self.window = window
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = time.monotonic()
        # Dependencies run both on the loop and in the threadpool.
        self._lock = threading.Lock()

    def allow(self, client: str) -> bool:
        """Records a hit for `client` and reports whether it is within the limit."""
        if not self.max_requests:
            return True
        now = time.monotonic()
        with self._lock:
            self._forget_idle_clients(now)
            hits = self._hits.setdefault(client, deque())
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def _forget_idle_clients(self, now: float) -> None:
        """Drops clients whose newest hit has left the window, at most once per window."""
        if now - self._last_sweep < self.window:
            return
        self._last_sweep = now
        idle = [c for c, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]
        for client in idle:
            del self._hits[client]

    def __call__(self, request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        if not self.allow(client):
            log.warning(f"[yellow]Rate limit hit for {client}.[/yellow]")
            raise HTTPException(
                status_code=429,
                detail="Too many requests from this IP, please try again later.",
            )
