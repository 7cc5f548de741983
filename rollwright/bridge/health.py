"""Health probes for deployed workloads."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import requests


@runtime_checkable
class HealthProbe(Protocol):
    """Protocol for a single health probe."""

    def probe(self, url: str, *, timeout: float) -> int:
        """Return the HTTP status of *url*.

        Raises on connection failure or timeout; the rollout controller
        counts any exception as a failed poll.
        """
        ...


class HttpHealthProbe:
    """``GET url`` via requests; redirects are not followed."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def probe(self, url: str, *, timeout: float) -> int:
        response = self._session.get(url, timeout=timeout, allow_redirects=False)
        return response.status_code
