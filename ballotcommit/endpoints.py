import logging
from collections.abc import Iterable
from typing import Protocol

import requests

from .errors import BackendUnavailable

logger = logging.getLogger(__name__)


class EndpointResolver(Protocol):
    def current(self) -> str: ...

    def report_failure(self, base_url: str) -> None: ...


class StaticEndpointResolver:
    def __init__(self, base_url: str) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")

    def current(self) -> str:
        return self._base_url

    def report_failure(self, base_url: str) -> None:
        logger.debug("Backend %s reported unreachable; static resolver keeps it", base_url)


class FailoverEndpointResolver:
    """
    Picks the first candidate backend answering its health check.

    The chosen URL is cached until a caller reports it as failing, after which
    the next current() call probes the candidates again.
    """

    def __init__(
        self,
        candidates: Iterable[str],
        session: requests.Session | None = None,
        probe_timeout: float = 3.0,
        health_path: str = "/health",
    ) -> None:
        self._candidates = [url.rstrip("/") for url in candidates if url]
        if not self._candidates:
            raise ValueError("At least one backend URL is required")
        self._session = session or requests.Session()
        self._probe_timeout = probe_timeout
        self._health_path = health_path
        self._current: str | None = None

    def _probe(self, base_url: str) -> bool:
        try:
            response = self._session.get(f"{base_url}{self._health_path}", timeout=self._probe_timeout)
        except requests.RequestException as exc:
            logger.debug("Health probe failed for %s: %s", base_url, exc)
            return False
        return response.status_code < 500

    def current(self) -> str:
        if self._current is not None:
            return self._current
        for base_url in self._candidates:
            if self._probe(base_url):
                logger.info("Using backend %s", base_url)
                self._current = base_url
                return base_url
        raise BackendUnavailable("No reachable backend among configured URLs")

    def report_failure(self, base_url: str) -> None:
        if self._current == base_url:
            logger.warning("Backend %s became unreachable, re-resolving on next request", base_url)
            self._current = None
