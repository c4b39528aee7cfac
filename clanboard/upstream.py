"""
HTTP client for the realm upstreams (official APIs and identity bots).

Every call is a bearer-authenticated GET of base_url + path. The client
only reports what happened; caching decisions belong to the orchestrator.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from clanboard.errors import UpstreamUnreachable
from clanboard.realms import Realm, RealmConfig, Source
from config.settings import settings

logger = logging.getLogger("upstream")


@dataclass(frozen=True)
class UpstreamResponse:
    """Raw upstream answer."""
    status: int
    body: bytes
    url: str
    latency_ms: int

    @property
    def ok(self) -> bool:
        return self.status == 200


class UpstreamClient:
    """
    Shared requests.Session for all realms and sources.

    A semaphore caps concurrent upstream requests across every worker pool
    so warmer fan-out and request-time reads cannot overwhelm an upstream.
    """

    def __init__(
        self,
        realms: Dict[Realm, RealmConfig],
        timeout: float = None,
        max_concurrent: int = None,
        session: Optional[requests.Session] = None,
    ):
        self._realms = realms
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._semaphore = threading.Semaphore(
            max_concurrent if max_concurrent is not None else settings.max_concurrent_requests
        )
        self._session = session or requests.Session()

    def url_for(self, realm: Realm, source: Source, path: str) -> str:
        return f"{self._realms[realm].base_url(source)}{path}"

    def _headers(self, token: Optional[str]) -> dict:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def fetch(
        self,
        realm: Realm,
        source: Source,
        path: str,
        timeout: Optional[float] = None,
    ) -> UpstreamResponse:
        """
        GET an upstream path.

        Returns:
            UpstreamResponse with whatever status the upstream answered

        Raises:
            UpstreamUnreachable: connection error or timeout
        """
        url = self.url_for(realm, source, path)
        token = self._realms[realm].token(source)
        return self.get(url, token=token, timeout=timeout)

    def get(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> UpstreamResponse:
        """GET an absolute URL with optional bearer token."""
        with self._semaphore:
            started = time.monotonic()
            try:
                response = self._session.get(
                    url,
                    headers=self._headers(token),
                    timeout=timeout if timeout is not None else self._timeout,
                )
            except requests.RequestException as e:
                logger.debug(f"GET {url} failed: {e}")
                raise UpstreamUnreachable(f"{url}: {e}", url=url) from e
            latency_ms = int((time.monotonic() - started) * 1000)
        return UpstreamResponse(
            status=response.status_code,
            body=response.content,
            url=url,
            latency_ms=latency_ms,
        )

    def close(self) -> None:
        self._session.close()
