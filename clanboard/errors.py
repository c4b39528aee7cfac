"""
Exception taxonomy for the cache core.

Scheduled jobs log and skip UpstreamError; request-time reads fall back to
stale cache before surfacing CacheMiss; PersistenceFailure on writes is
logged and swallowed by the orchestrator.
"""
from typing import Optional


class ClanboardError(Exception):
    """Base class for all cache-core errors."""
    pass


class UpstreamError(ClanboardError):
    """An upstream fetch did not produce a cacheable response."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class UpstreamUnreachable(UpstreamError):
    """Network error or timeout talking to an upstream."""
    pass


class UpstreamRejected(UpstreamError):
    """Upstream answered with a non-200 status. Nothing is cached."""

    def __init__(self, status: int, body: bytes = b"", url: Optional[str] = None):
        super().__init__(f"Upstream {url or ''} returned status {status}".strip(), url=url)
        self.status = status
        self.body = body


class CacheMiss(ClanboardError):
    """No cached entry exists and no live fetch was permitted or succeeded."""

    def __init__(self, key: str):
        super().__init__(f"No cached data for {key}")
        self.key = key

    @property
    def upstream_status(self) -> Optional[int]:
        """Status of the rejected upstream call behind this miss, if any."""
        cause = self.__cause__
        if isinstance(cause, UpstreamRejected):
            return cause.status
        return None


class DeserializationFailure(ClanboardError):
    """Payload was not parseable as the expected structure."""
    pass


class PersistenceFailure(ClanboardError):
    """Store read or write failed."""
    pass


class AccessDenied(ClanboardError):
    """Caller role is too low for a gated view."""

    def __init__(self, required: str):
        super().__init__(f"Access denied: Requires {required} role")
        self.required = required
