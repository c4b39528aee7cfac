"""
Shared fixtures: temporary SQLite database, fake upstream, controllable clock.
"""
import json
import threading

import pytest

from clanboard.cache import CacheStore, FetchOrchestrator
from clanboard.db import init_db, make_engine, make_session_factory
from clanboard.errors import UpstreamUnreachable
from clanboard.realms import Realm, Source
from clanboard.upstream import UpstreamResponse


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeUpstream:
    """
    Stand-in for UpstreamClient.

    Routes are keyed by (realm, source, path) for fetch() and by URL for
    get(). A route value is (status, payload) or an exception to raise.
    Unknown routes answer 404.
    """

    def __init__(self):
        self.routes = {}
        self.urls = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, realm: Realm, source: Source, path: str, payload=None, status: int = 200):
        self.routes[(realm, source, path)] = (status, payload)

    def fail(self, realm: Realm, source: Source, path: str, error: Exception = None):
        self.routes[(realm, source, path)] = error or UpstreamUnreachable(f"{path}: connection refused", url=path)

    def add_url(self, url: str, payload=None, status: int = 200):
        self.urls[url] = (status, payload)

    def calls_for(self, path: str) -> int:
        return sum(1 for call in self.calls if call[-1] == path)

    @staticmethod
    def _respond(route, url: str) -> UpstreamResponse:
        if isinstance(route, Exception):
            raise route
        status, payload = route
        if isinstance(payload, (bytes, bytearray)):
            body = bytes(payload)
        elif payload is None:
            body = b""
        else:
            body = json.dumps(payload).encode()
        return UpstreamResponse(status=status, body=body, url=url, latency_ms=12)

    def fetch(self, realm: Realm, source: Source, path: str, timeout=None) -> UpstreamResponse:
        with self._lock:
            self.calls.append((realm, source, path))
        route = self.routes.get((realm, source, path), (404, {"reason": "notFound"}))
        return self._respond(route, path)

    def get(self, url: str, token=None, timeout=None) -> UpstreamResponse:
        with self._lock:
            self.calls.append(("GET", url))
        route = self.urls.get(url, UpstreamUnreachable(f"{url}: connection refused", url=url))
        return self._respond(route, url)

    def close(self):
        pass


class GatedUpstream(FakeUpstream):
    """FakeUpstream whose fetches for held paths block until release()."""

    def __init__(self):
        super().__init__()
        self.held = set()
        self.entered = threading.Event()
        self._gate = threading.Event()

    def hold(self, path: str):
        self.held.add(path)

    def release(self):
        self._gate.set()

    def fetch(self, realm: Realm, source: Source, path: str, timeout=None) -> UpstreamResponse:
        if path in self.held:
            self.entered.set()
            self._gate.wait(5)
        return super().fetch(realm, source, path, timeout)


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file."""
    engine = make_engine(f"sqlite:///{tmp_path / 'clanboard-test.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def gated_upstream():
    gated = GatedUpstream()
    yield gated
    gated.release()


@pytest.fixture
def store(session_factory, clock):
    return CacheStore(session_factory, clock=clock)


@pytest.fixture
def orchestrator(store, upstream, clock):
    return FetchOrchestrator(store, upstream, clock=clock, coalesce_timeout=5.0)
