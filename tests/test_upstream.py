"""
Tests for the upstream HTTP client, with requests.Session replaced by a fake.
"""
import threading

import pytest
import requests

from clanboard.errors import UpstreamUnreachable
from clanboard.realms import Realm, RealmConfig, Source
from clanboard.upstream import UpstreamClient


class _Response:
    def __init__(self, status_code=200, content=b"{}"):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """Records GETs; URLs in ``slow`` block until the gate opens."""

    def __init__(self):
        self.requests = []
        self.slow = set()
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.error = None

    def get(self, url, headers=None, timeout=None):
        self.requests.append((url, headers, timeout))
        if self.error is not None:
            raise self.error
        if url in self.slow:
            self.entered.set()
            self.gate.wait(5)
        return _Response()

    def close(self):
        pass


@pytest.fixture
def session():
    fake = FakeSession()
    yield fake
    fake.gate.set()


@pytest.fixture
def client(session):
    realms = {
        Realm.COC: RealmConfig(
            realm=Realm.COC,
            authoritative_url="http://official.test/v1/",
            authoritative_token="secret",
            identity_url="http://bot.test",
            identity_token=None,
        ),
    }
    return UpstreamClient(realms, timeout=3.0, max_concurrent=1, session=session)


def test_fetch_builds_url_and_bearer_header(client, session):
    response = client.fetch(Realm.COC, Source.AUTHORITATIVE, "/clans/%232YUPV0UYC")

    url, headers, timeout = session.requests[0]
    assert url == "http://official.test/v1/clans/%232YUPV0UYC"
    assert headers["Authorization"] == "Bearer secret"
    assert timeout == 3.0
    assert response.ok
    assert response.body == b"{}"


def test_identity_fetch_without_token_sends_no_authorization(client, session):
    client.fetch(Realm.COC, Source.IDENTITY, "/api/clans")

    url, headers, _ = session.requests[0]
    assert url == "http://bot.test/api/clans"
    assert "Authorization" not in headers


def test_connection_error_is_unreachable(client, session):
    session.error = requests.ConnectionError("refused")

    with pytest.raises(UpstreamUnreachable) as exc_info:
        client.get("http://official.test/v1/clans")

    assert exc_info.value.url == "http://official.test/v1/clans"


def test_latency_excludes_time_queued_for_a_slot(client, session):
    session.slow.add("http://slow.test")
    results = {}

    first = threading.Thread(target=lambda: results.update(slow=client.get("http://slow.test")))
    first.start()
    assert session.entered.wait(5)
    timer = threading.Timer(0.3, session.gate.set)
    timer.start()
    try:
        queued = client.get("http://fast.test")
    finally:
        timer.join(5)
        first.join(5)

    assert results["slow"].latency_ms >= 250
    assert queued.latency_ms < 250
