"""Route tests for the badge service using FastAPI's TestClient and in-memory stores."""

import pytest
from fastapi.testclient import TestClient

from analytics_badge.api import create_app
from analytics_badge.auth.token_model import OAuthToken
from analytics_badge.db_persistence import get_db
from analytics_badge.errors import UpstreamError

SUMMARIES = {
    "username": "alice",
    "items": [{"id": "1", "webProperties": [{"id": "UA-1-1"}, {"id": "UA-1-2"}]}],
}


class StubAuthHandler:
    def __init__(self):
        self.codes = []

    def get_authorization_url(self, state=None):
        return "https://accounts.example/o/oauth2/auth?client_id=client-id"

    def exchange(self, code):
        self.codes.append(code)
        if code != "good-code":
            raise UpstreamError("invalid_grant")
        return OAuthToken("access-new", "refresh-new")


@pytest.fixture
def make_client(settings, cache, db, make_analytics):
    def _make(**analytics_kwargs):
        analytics_kwargs.setdefault("summaries", SUMMARIES)
        factory = make_analytics(**analytics_kwargs)
        app = create_app(
            settings,
            cache=cache,
            analytics_factory=factory,
            auth_handler=StubAuthHandler(),
        )
        app.dependency_overrides[get_db] = lambda: db
        return TestClient(app), factory
    return _make


def _login(client):
    response = client.get("/oauth", params={"code": "good-code"}, follow_redirects=False)
    assert response.status_code == 302
    return response


def test_health(make_client):
    client, _ = make_client()
    assert client.get("/health").json() == {"status": "ok"}


def test_badge_served_from_cache(make_client, cache, db):
    cache.set("b:p1", b"42", 60)
    client, factory = make_client()

    response = client.get("/badge/p1.svg")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("image/svg+xml")
    assert response.headers["cache-control"] == "public, max-age=3600"
    assert ">42/week</text>" in response.text
    assert db.calls == []
    assert factory.tokens == []


def test_badge_cache_miss_renders_fetched_metric(make_client, cache):
    client, _ = make_client(total="1500")

    response = client.get("/badge/p1.svg")

    assert response.status_code == 200
    assert ">1k/week</text>" in response.text
    assert 'fill="#a4a61d"' in response.text
    assert cache.get("b:p1") == b"1500"


def test_unknown_badge_renders_nothing(make_client, cache):
    client, _ = make_client()

    response = client.get("/badge/ghost.svg")

    assert response.status_code == 404
    assert response.content == b""
    assert cache.writes == []


def test_upstream_failure_renders_nothing(make_client):
    client, _ = make_client(error=UpstreamError("quota exceeded"))

    response = client.get("/badge/p1.svg")

    assert response.status_code == 500
    assert response.content == b""


def test_corrupted_cache_renders_nothing(make_client, cache):
    cache.set("b:p1", b"garbage", 60)
    client, _ = make_client()

    response = client.get("/badge/p1.svg")

    assert response.status_code == 500
    assert response.content == b""


def test_index_returns_consent_url(make_client):
    client, _ = make_client()
    assert client.get("/").json()["url"].startswith("https://accounts.example/")


def test_oauth_callback_links_account_and_starts_session(make_client, cache, db):
    client, factory = make_client()

    response = _login(client)

    assert response.headers["location"] == "/manage"
    session_id = response.cookies["session"]
    assert cache.get("s:" + session_id) == b"alice"
    assert factory.tokens == [OAuthToken("access-new", "refresh-new")]
    assert db.accounts["alice"].access_token == "access-new"
    assert db.accounts["alice"].refresh_token == "refresh-new"


def test_oauth_callback_with_bad_code_fails(make_client, db):
    client, _ = make_client()

    response = client.get("/oauth", params={"code": "bad"}, follow_redirects=False)

    assert response.status_code == 500
    assert "invalid_grant" in response.json()["detail"]
    assert db.accounts["alice"].access_token == "access-1"


def test_manage_requires_linked_account(make_client):
    client, _ = make_client()

    response = client.get("/manage", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/"
    assert "session" in response.cookies


def test_manage_lists_registered_profiles(make_client):
    client, _ = make_client()
    _login(client)

    response = client.get("/manage")

    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "alice"
    assert body["profiles"] == {"p1": "123"}
    assert body["accounts"][0]["webProperties"][0]["id"] == "UA-1-1"


def test_register_properties_only_for_owned_ids_and_evicts_cache(make_client, cache, db):
    client, _ = make_client()
    _login(client)
    cache.set("b:UA-1-1", b"99", 60)

    response = client.post(
        "/manage", json={"profiles": {"UA-1-1": "111", "UA-9-9": "999"}}
    )

    assert response.status_code == 200
    assert response.json() == {"registered": ["UA-1-1"], "ignored": ["UA-9-9"]}
    assert db.properties["UA-1-1"].profile == "111"
    assert db.properties["UA-1-1"].account == "alice"
    assert "UA-9-9" not in db.properties
    assert cache.get("b:UA-1-1") is None


def test_session_pointing_at_missing_account_redirects_home(make_client, cache, db):
    client, _ = make_client()
    _login(client)
    del db.accounts["alice"]

    response = client.get("/manage", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/"
