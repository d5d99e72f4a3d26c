"""
Shared fakes for the badge tests: an in-memory database with call recording,
a recording fast cache and a stub analytics client.
"""

import dataclasses
from typing import Dict, List, Optional

import pytest

from analytics_badge.auth.token_model import Account, OAuthToken
from analytics_badge.errors import PersistenceError
from analytics_badge.fast_cache import MemoryCache
from analytics_badge.models import Property
from analytics_badge.settings import Settings


class InMemoryDatabase:
    """Stands in for DatabasePersistence; returns copies like a real round trip."""

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.properties: Dict[str, Property] = {}
        self.calls: List[str] = []
        self.fail_writes = False

    def fetch_account(self, username: str) -> Optional[Account]:
        self.calls.append("fetch_account")
        account = self.accounts.get(username)
        return dataclasses.replace(account) if account else None

    def upsert_account(self, account: Account) -> None:
        self.calls.append("upsert_account")
        if self.fail_writes:
            raise PersistenceError("database is read-only")
        self.accounts[account.username] = dataclasses.replace(account)

    def fetch_property(self, property_id: str) -> Optional[Property]:
        self.calls.append("fetch_property")
        prop = self.properties.get(property_id)
        return dataclasses.replace(prop) if prop else None

    def upsert_properties(self, properties: List[Property]) -> int:
        self.calls.append("upsert_properties")
        if self.fail_writes:
            raise PersistenceError("database is read-only")
        for prop in properties:
            self.properties[prop.id] = dataclasses.replace(prop)
        return len(properties)

    def fetch_properties_for_account(self, username: str) -> List[Property]:
        self.calls.append("fetch_properties_for_account")
        return sorted(
            (p for p in self.properties.values() if p.account == username),
            key=lambda p: p.id,
        )


class RecordingCache(MemoryCache):
    def __init__(self):
        super().__init__()
        self.writes = []

    def set(self, key, value, ttl_seconds):
        self.writes.append((key, value, ttl_seconds))
        super().set(key, value, ttl_seconds)


class StubAnalytics:
    def __init__(self, token, total="7", refreshed=None, summaries=None, error=None):
        self.token = token
        self.total = total
        self.refreshed = refreshed
        self.summaries = summaries or {"username": "alice", "items": []}
        self.error = error
        self.profiles = []

    def _token_after_call(self):
        return self.refreshed or self.token

    def fetch_weekly_users(self, profile):
        self.profiles.append(profile)
        if self.error:
            raise self.error
        return self.total, self._token_after_call()

    def list_account_summaries(self):
        if self.error:
            raise self.error
        return self.summaries, self._token_after_call()


class StubAnalyticsFactory:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.tokens = []
        self.clients = []

    def __call__(self, token):
        self.tokens.append(token)
        client = StubAnalytics(token, **self.kwargs)
        self.clients.append(client)
        return client


@pytest.fixture
def db():
    db = InMemoryDatabase()
    db.accounts["alice"] = Account(
        username="alice", access_token="access-1", refresh_token="refresh-1"
    )
    db.properties["p1"] = Property(id="p1", account="alice", profile="123")
    return db


@pytest.fixture
def cache():
    return RecordingCache()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        GOOGLE_CLIENT_ID="client-id",
        GOOGLE_CLIENT_SECRET="client-secret",
        BACKEND_URL="http://testserver",
        REDIS_URL="",
    )


@pytest.fixture
def token():
    return OAuthToken(access_token="access-1", refresh_token="refresh-1")


@pytest.fixture
def make_analytics():
    return StubAnalyticsFactory
