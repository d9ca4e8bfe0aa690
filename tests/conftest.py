"""
Shared fixtures and in-memory fakes for the chat service tests.
"""
import os
from types import SimpleNamespace
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from shared.cache import CacheClient
from shared.config import ChatConfig, ContextLimits, MatchCounts, Timeouts
from shared.errors import QuotaExceededError


class FakeRedis:
    """Just enough of redis.asyncio.Redis for CacheClient."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.calls = []

    async def get(self, key):
        self.calls.append(("get", key))
        return self.store.get(key)

    async def set(self, key, value):
        self.calls.append(("set", key))
        self.store[key] = value

    async def setex(self, key, ttl, value):
        self.calls.append(("setex", key))
        self.store[key] = value
        self.ttls[key] = ttl

    async def incr(self, key):
        self.calls.append(("incr", key))
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, ttl):
        self.calls.append(("expire", key))
        self.ttls[key] = ttl

    async def ping(self):
        return True

    async def aclose(self):
        pass


class FakeDatastore:
    """Stands in for DatastoreClient: canned rpc rows, recorded writes."""

    def __init__(self, rows=None, failing=()):
        self.rows = rows or {}
        self.failing = set(failing)
        self.rpc_calls = []
        self.messages = []
        self.chats = 0

    async def rpc(self, name, params):
        self.rpc_calls.append((name, params))
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")
        return list(self.rows.get(name, []))

    async def log_message(self, chat_id, role, content):
        if chat_id:
            self.messages.append((chat_id, role, content))

    async def create_chat(self):
        self.chats += 1
        return f"chat-{self.chats}"

    async def ping(self):
        return True

    async def close(self):
        pass


class FakeEmbedder:
    def __init__(self, vector=None, error=None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return list(self.vector)


class FakeBackend:
    """Generation backend replaying scripted outcomes (text or exception)."""

    def __init__(self, name, *outcomes):
        self.name = name
        self.outcomes = list(outcomes)
        self.calls = []

    async def generate(self, messages):
        self.calls.append(messages)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def quota(retry_after=None):
    return QuotaExceededError("429 Resource has been exhausted", retry_after=retry_after)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheClient(client=fake_redis)


@pytest.fixture
def config():
    return ChatConfig(
        google_api_key="test-google-key",
        supabase_url="https://db.example.supabase.co",
        supabase_key="service-role",
        redis_url="",
        app_key="",
        daily_request_limit=200,
        max_message_chars=1200,
        turn_window=2,
        strict_domain=False,
        min_similarity=0.22,
        default_retry_delay=4.0,
        max_retry_delay=15.0,
        context_limits=ContextLimits(),
        match_counts=MatchCounts(),
        timeouts=Timeouts(),
        openrouteservice_api_key="",
        serpapi_api_key="",
    )


@pytest.fixture
def sample_rows():
    """One row per similarity-search procedure, like the datastore returns them."""
    return {
        "match_services": [
            {"id": 1, "similarity": 0.81, "name_fr": "Centre de santé Akkari", "name_en": "Akkari Health Center",
             "address": "12 Rue Akkari, Rabat", "phone": "+212 537 000 000", "lat": 34.01, "lng": -6.84},
            {"id": 2, "similarity": 0.64, "name_en": "Legal Aid Office", "address": "Avenue Hassan II, Rabat"},
        ],
        "match_news": [
            {"id": 10, "similarity": 0.3, "title_en": "New clinic hours", "title_fr": "Nouveaux horaires"},
        ],
        "match_can_stadiums": [
            {"id": 20, "similarity": 0.25, "name_en": "Prince Moulay Abdellah Stadium", "capacity": 69500},
        ],
        "match_places_can": [
            {"id": 30, "similarity": 0.4, "name_en": "Kasbah of the Udayas"},
        ],
    }


@pytest.fixture
def fakes():
    """The fake collaborators, for tests that build their own instances."""
    return SimpleNamespace(
        Redis=FakeRedis,
        Datastore=FakeDatastore,
        Embedder=FakeEmbedder,
        Backend=FakeBackend,
        quota=quota,
    )
