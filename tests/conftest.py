from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from tests.fakes import PNG_B64, Clock, FakeProvider
from watermark_proxy.kv import MemoryKeyValueStore
from watermark_proxy.main import app, get_providers, get_statistics_store
from watermark_proxy.statistics import StatisticsStore


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def statistics(kv, clock):
    return StatisticsStore(kv, clock=clock)


@pytest.fixture
def providers():
    return [FakeProvider("Gemini", result=PNG_B64), FakeProvider("OpenAI", result=PNG_B64)]


@pytest.fixture
def client(statistics, providers):
    app.dependency_overrides[get_statistics_store] = lambda: statistics
    app.dependency_overrides[get_providers] = lambda: providers
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
