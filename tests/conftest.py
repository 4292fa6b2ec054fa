import pytest

from portal_auth.auth.orchestrator import OrchestratorSettings
from portal_auth.auth.token_cache import TokenCache
from portal_auth.storage.token_store import MemoryTokenStore

from fakes import ENTRY, FakeDriverFactory, FakeSite


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def factory(site):
    return FakeDriverFactory(site)


@pytest.fixture
def settings():
    return OrchestratorSettings(
        portal_url=ENTRY,
        navigation_timeout=1.0,
        navigation_retries=1,
        step_timeout=0.05,
        verify_timeout=0.05,
        max_attempts=3,
        backoff_seconds=0,
        poll_interval=0.001,
    )


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def cache(store):
    return TokenCache(store)
