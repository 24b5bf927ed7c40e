"""
pytest configuration – shared clock, store and engine fixtures.
Every engine fixture shares one FakeClock so TTL expiry and lockout
expiry can be driven deterministically.
"""
import pytest

from admission.config import SecurityConfig
from admission.errors import StoreUnavailable
from admission.facade import AdmissionFacade
from admission.store import MemoryStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def config() -> SecurityConfig:
    return SecurityConfig()


@pytest.fixture
def facade(config, store, clock) -> AdmissionFacade:
    return AdmissionFacade(config, store, clock)


class FailingStore(MemoryStore):
    """Store whose backend is unreachable."""

    async def get(self, key):
        raise StoreUnavailable("connection refused")

    async def set(self, key, value, ttl):
        raise StoreUnavailable("connection refused")

    async def delete(self, key):
        raise StoreUnavailable("connection refused")

    async def increment(self, key, ttl, limit=None):
        raise StoreUnavailable("connection refused")


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()
