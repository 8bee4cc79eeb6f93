"""
Pytest Configuration and Fixtures for Storefront Core Tests
"""
import pytest
from hypothesis import settings

from storefront_core.core.config import Settings
from storefront_core.core.error_reporting import NullErrorReporter
from storefront_core.core.events import EventBus
from storefront_core.ratelimit.models import RequestDescriptor

# Configure Hypothesis profiles
settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=5000)
settings.load_profile("dev")


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Every event published on event_bus, in order."""
    events = []
    event_bus.subscribe_all(events.append)
    return events


@pytest.fixture
def null_reporter():
    return NullErrorReporter()


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and .env files"""
    return Settings(
        _env_file=None,
        environment="development",
        log_level="WARNING",
        cache_stats_interval_seconds=3600,
        rate_limit_cleanup_interval_seconds=3600,
    )


@pytest.fixture
def make_request():
    """Factory for request descriptors coming from one client IP."""

    def factory(path: str = "/", ip: str = "203.0.113.7", body=None, headers=None) -> RequestDescriptor:
        all_headers = {"x-forwarded-for": ip}
        all_headers.update(headers or {})
        return RequestDescriptor(path=path, headers=all_headers, body=body)

    return factory
