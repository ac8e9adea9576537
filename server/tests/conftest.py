"""Pytest configuration and fixtures for abuse gate tests."""

import os
from collections.abc import Generator

# Settings are cached on first import of app.main; configure the env first
TEST_INTERNAL_API_KEY = "test-internal-key"
os.environ.setdefault("INTERNAL_API_KEY", TEST_INTERNAL_API_KEY)
os.environ.setdefault("ENV", "development")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.api.deps import get_abuse_gate  # noqa: E402
from app.core.abuse_gate import AbuseGate, GatePolicy  # noqa: E402
from app.main import app  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock."""

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
def policy() -> GatePolicy:
    """15 minute window, block at 10 failures, challenge above 0.4 with 3+ attempts."""
    return GatePolicy()


@pytest.fixture
def gate(policy: GatePolicy, clock: FakeClock) -> AbuseGate:
    return AbuseGate(policy, clock=clock)


@pytest.fixture(scope="function")
def client(gate: AbuseGate) -> Generator[TestClient, None, None]:
    """Test client whose handlers share the test's gate."""
    app.dependency_overrides[get_abuse_gate] = lambda: gate
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Api-Key": TEST_INTERNAL_API_KEY}
