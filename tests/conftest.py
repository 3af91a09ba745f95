"""
Pytest configuration and fixtures for crmflow tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from crmflow.pipeline import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from crmflow.storage import InMemoryRowStore  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns immediately."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryRowStore()


@pytest.fixture
def sample_lead():
    """Sample CRM lead for testing."""
    return {
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "phone": "+15555550100",
        "source": "website",
        "created_by": "user-1",
    }
