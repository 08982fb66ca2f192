# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for overlay tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root and tests dir (shared fakes) to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import ACTIVE_ADDRESS, FakeNode  # noqa: E402
from harness.provider import MockEthereumProvider  # noqa: E402


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture
def node():
    """Fresh in-memory node at block 100."""
    return FakeNode()


@pytest.fixture
async def upstream(node):
    """RPCProvider wired to the fake node."""
    provider = node.provider()
    yield provider
    await provider.close()


@pytest.fixture
async def provider(upstream):
    """Provider facade over the fake node with the default active address."""
    facade = MockEthereumProvider(upstream, active_address=ACTIVE_ADDRESS)
    yield facade
    await facade.close()
