"""Shared fixtures for oss_stats tests. No network access required."""

import pytest


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"
