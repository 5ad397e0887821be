"""Shared pytest fixtures."""

from unittest.mock import AsyncMock

import pytest

from antcore.config import RetryConfig


@pytest.fixture
def sleep():
    """Backoff sleep that returns immediately and records delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def fast_retry():
    return RetryConfig(primary_attempts=3, fallback_attempts=1, base_delay=0.01, jitter=0.0, call_timeout=5.0)
