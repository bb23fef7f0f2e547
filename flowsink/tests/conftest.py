"""Pytest fixtures for flowsink tests."""

import os
import tempfile
from pathlib import Path

import pytest

from flowsink.devices import MemoryDevice


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_device():
    """Create an empty MemoryDevice."""
    return MemoryDevice()


@pytest.fixture(autouse=True)
def reset_env():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("FLOWSINK_"):
            del os.environ[key]
    yield
    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
