"""Pytest fixtures for lunarys-chat tests."""

import os
from unittest.mock import patch

import pytest

from lunarys_chat.config import Settings


@pytest.fixture
def mock_env_vars():
    """Mock environment variables for testing."""
    env_vars = {
        "CHAT_API_BASE_URL": "http://backend.test/api/",
        "CHAT_MODEL": "deepseek-chat",
        "CHAT_ENABLE_STREAMING": "true",
        "CHAT_LOCALE": "en",
        "LOG_LEVEL": "DEBUG",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        yield env_vars


@pytest.fixture
def settings(mock_env_vars) -> Settings:
    """Create Settings instance with mocked environment."""
    return Settings()
