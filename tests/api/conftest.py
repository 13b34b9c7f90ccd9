"""
tests/api/conftest.py

Shared fixtures for API route tests.

The `client` fixture:
  - Runs the real app lifespan with the in-memory job store and an upload
    directory under tmp_path, so no running services are required.
  - Replaces OllamaClient with an AsyncMock (the `llm` fixture) so chat and
    health checks never reach a model server.
  - Leaves require_api_key using the real implementation; tests that need
    an authenticated client send the default "changeme" key (matches
    settings.api_key default).
"""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from docchat.config import settings
from docchat.llm.client import OllamaClient
from docchat.main import app

# Default API key that matches settings.api_key default value.
VALID_API_KEY = "changeme"


@pytest.fixture()
def llm() -> AsyncMock:
    mock = AsyncMock(spec=OllamaClient)
    mock.is_healthy.return_value = True
    mock.chat.return_value = "Revenue grew twelve percent (p. 1)."
    return mock


@pytest.fixture()
def client(llm: AsyncMock, tmp_path, monkeypatch) -> TestClient:  # type: ignore[return]
    """
    Return a TestClient whose lifespan builds fresh in-memory services.

    Yields inside the TestClient context so background ingest jobs keep
    running on the app's event loop between requests.
    """
    monkeypatch.setattr(settings, "upload_dir", tmp_path / "uploads")
    monkeypatch.setattr(settings, "job_store", "memory")

    with patch("docchat.main.OllamaClient", return_value=llm):
        with TestClient(app, raise_server_exceptions=True) as c:
            yield c

    app.dependency_overrides.clear()
