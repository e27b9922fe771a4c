"""Shared pytest fixtures for WhatsApp bridge tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import ADMIN_KEY, FakeBridgeStore  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Per-test environment: admin key set, rate-limit files in tmp_path.

    Provider and callback URLs never point at a real host; every test that
    reaches the network patches `requests` explicitly.
    """
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setenv("RATE_LIMIT_DIR", str(tmp_path / "rate-limit"))
    monkeypatch.setenv("PROVIDER_API_URL", "http://provider.test/api")
    monkeypatch.delenv("PROVIDER_API_KEY", raising=False)
    monkeypatch.delenv("API_RATE_LIMIT", raising=False)
    monkeypatch.delenv("RATE_LIMIT_WINDOW", raising=False)
    monkeypatch.delenv("BRIDGE_NAME", raising=False)
    monkeypatch.delenv("DEFAULT_COUNTRY_CODE", raising=False)
    monkeypatch.delenv("MAX_MEDIA_BYTES", raising=False)


@pytest.fixture
def store(monkeypatch) -> FakeBridgeStore:
    """In-memory stand-in for every repository, with txn() patched out."""
    fake = FakeBridgeStore()
    fake.install(monkeypatch)
    return fake


@pytest.fixture
def client(store):
    from fastapi.testclient import TestClient

    from wabridge.api.factory import create_app

    return TestClient(create_app())
