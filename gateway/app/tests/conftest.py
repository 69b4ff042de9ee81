"""
Shared fixtures for gateway tests.
"""

import os
from datetime import timedelta

import pytest

from app.auth.protection import CORRELATION_PURPOSE, TICKET_PURPOSE, DataProtector
from app.auth.tickets import TicketStore
from app.cache import MemoryCache
from app.config import Settings
from app.registry import PortalRegistry, parse_auth_options


TEST_CONFIG = """
auth:
  session_secret: "reserved-secret"
  session_timeout_minutes: 60
  portals:
    portal1:
      display: Portal One
      hostname: portal1.example.com
      oidc:
        issuer: https://idp.example.com/realms/main
        client_id: portal1-client
        client_secret: portal1-secret
        scopes: [openid, profile, email]
    portal2:
      name: portal2
      display: Portal Two
      hostname: portal2.example.com
      oidc:
        issuer: https://idp.example.com/realms/main/.well-known/openid-configuration
        client_id: portal2-client
        client_secret: portal2-secret
    noauth:
      display: No OIDC
      hostname: noauth.example.com
"""


@pytest.fixture(autouse=True)
def no_encryption_key(monkeypatch):
    """Tests start without CONFIG_ENCRYPTION_KEY; encryption tests set their own."""
    monkeypatch.delenv("CONFIG_ENCRYPTION_KEY", raising=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        CONFIG_PATH=str(tmp_path / "config.yaml"),
        DP_KEYS_PATH=str(tmp_path / "keys"),
        REDIS_CONNECTION_STRING=None,
        DATA_PROTECTION_KEY=None,
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="test",
    )


@pytest.fixture
def registry():
    return PortalRegistry(parse_auth_options(TEST_CONFIG))


@pytest.fixture
def key_ring():
    return [os.urandom(32)]


@pytest.fixture
def memory_cache():
    return MemoryCache()


@pytest.fixture
def ticket_protector(key_ring):
    return DataProtector(key_ring, TICKET_PURPOSE)


@pytest.fixture
def correlation_protector(key_ring):
    return DataProtector(key_ring, CORRELATION_PURPOSE)


@pytest.fixture
def ticket_store(memory_cache, ticket_protector):
    return TicketStore(memory_cache, ticket_protector, timedelta(minutes=60))
