"""
Portal Registry Tests

Tests loading the YAML configuration document, portal defaults, OIDC
eligibility, and writing the document back with encrypted secrets.
"""

import pytest
import yaml

from app.encryption import ENCRYPTION_PREFIX, encrypt
from app.exceptions import ConfigurationError, DecryptionFailedError
from app.registry import (
    AuthOptions,
    PortalRegistry,
    dump_auth_options,
    load_auth_options,
    parse_auth_options,
    write_auth_options,
)
from app.tests.conftest import TEST_CONFIG


class TestLoading:
    """Test suite for load_auth_options / parse_auth_options"""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(TEST_CONFIG)

        options = load_auth_options(str(path))

        assert options.session_timeout_minutes == 60
        assert list(options.portals) == ["portal1", "portal2", "noauth"]
        assert options.portals["portal1"].oidc.client_secret.reveal() == "portal1-secret"

    def test_missing_name_defaults_to_key(self):
        options = parse_auth_options(TEST_CONFIG)

        assert options.portals["portal1"].name == "portal1"
        assert options.portals["noauth"].name == "noauth"

    def test_defaults(self):
        options = parse_auth_options("auth:\n  portals:\n    p:\n      oidc:\n        issuer: https://idp\n")

        assert options.session_timeout_minutes == 60
        assert options.session_secret.reveal() == ""
        assert options.portals["p"].oidc.scopes == ["openid", "profile", "email"]
        assert options.portals["p"].cookie_domain == ""

    def test_scopes_deduplicated_in_order(self):
        options = parse_auth_options(
            "auth:\n  portals:\n    p:\n      oidc:\n        scopes: [openid, groups, openid, email, groups]\n"
        )

        assert options.portals["p"].oidc.scopes == ["openid", "groups", "email"]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_auth_options(str(tmp_path / "missing.yaml"))

    def test_malformed_yaml_raises(self):
        with pytest.raises(ConfigurationError):
            parse_auth_options("auth: [unclosed")

    def test_invalid_timeout_raises(self):
        with pytest.raises(ConfigurationError):
            parse_auth_options("auth:\n  session_timeout_minutes: not-a-number\n")

    def test_encrypted_secrets_are_decrypted(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", "test-passphrase")
        document = (
            "auth:\n"
            f"  session_secret: \"{encrypt('session')}\"\n"
            "  portals:\n"
            "    p:\n"
            "      oidc:\n"
            "        issuer: https://idp\n"
            "        client_id: c\n"
            f"        client_secret: \"{encrypt('client')}\"\n"
        )

        options = parse_auth_options(document)

        assert options.session_secret.reveal() == "session"
        assert options.portals["p"].oidc.client_secret.reveal() == "client"

    def test_undecryptable_secret_is_fatal(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", "test-passphrase")

        with pytest.raises(DecryptionFailedError):
            parse_auth_options("auth:\n  session_secret: \"ENC:AAAA\"\n")


class TestOidcConfig:
    """Test suite for eligibility and issuer handling"""

    def test_eligibility(self, registry):
        assert registry.get("portal1").is_oidc_eligible
        assert not registry.get("noauth").is_oidc_eligible

    def test_blank_client_id_not_eligible(self):
        options = parse_auth_options(
            "auth:\n  portals:\n    p:\n      oidc:\n        issuer: https://idp\n        client_id: '  '\n"
        )

        assert not options.portals["p"].is_oidc_eligible

    def test_authority_issuer(self, registry):
        oidc = registry.get("portal1").oidc

        assert not oidc.uses_metadata_address
        assert oidc.metadata_address == "https://idp.example.com/realms/main/.well-known/openid-configuration"
        assert oidc.require_https_metadata

    def test_discovery_document_issuer(self, registry):
        oidc = registry.get("portal2").oidc

        assert oidc.uses_metadata_address
        assert oidc.metadata_address == oidc.issuer

    def test_http_issuer_does_not_require_https(self):
        options = parse_auth_options(
            "auth:\n  portals:\n    p:\n      oidc:\n        issuer: http://keycloak:8080/realms/dev\n"
        )

        assert not options.portals["p"].oidc.require_https_metadata


class TestRegistry:
    """Test suite for PortalRegistry"""

    def test_lookup(self, registry):
        assert len(registry) == 3
        assert registry.names == ["portal1", "portal2", "noauth"]
        assert registry.get("unknown") is None
        assert "portal1" in registry
        assert registry.session_timeout_seconds == 3600

    def test_models_are_frozen(self, registry):
        with pytest.raises(Exception):
            registry.get("portal1").hostname = "evil.example.com"


class TestWriting:
    """Test suite for dump_auth_options / write_auth_options"""

    def test_dump_encrypts_secrets(self, monkeypatch, registry):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", "test-passphrase")

        data = yaml.safe_load(dump_auth_options(registry.options))

        secret = data["auth"]["portals"]["portal1"]["oidc"]["client_secret"]
        assert secret.startswith(ENCRYPTION_PREFIX)
        assert data["auth"]["session_secret"].startswith(ENCRYPTION_PREFIX)
        assert data["auth"]["portals"]["portal1"]["hostname"] == "portal1.example.com"

    def test_write_then_load(self, monkeypatch, tmp_path, registry):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", "test-passphrase")
        path = tmp_path / "out" / "config.yaml"

        write_auth_options(registry.options, str(path))
        reloaded = PortalRegistry.from_file(str(path))

        assert reloaded.options.model_dump() == registry.options.model_dump()
        assert "portal1-secret" not in path.read_text()

    def test_dump_without_key_is_plaintext(self):
        options = AuthOptions.model_validate({"session_secret": "plain"})

        data = yaml.safe_load(dump_auth_options(options))

        assert data["auth"]["session_secret"] == "plain"
