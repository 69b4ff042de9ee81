"""
Configuration Secret Codec Tests

Tests the ENC: codec, key handling (raw key vs passphrase), the legacy salt
fallback and the EncryptedString wrapper.
"""

import base64
import os

import pytest

from app.encryption import ENCRYPTION_PREFIX, EncryptedString, decrypt, encrypt
from app.encryption.__main__ import main as cli_main
from app.encryption.crypto import LEGACY_DERIVATION, encrypt_with
from app.exceptions import DecryptionFailedError


PASSPHRASE = "correct horse battery staple"
RAW_KEY = base64.b64encode(os.urandom(32)).decode("ascii")


class TestCodec:
    """Test suite for encrypt/decrypt"""

    def test_no_key_is_identity(self):
        assert encrypt("secret") == "secret"
        assert decrypt("secret") == "secret"
        assert decrypt("ENC:anything") == "ENC:anything"

    @pytest.mark.parametrize("key", [PASSPHRASE, RAW_KEY])
    def test_round_trip(self, monkeypatch, key):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", key)

        encrypted = encrypt("my-client-secret")

        assert encrypted.startswith(ENCRYPTION_PREFIX)
        assert "my-client-secret" not in encrypted
        assert decrypt(encrypted) == "my-client-secret"

    @pytest.mark.parametrize("key", [PASSPHRASE, RAW_KEY])
    @pytest.mark.parametrize(
        "value",
        [
            "",
            "pässwörd-秘密-🔑",
            "exactly16bytes!!",
        ],
    )
    def test_round_trip_edge_values(self, monkeypatch, key, value):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", key)

        encrypted = encrypt(value)

        assert encrypted.startswith(ENCRYPTION_PREFIX)
        assert decrypt(encrypted) == value

    def test_fresh_iv_every_call(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)

        assert encrypt("same") != encrypt("same")

    def test_plaintext_passes_through_with_key(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)

        assert decrypt("not-encrypted") == "not-encrypted"

    def test_legacy_salt_is_accepted(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)
        legacy = encrypt_with(LEGACY_DERIVATION, "old-secret", PASSPHRASE)

        assert decrypt(legacy) == "old-secret"

    def test_invalid_base64_fails(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)

        with pytest.raises(DecryptionFailedError) as exc_info:
            decrypt("ENC:not*base64!")
        assert "base64" in exc_info.value.message

    def test_payload_shorter_than_iv_fails(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)
        short = ENCRYPTION_PREFIX + base64.b64encode(b"0123456789").decode("ascii")

        with pytest.raises(DecryptionFailedError) as exc_info:
            decrypt(short)
        assert "too short" in exc_info.value.message

    def test_wrong_key_fails(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)
        encrypted = encrypt("secret")

        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", "a different passphrase")
        # A wrong key occasionally yields valid padding; the output is then garbage, never the secret
        try:
            assert decrypt(encrypted) != "secret"
        except DecryptionFailedError as e:
            assert e.code == "DECRYPTION_FAILED"
            assert e.status_code == 500


class TestEncryptedString:
    """Test suite for the secret wrapper"""

    def test_masked_repr_and_str(self):
        secret = EncryptedString("hunter2")

        assert "hunter2" not in repr(secret)
        assert "hunter2" not in str(secret)
        assert secret.reveal() == "hunter2"

    def test_equality_by_value(self):
        assert EncryptedString("a") == EncryptedString("a")
        assert EncryptedString("a") != EncryptedString("b")

    def test_from_config_decrypts(self, monkeypatch):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)

        secret = EncryptedString.from_config(encrypt("value"))

        assert secret.reveal() == "value"
        assert EncryptedString.from_config(None).reveal() == ""


class TestCli:
    """Test suite for python -m app.encryption"""

    def test_encrypt_then_decrypt(self, monkeypatch, capsys):
        monkeypatch.setenv("CONFIG_ENCRYPTION_KEY", PASSPHRASE)

        assert cli_main(["encrypt", "cli-secret"]) == 0
        encrypted = capsys.readouterr().out.strip()
        assert encrypted.startswith(ENCRYPTION_PREFIX)

        assert cli_main(["decrypt", encrypted]) == 0
        assert capsys.readouterr().out.strip() == "cli-secret"

    def test_requires_key(self, capsys):
        assert cli_main(["encrypt", "x"]) == 1
        assert "CONFIG_ENCRYPTION_KEY" in capsys.readouterr().err

    def test_generate_key(self, capsys):
        assert cli_main(["generate-key"]) == 0
        key = capsys.readouterr().out.strip()
        assert len(base64.b64decode(key)) == 32
