"""Tests for provider token encryption."""

from unittest.mock import MagicMock, patch

import pytest

from chatsync.infra import tokens
from chatsync.infra.tokens import DatabaseTokenProvider, TokenDecryptionError, decrypt_token, encrypt_token


@pytest.fixture
def encryption_key(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", "unit-test-master-key")


class TestTokenCrypto:
    def test_decrypts_what_it_encrypts(self, encryption_key):
        sealed = encrypt_token("whapi-token-abc")
        assert "whapi-token-abc" not in sealed
        assert len(sealed.split(":")) == 4
        assert decrypt_token(sealed) == "whapi-token-abc"

    def test_fresh_salt_and_iv_per_encryption(self, encryption_key):
        assert encrypt_token("same") != encrypt_token("same")

    def test_wrong_key_fails_authentication(self, encryption_key, monkeypatch):
        sealed = encrypt_token("secret")
        monkeypatch.setenv("ENCRYPTION_KEY", "another-key")
        with pytest.raises(TokenDecryptionError):
            decrypt_token(sealed)

    def test_tampered_ciphertext(self, encryption_key):
        salt, iv, tag, ciphertext = encrypt_token("secret").split(":")
        flipped = "00" if ciphertext[:2] != "00" else "11"
        with pytest.raises(TokenDecryptionError):
            decrypt_token(":".join([salt, iv, tag, flipped + ciphertext[2:]]))

    @pytest.mark.parametrize("value", ["", "a:b", "zz:zz:zz:zz"])
    def test_malformed(self, encryption_key, value):
        with pytest.raises(TokenDecryptionError):
            decrypt_token(value)

    def test_missing_master_key(self, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        with pytest.raises(RuntimeError):
            encrypt_token("x")


class TestDatabaseTokenProvider:
    def _patched_txn(self, encrypted):
        cur = MagicMock()
        cur.fetchone.return_value = (encrypted,) if encrypted else None
        txn_cm = MagicMock()
        txn_cm.__enter__.return_value = cur
        return patch.object(tokens, "txn", return_value=txn_cm), cur

    def test_returns_plaintext(self, encryption_key):
        sealed = encrypt_token("plain-token")
        patcher, cur = self._patched_txn(sealed)
        with patcher:
            assert DatabaseTokenProvider().get_token("chan-1") == "plain-token"
        assert cur.execute.call_args.args[1] == ("chan-1", "whapi")

    def test_no_token_row(self, encryption_key):
        patcher, _ = self._patched_txn(None)
        with patcher:
            assert DatabaseTokenProvider().get_token("chan-1") is None
