"""Channel provider tokens.

Each channel stores its provider API token encrypted in `channel_tokens`.
Format: hex(salt):hex(iv):hex(auth_tag):hex(ciphertext), AES-256-GCM with a
key derived from ENCRYPTION_KEY via PBKDF2-HMAC-SHA256.

Security:
- Decrypted tokens are never logged or persisted
- The processor receives a TokenProvider, so tests substitute a stub
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from psycopg2.extensions import cursor as PgCursor

from chatsync.infra.db import txn
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import safe_log_context

logger = get_logger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
KDF_ITERATIONS = 100_000
PROVIDER_TOKEN_TYPE = "whapi"


class TokenDecryptionError(Exception):
    """Raised when a stored token cannot be decrypted."""


class TokenProvider(Protocol):
    """Resolves the plaintext provider token for a channel."""

    def get_token(self, channel_id: str) -> str | None:
        """Return the token, or None when the channel has none."""
        ...


def _get_master_key() -> str:
    key = os.environ.get("ENCRYPTION_KEY")
    if not key:
        raise RuntimeError("ENCRYPTION_KEY environment variable is not set")
    return key


@lru_cache(maxsize=256)
def _derive_key(master_key: str, salt: bytes) -> bytes:
    # PBKDF2 at 100k iterations is slow; cache per (key, salt).
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(master_key.encode("utf-8"))


def encrypt_token(plaintext: str) -> str:
    """Encrypt a provider token for storage in channel_tokens."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(_get_master_key(), salt)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-16], sealed[-16:]
    return ":".join(part.hex() for part in (salt, iv, tag, ciphertext))


def decrypt_token(encrypted: str) -> str:
    """Decrypt a value produced by encrypt_token().

    Raises:
        TokenDecryptionError: On malformed input or authentication failure.
        RuntimeError: If ENCRYPTION_KEY is not configured.
    """
    parts = encrypted.split(":")
    if len(parts) != 4:
        raise TokenDecryptionError("invalid encrypted token format")
    try:
        salt, iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError as e:
        raise TokenDecryptionError("invalid encrypted token encoding") from e

    key = _derive_key(_get_master_key(), salt)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise TokenDecryptionError("token authentication failed") from e
    return plaintext.decode("utf-8")


def load_encrypted_token(cur: PgCursor, channel_id: str) -> str | None:
    cur.execute(
        """
        SELECT encrypted_token FROM channel_tokens
        WHERE channel_id = %s AND token_type = %s
        """,
        (channel_id, PROVIDER_TOKEN_TYPE),
    )
    row = cur.fetchone()
    return row[0] if row else None


class DatabaseTokenProvider:
    """TokenProvider backed by the channel_tokens table."""

    def get_token(self, channel_id: str) -> str | None:
        with txn() as cur:
            encrypted = load_encrypted_token(cur, channel_id)

        if not encrypted:
            logger.info(
                "no provider token for channel",
                extra={"extra_fields": safe_log_context(channel_id=channel_id)},
            )
            return None

        return decrypt_token(encrypted)
