"""Security layer — Authenticated encryption engine.

Keys:
  - The master passphrase is stretched once with PBKDF2-HMAC-SHA512
    (310 000 iterations) over a fixed application salt into 64 bytes,
    split into an encryption key and an HMAC key.
  - Each message gets a fresh 32-byte salt; HKDF-SHA256 derives the
    per-message AES key from the encryption key and that salt.

Token layout (standard base64 of the concatenation)::

    hmac(32) | salt(32) | iv(12) | tag(16) | ciphertext

The HMAC covers everything after it and is checked, in constant time,
before any decryption is attempted.

Usage::

    cipher = CipherEngine(settings.crypto.master_password)
    token = cipher.encrypt("hello")
    cipher.decrypt(token)            # "hello"
    cipher.keyed_hash("42")          # stable hex pseudonym
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from llm_remote.exceptions import ConfigurationError, FormatError, IntegrityError
from llm_remote.logging import get_logger

log = get_logger(__name__)

MIN_PASSPHRASE_LENGTH = 16

# Master derivation
PBKDF2_ITERATIONS = 310_000
PBKDF2_HASH = "sha512"
MASTER_SALT = b"llm-remote-v1-master-salt"
KEY_LENGTH_BYTES = 32  # 256 bits

# Per-message layout
MAC_LENGTH = 32
SALT_LENGTH = 32
IV_LENGTH = 12  # 96 bits, recommended for AES-GCM
TAG_LENGTH = 16
MIN_TOKEN_BYTES = MAC_LENGTH + SALT_LENGTH + IV_LENGTH + TAG_LENGTH

_MESSAGE_KEY_INFO = b"llm-remote:v1:message-key"


def generate_master_passphrase() -> str:
    """Return a random passphrase suitable for ``crypto.master_password``."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class CipherEngine:
    """AES-256-GCM encryption with an outer HMAC-SHA256 and keyed hashing.

    Construction runs one PBKDF2 derivation; build one instance
    at startup and share it.  ``encrypt`` / ``decrypt`` only use the fast
    HKDF derivation.
    """

    def __init__(self, master_passphrase: str) -> None:
        if not master_passphrase or len(master_passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ConfigurationError(
                f"Master passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters",
                context={"min_length": MIN_PASSPHRASE_LENGTH},
            )
        derived = hashlib.pbkdf2_hmac(
            PBKDF2_HASH,
            master_passphrase.encode("utf-8"),
            MASTER_SALT,
            PBKDF2_ITERATIONS,
            dklen=KEY_LENGTH_BYTES * 2,
        )
        self._encryption_key = derived[:KEY_LENGTH_BYTES]
        self._mac_key = derived[KEY_LENGTH_BYTES:]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(<keys hidden>)"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext*.  Two calls on the same input never match."""
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)

        sealed = AESGCM(self._message_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        payload = salt + iv + tag + ciphertext
        mac = hmac.new(self._mac_key, payload, hashlib.sha256).digest()
        return base64.b64encode(mac + payload).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Verify and decrypt a token produced by :meth:`encrypt`.

        Raises:
            FormatError: *token* is not canonical base64.
            IntegrityError: The token is truncated, tampered with, or was
                sealed under a different passphrase.
        """
        data = self._decode(token)
        if len(data) < MIN_TOKEN_BYTES:
            log.debug("cipher_rejected", reason="too_short", length=len(data))
            raise IntegrityError()

        mac, payload = data[:MAC_LENGTH], data[MAC_LENGTH:]
        expected = hmac.new(self._mac_key, payload, hashlib.sha256).digest()
        if not hmac.compare_digest(mac, expected):
            log.debug("cipher_rejected", reason="mac_mismatch")
            raise IntegrityError()

        salt = payload[:SALT_LENGTH]
        iv = payload[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
        tag = payload[SALT_LENGTH + IV_LENGTH : SALT_LENGTH + IV_LENGTH + TAG_LENGTH]
        ciphertext = payload[SALT_LENGTH + IV_LENGTH + TAG_LENGTH :]

        try:
            plaintext = AESGCM(self._message_key(salt)).decrypt(iv, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            log.debug("cipher_rejected", reason="aead_failure")
            raise IntegrityError() from exc

    def keyed_hash(self, data: str | bytes) -> str:
        """Deterministic HMAC-SHA256 of *data* as 64 hex characters."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        return hmac.new(self._mac_key, data, hashlib.sha256).hexdigest()

    def encrypt_object(self, obj: Any) -> str:
        """Encrypt a JSON-serialisable object."""
        return self.encrypt(json.dumps(obj, separators=(",", ":")))

    def decrypt_object(self, token: str) -> Any:
        """Decrypt a token from :meth:`encrypt_object` and parse the JSON."""
        text = self.decrypt(token)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise IntegrityError() from exc

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _message_key(self, salt: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH_BYTES,
            salt=salt,
            info=_MESSAGE_KEY_INFO,
        )
        return hkdf.derive(self._encryption_key)

    @staticmethod
    def _decode(token: str) -> bytes:
        # Canonical base64 only: unused padding bits must be zero.
        try:
            raw = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise FormatError("Malformed token") from exc
        if base64.b64encode(raw).decode("ascii") != token:
            raise FormatError("Malformed token")
        return raw
