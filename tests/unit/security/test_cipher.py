"""Unit tests — CipherEngine (cipher.py).

Tests cover:
  - encrypt/decrypt round trip, including empty and non-ASCII text
  - non-deterministic output
  - every single-bit flip of a token is rejected
  - malformed base64 and truncated tokens
  - tokens sealed under another passphrase
  - keyed_hash stability and shape
  - JSON object helpers
"""

from __future__ import annotations

import base64

import pytest

from llm_remote.exceptions import ConfigurationError, FormatError, IntegrityError
from llm_remote.security.cipher import (
    MIN_TOKEN_BYTES,
    CipherEngine,
    generate_master_passphrase,
)

pytestmark = pytest.mark.unit


class TestRoundTrip:

    def test_decrypt_returns_plaintext(self, cipher: CipherEngine) -> None:
        assert cipher.decrypt(cipher.encrypt("hello world")) == "hello world"

    def test_empty_string(self, cipher: CipherEngine) -> None:
        assert cipher.decrypt(cipher.encrypt("")) == ""

    def test_unicode(self, cipher: CipherEngine) -> None:
        text = "Привет 👋 — café"
        assert cipher.decrypt(cipher.encrypt(text)) == text

    def test_two_encryptions_differ(self, cipher: CipherEngine) -> None:
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_token_is_base64_of_header_plus_ciphertext(self, cipher: CipherEngine) -> None:
        raw = base64.b64decode(cipher.encrypt("abc"))
        assert len(raw) == MIN_TOKEN_BYTES + 3

    def test_repr_hides_keys(self, cipher: CipherEngine) -> None:
        assert "hidden" in repr(cipher)


class TestTampering:

    def test_every_bit_flip_is_rejected(self, cipher: CipherEngine) -> None:
        token = cipher.encrypt("secret payload")
        raw = bytearray(base64.b64decode(token))
        for index in range(len(raw)):
            for bit in range(8):
                tampered = bytearray(raw)
                tampered[index] ^= 1 << bit
                with pytest.raises(IntegrityError):
                    cipher.decrypt(base64.b64encode(bytes(tampered)).decode("ascii"))

    def test_character_substitution_is_rejected(self, cipher: CipherEngine) -> None:
        token = cipher.encrypt("secret payload")
        for index in (0, len(token) // 2, len(token) - 3):
            replacement = "A" if token[index] != "A" else "B"
            tampered = token[:index] + replacement + token[index + 1 :]
            with pytest.raises(IntegrityError):
                cipher.decrypt(tampered)

    def test_non_base64_raises_format_error(self, cipher: CipherEngine) -> None:
        with pytest.raises(FormatError):
            cipher.decrypt("not base64 at all!!")

    def test_format_error_is_an_integrity_error(self, cipher: CipherEngine) -> None:
        with pytest.raises(IntegrityError):
            cipher.decrypt("%%%%")

    def test_too_short_token(self, cipher: CipherEngine) -> None:
        short = base64.b64encode(b"\x00" * (MIN_TOKEN_BYTES - 1)).decode("ascii")
        with pytest.raises(IntegrityError):
            cipher.decrypt(short)

    def test_truncated_token(self, cipher: CipherEngine) -> None:
        raw = base64.b64decode(cipher.encrypt("a longer message to truncate"))
        truncated = base64.b64encode(raw[:-4]).decode("ascii")
        with pytest.raises(IntegrityError):
            cipher.decrypt(truncated)

    def test_error_message_does_not_reveal_cause(self, cipher: CipherEngine) -> None:
        raw = bytearray(base64.b64decode(cipher.encrypt("x")))
        raw[-1] ^= 0x01
        with pytest.raises(IntegrityError) as exc_info:
            cipher.decrypt(base64.b64encode(bytes(raw)).decode("ascii"))
        assert exc_info.value.message == "Integrity check failed"


class TestKeys:

    def test_other_passphrase_cannot_decrypt(self, cipher: CipherEngine) -> None:
        other = CipherEngine("a-completely-different-passphrase")
        with pytest.raises(IntegrityError):
            other.decrypt(cipher.encrypt("hello"))

    def test_short_passphrase_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            CipherEngine("too-short")

    def test_empty_passphrase_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            CipherEngine("")

    def test_generated_passphrase_is_long_enough(self) -> None:
        passphrase = generate_master_passphrase()
        assert len(passphrase) >= 16
        assert passphrase != generate_master_passphrase()


class TestKeyedHash:

    def test_stable(self, cipher: CipherEngine) -> None:
        assert cipher.keyed_hash("42") == cipher.keyed_hash("42")

    def test_hex_shape(self, cipher: CipherEngine) -> None:
        digest = cipher.keyed_hash("42")
        assert len(digest) == 64
        int(digest, 16)

    def test_str_and_bytes_agree(self, cipher: CipherEngine) -> None:
        assert cipher.keyed_hash("42") == cipher.keyed_hash(b"42")

    def test_distinct_inputs(self, cipher: CipherEngine) -> None:
        assert cipher.keyed_hash("42") != cipher.keyed_hash("43")


class TestObjects:

    def test_object_round_trip(self, cipher: CipherEngine) -> None:
        obj = {"a": 1, "b": [1, 2], "c": None}
        assert cipher.decrypt_object(cipher.encrypt_object(obj)) == obj

    def test_non_json_plaintext_is_integrity_error(self, cipher: CipherEngine) -> None:
        with pytest.raises(IntegrityError):
            cipher.decrypt_object(cipher.encrypt("{not json"))
