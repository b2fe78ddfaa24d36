"""Unit tests for KeyEncryptor (AES-256-GCM credential sealing)."""

from __future__ import annotations

import base64

import pytest

from kbrag.utils.crypto import KeyEncryptor
from kbrag.utils.errors import ConfigurationError

SECRET = "k" * 32
OTHER_SECRET = "z" * 40


@pytest.fixture
def encryptor() -> KeyEncryptor:
    return KeyEncryptor(SECRET)


def test_round_trip(encryptor: KeyEncryptor) -> None:
    token = encryptor.encrypt("sk-live-abc123")
    assert encryptor.decrypt(token) == "sk-live-abc123"


def test_wire_layout_is_iv_ciphertext_tag(encryptor: KeyEncryptor) -> None:
    plaintext = "AIzaSyExampleKey"
    raw = base64.b64decode(encryptor.encrypt(plaintext))
    assert len(raw) == 12 + len(plaintext.encode("utf-8")) + 16


def test_fresh_iv_per_encryption(encryptor: KeyEncryptor) -> None:
    assert encryptor.encrypt("same") != encryptor.encrypt("same")


def test_only_first_32_bytes_of_secret_are_used() -> None:
    token = KeyEncryptor("a" * 32 + "tail").encrypt("value")
    assert KeyEncryptor("a" * 32 + "different").decrypt(token) == "value"


def test_short_secret_rejected() -> None:
    with pytest.raises(ConfigurationError):
        KeyEncryptor("too-short")


def test_wrong_key_rejected(encryptor: KeyEncryptor) -> None:
    token = encryptor.encrypt("secret")
    with pytest.raises(ConfigurationError):
        KeyEncryptor(OTHER_SECRET).decrypt(token)


def test_tampered_token_rejected(encryptor: KeyEncryptor) -> None:
    raw = bytearray(base64.b64decode(encryptor.encrypt("secret")))
    raw[-1] ^= 0x01
    with pytest.raises(ConfigurationError):
        encryptor.decrypt(base64.b64encode(bytes(raw)).decode("ascii"))


@pytest.mark.parametrize("token", ["not base64!!", base64.b64encode(b"short").decode("ascii")])
def test_malformed_token_rejected(encryptor: KeyEncryptor, token: str) -> None:
    with pytest.raises(ConfigurationError):
        encryptor.decrypt(token)
