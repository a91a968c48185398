"""
PHI加解密与搜索哈希测试
"""

import hashlib
import logging
import re

import pytest

from phivault.crypto.errors import (
    AuthenticationFailure,
    ConfigurationError,
    InvalidCiphertextFormat,
)
from phivault.crypto.key_manager import KeyManager
from phivault.crypto.phi_encryption import (
    PHIEncryptionService,
    create_search_hash,
    decrypt_with_key,
    encrypt_with_key,
)

ENVELOPE_RE = re.compile(r"v1:[a-f0-9]{32}:[a-f0-9]{32}:[a-f0-9]+")


def _flip(hex_str, position):
    char = hex_str[position]
    replacement = "0" if char != "0" else "1"
    return hex_str[:position] + replacement + hex_str[position + 1:]


def test_end_to_end_ssn(key_manager):
    key = key_manager.get_encryption_key()
    encrypted = encrypt_with_key("Patient SSN: 123-45-6789", key)

    assert ENVELOPE_RE.fullmatch(encrypted)
    assert "123-45-6789" not in encrypted
    assert decrypt_with_key(encrypted, key) == "Patient SSN: 123-45-6789"


@pytest.mark.parametrize(
    "plaintext",
    [
        "test@example.com",
        "Line1\nLine2\nLine3",
        "Spécial çhäráctérs",
        "Emoji test 🔐 💊",
        "  padded value  ",
        "Very long string: " + "x" * 1000,
    ],
)
def test_round_trip(service, plaintext):
    assert service.decrypt(service.encrypt(plaintext)) == plaintext


def test_same_plaintext_gives_different_envelopes(service):
    first = service.encrypt("same-data-encrypted-twice")
    second = service.encrypt("same-data-encrypted-twice")

    assert first != second
    assert first.split(":")[1] != second.split(":")[1]
    assert service.decrypt(first) == service.decrypt(second) == "same-data-encrypted-twice"


@pytest.mark.parametrize("segment", [1, 2, 3])
def test_tampering_fails_authentication(key_manager, segment):
    key = key_manager.get_encryption_key()
    parts = encrypt_with_key("Patient SSN: 123-45-6789", key).split(":")

    for position in range(len(parts[segment])):
        tampered = list(parts)
        tampered[segment] = _flip(parts[segment], position)
        with pytest.raises(AuthenticationFailure):
            decrypt_with_key(":".join(tampered), key)


def test_wrong_key_fails_authentication(key_hex, other_key_hex):
    encrypted = encrypt_with_key("clinical note", bytes.fromhex(key_hex))

    with pytest.raises(AuthenticationFailure):
        decrypt_with_key(encrypted, bytes.fromhex(other_key_hex))


def test_authentication_failure_is_logged_for_monitoring(key_hex, other_key_hex, caplog):
    encrypted = encrypt_with_key("clinical note", bytes.fromhex(key_hex))

    with caplog.at_level(logging.WARNING, logger="phivault.security"):
        with pytest.raises(AuthenticationFailure):
            decrypt_with_key(encrypted, bytes.fromhex(other_key_hex))

    assert any(r.name == "phivault.security" for r in caplog.records)
    assert "clinical note" not in caplog.text


def test_error_kinds_are_distinct(service):
    with pytest.raises(InvalidCiphertextFormat) as excinfo:
        service.decrypt("v1:not-an-envelope")
    assert not isinstance(excinfo.value, AuthenticationFailure)

    unconfigured = PHIEncryptionService(KeyManager(environ={}))
    with pytest.raises(ConfigurationError):
        unconfigured.encrypt("555-0100")
    with pytest.raises(ConfigurationError):
        unconfigured.decrypt(service.encrypt("555-0100"))


def test_missing_key_never_falls_back_to_plaintext():
    with pytest.raises(ConfigurationError):
        encrypt_with_key("123-45-6789", None)
    with pytest.raises(ConfigurationError):
        encrypt_with_key("123-45-6789", b"short")


@pytest.mark.parametrize("blank", [None, "", "   ", "\t\n"])
def test_blank_values_map_to_none(service, blank):
    assert service.encrypt(blank) is None
    assert service.decrypt(blank) is None
    assert create_search_hash(blank) is None


def test_blank_values_do_not_need_a_key():
    unconfigured = PHIEncryptionService(KeyManager(environ={}))
    assert unconfigured.encrypt("") is None
    assert unconfigured.decrypt(None) is None


def test_search_hash_is_normalized():
    expected = hashlib.sha256(b"test@example.com").hexdigest()

    assert create_search_hash("Test@Example.com") == expected
    assert create_search_hash("test@example.com") == expected
    assert create_search_hash("  test@example.com  ") == expected
    assert re.fullmatch(r"[a-f0-9]{64}", expected)


def test_search_hash_discriminates():
    assert create_search_hash("a@example.com") != create_search_hash("b@example.com")


def test_service_search_hash_needs_no_key():
    unconfigured = PHIEncryptionService(KeyManager(environ={}))
    assert unconfigured.create_search_hash("555-0100") == create_search_hash("555-0100")


def test_trailing_newline_envelope_is_rejected(service):
    with pytest.raises(InvalidCiphertextFormat):
        service.decrypt(service.encrypt("555-0100") + "\n")
