"""
加密模块初始化文件
"""

from .envelope import CURRENT_VERSION, SUPPORTED_VERSIONS, Envelope
from .errors import (
    AuthenticationFailure,
    ConfigurationError,
    InvalidCiphertextFormat,
    PHIEncryptionError,
    RotationError,
    RotationFieldError,
    RotationValidationError,
)
from .key_manager import KeyManager, decode_key_hex, key_fingerprint
from .phi_encryption import (
    PHIEncryptionService,
    create_search_hash,
    decrypt_with_key,
    encrypt_with_key,
)

__all__ = [
    "CURRENT_VERSION",
    "SUPPORTED_VERSIONS",
    "Envelope",
    "AuthenticationFailure",
    "ConfigurationError",
    "InvalidCiphertextFormat",
    "PHIEncryptionError",
    "RotationError",
    "RotationFieldError",
    "RotationValidationError",
    "KeyManager",
    "decode_key_hex",
    "key_fingerprint",
    "PHIEncryptionService",
    "create_search_hash",
    "decrypt_with_key",
    "encrypt_with_key",
]
