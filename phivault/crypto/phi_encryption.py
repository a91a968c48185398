"""
PHI加密模块 - AES-256-GCM信封加密与搜索哈希
"""

import logging
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Random import get_random_bytes

from ..config import ENCRYPTION_CONFIG
from .envelope import CURRENT_VERSION, IV_SIZE, Envelope
from .errors import AuthenticationFailure, ConfigurationError, InvalidCiphertextFormat

logger = logging.getLogger(__name__)
# 认证失败单独记录, 供安全监控使用
security_logger = logging.getLogger("phivault.security")

KEY_SIZE = ENCRYPTION_CONFIG["key_size"]


def is_blank(value: Optional[str]) -> bool:
    """None、空串或仅含空白字符"""
    return value is None or value.strip() == ""


def _require_key(key: Optional[bytes]) -> bytes:
    if key is None:
        raise ConfigurationError(
            "PHI encryption key is required. Cannot process PHI data without encryption."
        )
    if len(key) != KEY_SIZE:
        raise ConfigurationError(f"PHI encryption key must be {KEY_SIZE} bytes")
    return key


def encrypt_with_key(plaintext: Optional[str], key: Optional[bytes]) -> Optional[str]:
    """
    使用指定密钥加密明文

    Args:
        plaintext: 要加密的字符串
        key: 32字节密钥

    Returns:
        信封字符串; 明文为None/空/仅空白时返回None

    Raises:
        ConfigurationError: 未提供密钥或密钥长度错误
    """
    if is_blank(plaintext):
        return None

    key = _require_key(key)

    # 每次调用生成新的随机IV
    iv = get_random_bytes(IV_SIZE)
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext.encode("utf-8"))

    return Envelope(CURRENT_VERSION, iv, tag, ciphertext).format()


def decrypt_with_key(ciphertext: Optional[str], key: Optional[bytes]) -> Optional[str]:
    """
    使用指定密钥解密信封

    Args:
        ciphertext: 信封字符串
        key: 32字节密钥

    Returns:
        解密后的明文; 输入为None/空/仅空白时返回None

    Raises:
        ConfigurationError: 未提供密钥或密钥长度错误
        InvalidCiphertextFormat: 信封格式错误
        AuthenticationFailure: 密钥错误或数据被篡改
    """
    if is_blank(ciphertext):
        return None

    key = _require_key(key)
    envelope = Envelope.parse(ciphertext)

    cipher = AES.new(key, AES.MODE_GCM, nonce=envelope.iv)
    try:
        plaintext = cipher.decrypt_and_verify(envelope.ciphertext, envelope.tag)
    except ValueError:
        security_logger.warning(
            f"PHI decryption failed authentication (version {envelope.version})"
        )
        raise AuthenticationFailure(
            "Failed to decrypt PHI data: wrong encryption key or corrupted data"
        ) from None

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidCiphertextFormat(
            "Invalid ciphertext format - payload is not UTF-8 text"
        ) from None


def create_search_hash(plaintext: Optional[str]) -> Optional[str]:
    """
    为加密字段生成可搜索的确定性哈希

    对去除首尾空白并转小写后的明文计算SHA-256。不使用密钥, 仅用于等值查找,
    不构成安全边界: 对常见姓名、邮箱等低熵输入可被字典/频率攻击还原,
    这是为可搜索性做出的取舍。

    Args:
        plaintext: 明文

    Returns:
        64位小写十六进制字符串; 输入为None/空/仅空白时返回None
    """
    if is_blank(plaintext):
        return None

    normalized = plaintext.strip().lower()
    return SHA256.new(normalized.encode("utf-8")).hexdigest()


class PHIEncryptionService:
    """PHI加密服务, 绑定到KeyManager的当前密钥"""

    def __init__(self, key_manager):
        """
        初始化PHI加密服务

        Args:
            key_manager: 提供当前密钥的KeyManager实例
        """
        self.key_manager = key_manager

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """加密明文, 见 encrypt_with_key"""
        if is_blank(plaintext):
            return None
        return encrypt_with_key(plaintext, self.key_manager.get_encryption_key())

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """解密信封, 见 decrypt_with_key"""
        if is_blank(ciphertext):
            return None
        return decrypt_with_key(ciphertext, self.key_manager.get_encryption_key())

    @staticmethod
    def create_search_hash(plaintext: Optional[str]) -> Optional[str]:
        return create_search_hash(plaintext)
