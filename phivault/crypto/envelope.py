"""
密文信封格式模块

信封格式: <version>:<iv_hex>:<tag_hex>:<ciphertext_hex>
    - version: 格式版本标签, 决定算法与字段顺序
    - iv: 16字节随机初始化向量
    - tag: 16字节GCM认证标签
    - ciphertext: 加密后的负载
所有十六进制字段均为小写。
"""

import re
from typing import NamedTuple

from ..config import ENCRYPTION_CONFIG
from .errors import InvalidCiphertextFormat

CURRENT_VERSION = ENCRYPTION_CONFIG["current_version"]
SUPPORTED_VERSIONS = tuple(ENCRYPTION_CONFIG["read_versions"])
IV_SIZE = ENCRYPTION_CONFIG["iv_size"]
TAG_SIZE = ENCRYPTION_CONFIG["tag_size"]

SEPARATOR = ":"
_HEX_RE = re.compile(r"(?:[0-9a-f]{2})+")


class Envelope(NamedTuple):
    """已解析的密文信封"""

    version: str
    iv: bytes
    tag: bytes
    ciphertext: bytes

    def format(self) -> str:
        """
        序列化为信封字符串

        Returns:
            version:iv:tag:ciphertext 形式的字符串
        """
        return SEPARATOR.join(
            (self.version, self.iv.hex(), self.tag.hex(), self.ciphertext.hex())
        )

    @classmethod
    def parse(cls, value: str) -> "Envelope":
        """
        解析信封字符串

        Args:
            value: 信封字符串

        Returns:
            Envelope对象

        Raises:
            InvalidCiphertextFormat: 段数错误、版本未知、十六进制非法或IV/标签长度错误
        """
        if not isinstance(value, str):
            raise InvalidCiphertextFormat("Invalid ciphertext format - expected a string")

        parts = value.split(SEPARATOR)
        if len(parts) != 4:
            raise InvalidCiphertextFormat(
                "Invalid ciphertext format - expected version:iv:authTag:encrypted"
            )

        version, iv_hex, tag_hex, payload_hex = parts
        if version not in SUPPORTED_VERSIONS:
            raise InvalidCiphertextFormat(
                f"Invalid ciphertext format - unsupported version {version[:8]!r}"
            )

        for name, segment in (("iv", iv_hex), ("tag", tag_hex), ("payload", payload_hex)):
            if not _HEX_RE.fullmatch(segment):
                raise InvalidCiphertextFormat(
                    f"Invalid ciphertext format - {name} is not lowercase hex"
                )

        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        if len(iv) != IV_SIZE:
            raise InvalidCiphertextFormat(
                f"Invalid ciphertext format - iv must be {IV_SIZE} bytes"
            )
        if len(tag) != TAG_SIZE:
            raise InvalidCiphertextFormat(
                f"Invalid ciphertext format - tag must be {TAG_SIZE} bytes"
            )

        return cls(version, iv, tag, bytes.fromhex(payload_hex))
