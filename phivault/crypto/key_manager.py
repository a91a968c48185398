"""
密钥管理模块 - 处理PHI加密密钥的加载、校验和生成

密钥仅来自环境变量, 不落盘、不写日志。
"""

import logging
import os
import re
import secrets
import threading
from typing import Mapping, Optional, Union

from ..config import ENCRYPTION_CONFIG, HEALTH_CONFIG, KEY_CONFIG
from .errors import ConfigurationError, PHIEncryptionError
from .phi_encryption import decrypt_with_key, encrypt_with_key

logger = logging.getLogger(__name__)

KEY_HEX_LENGTH = ENCRYPTION_CONFIG["key_size"] * 2
_KEY_HEX_RE = re.compile(r"[0-9a-fA-F]{%d}" % KEY_HEX_LENGTH)


def decode_key_hex(value: Optional[str], name: str = KEY_CONFIG["env_var"]) -> bytes:
    """
    校验并解码十六进制密钥

    Args:
        value: 64位十六进制字符串
        name: 用于错误消息的密钥名称

    Returns:
        32字节密钥

    Raises:
        ConfigurationError: 密钥缺失或不是64位十六进制字符
    """
    if not value:
        raise ConfigurationError(f"{name} is required")
    if not _KEY_HEX_RE.fullmatch(value):
        raise ConfigurationError(
            f"{name} must be {KEY_HEX_LENGTH} hex characters "
            f"({ENCRYPTION_CONFIG['key_size']} bytes)"
        )
    return bytes.fromhex(value)


def key_fingerprint(key: Union[str, bytes]) -> str:
    """
    计算密钥指纹 (十六进制形式的末8位)

    Args:
        key: 十六进制字符串或原始字节

    Returns:
        指纹字符串
    """
    key_hex = key.hex() if isinstance(key, (bytes, bytearray)) else key.lower()
    return key_hex[-KEY_CONFIG["fingerprint_length"]:]


def is_production(environ: Optional[Mapping[str, str]] = None) -> bool:
    """当前进程是否配置为生产环境"""
    environ = os.environ if environ is None else environ
    env = environ.get(KEY_CONFIG["environment_var"], "").strip().lower()
    return env in KEY_CONFIG["production_names"]


class KeyManager:
    """密钥管理器, 持有当前进程唯一的PHI加密密钥"""

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        env_var: str = KEY_CONFIG["env_var"],
    ):
        """
        初始化密钥管理器 (不会立即读取密钥)

        Args:
            environ: 环境变量映射, 默认为 os.environ
            env_var: 存放密钥的环境变量名
        """
        self.environ = os.environ if environ is None else environ
        self.env_var = env_var
        self._key: Optional[bytes] = None
        self._lock = threading.Lock()

    @classmethod
    def from_hex(cls, key_hex: str, name: str = "key") -> "KeyManager":
        """
        基于显式十六进制密钥构造密钥管理器 (用于轮换等场景)

        Args:
            key_hex: 64位十六进制密钥
            name: 用于错误消息的密钥名称

        Returns:
            已初始化的KeyManager
        """
        manager = cls(environ={})
        manager._key = decode_key_hex(key_hex, name)
        return manager

    @property
    def is_initialized(self) -> bool:
        return self._key is not None

    def initialize_key(self) -> bytes:
        """
        从环境变量加载并校验密钥, 重复调用直接返回缓存

        Returns:
            32字节密钥

        Raises:
            ConfigurationError: 密钥缺失或格式错误
        """
        if self._key is not None:
            return self._key

        with self._lock:
            if self._key is None:
                raw = self.environ.get(self.env_var)
                if not raw:
                    logger.critical(
                        f"{self.env_var} environment variable is required for PHI encryption"
                    )
                    raise ConfigurationError(
                        f"{self.env_var} environment variable is required"
                    )
                try:
                    self._key = decode_key_hex(raw, self.env_var)
                except ConfigurationError:
                    logger.critical(f"{self.env_var} is malformed")
                    raise
                logger.info(f"PHI encryption key loaded from {self.env_var}")

        return self._key

    def get_encryption_key(self) -> bytes:
        """获取当前密钥, 首次调用时初始化"""
        if self._key is None:
            return self.initialize_key()
        return self._key

    @property
    def fingerprint(self) -> str:
        return key_fingerprint(self.get_encryption_key())

    def validate_current_key(self) -> bool:
        """
        使用当前密钥执行一次加解密自检

        Returns:
            往返结果一致返回True, 否则返回False
        """
        probe = HEALTH_CONFIG["key_probe"]
        try:
            key = self.get_encryption_key()
            return decrypt_with_key(encrypt_with_key(probe, key), key) == probe
        except PHIEncryptionError as e:
            logger.error(f"Key validation failed: {type(e).__name__}: {e}")
            return False

    def generate_new_key(self) -> str:
        """
        生成新的随机密钥, 供运维预置新密钥使用

        Returns:
            64位十六进制字符串

        Raises:
            ConfigurationError: 生产环境下禁止生成密钥
        """
        if is_production(self.environ):
            raise ConfigurationError(
                "Key generation not allowed in production environment"
            )
        logger.info("Generated new PHI encryption key")
        return secrets.token_hex(ENCRYPTION_CONFIG["key_size"])
