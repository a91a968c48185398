"""
PHIVault - 诊所管理系统的PHI字段加密与密钥轮换

主要功能:
- AES-256-GCM信封加密, 保护静态存储的敏感字段
- 确定性搜索哈希, 支持对加密字段做等值查找
- 密钥轮换: 使用新密钥重新加密全部PHI字段, 单字段失败不影响整体
- 启动自检与健康检查

主要模块:
- crypto: 信封格式、加解密服务、密钥管理
- database: 数据库模型、加密字段注册表和操作
- core: 系统主类、密钥轮换、健康检查、加密校验
"""

from .core import HealthChecker, KeyRotation, PHIVault, RotationSummary
from .crypto import (
    AuthenticationFailure,
    ConfigurationError,
    InvalidCiphertextFormat,
    KeyManager,
    PHIEncryptionError,
    PHIEncryptionService,
    RotationFieldError,
    RotationValidationError,
    create_search_hash,
)

__version__ = "0.1.0"

__all__ = [
    "PHIVault",
    "HealthChecker",
    "KeyRotation",
    "RotationSummary",
    "KeyManager",
    "PHIEncryptionService",
    "create_search_hash",
    "PHIEncryptionError",
    "ConfigurationError",
    "InvalidCiphertextFormat",
    "AuthenticationFailure",
    "RotationFieldError",
    "RotationValidationError",
]
