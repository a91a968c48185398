"""
核心模块初始化文件
"""

from .health import HealthChecker, HealthStatus
from .phi_vault import PHIVault
from .rotation import KeyRotation, RotationSummary
from .verify import verify_encryption

__all__ = [
    "HealthChecker",
    "HealthStatus",
    "PHIVault",
    "KeyRotation",
    "RotationSummary",
    "verify_encryption",
]
