"""
PHI加密健康检查

启动时和健康检查接口调用, 汇总为 pass / warning / fail。
"""

import datetime
import logging
from typing import Dict

from ..config import ENCRYPTION_CONFIG, HEALTH_CONFIG
from ..crypto.errors import PHIEncryptionError

logger = logging.getLogger(__name__)


class HealthStatus:
    """健康状态常量"""

    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


def _result(status: str, message: str, **details) -> Dict:
    result = {"status": status, "message": message}
    if details:
        result["details"] = details
    return result


class HealthChecker:
    """加密模块自检"""

    def __init__(self, key_manager, service):
        self.key_manager = key_manager
        self.service = service

    def check_key(self) -> Dict:
        """当前密钥能否完成加解密往返"""
        try:
            self.key_manager.get_encryption_key()
        except PHIEncryptionError as e:
            return _result(HealthStatus.FAIL, f"Encryption key unavailable: {e}")

        if self.key_manager.validate_current_key():
            return _result(HealthStatus.PASS, "Encryption key validated")
        return _result(HealthStatus.FAIL, "Encryption key failed self-test")

    def check_round_trip(self) -> Dict:
        """加密服务往返测试"""
        probe = HEALTH_CONFIG["round_trip_probe"]
        try:
            encrypted = self.service.encrypt(probe)
            if not encrypted:
                return _result(HealthStatus.FAIL, "Encryption failed - no output")
            if self.service.decrypt(encrypted) != probe:
                return _result(HealthStatus.FAIL, "Decryption failed - data mismatch")
        except PHIEncryptionError as e:
            return _result(HealthStatus.FAIL, f"Encryption error: {type(e).__name__}")

        return _result(
            HealthStatus.PASS,
            "Encryption and decryption working correctly",
            algorithm=ENCRYPTION_CONFIG["algorithm"],
            key_version=ENCRYPTION_CONFIG["current_version"],
        )

    def check_search_hash(self) -> Dict:
        """搜索哈希生成"""
        if self.service.create_search_hash(HEALTH_CONFIG["search_hash_probe"]):
            return _result(HealthStatus.PASS, "Search hash generation working")
        return _result(HealthStatus.WARNING, "Search hash generation failed")

    def run(self) -> Dict:
        """
        执行全部检查

        Returns:
            {"status": 总体状态, "checks": {检查名: 结果}, "checked_at": 时间}
        """
        checks = {
            "key": self.check_key(),
            "round_trip": self.check_round_trip(),
            "search_hash": self.check_search_hash(),
        }

        statuses = {check["status"] for check in checks.values()}
        if HealthStatus.FAIL in statuses:
            status = HealthStatus.FAIL
        elif HealthStatus.WARNING in statuses:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.PASS

        if status != HealthStatus.PASS:
            failed = [name for name, check in checks.items() if check["status"] != HealthStatus.PASS]
            logger.error(f"PHI encryption health check {status}: {', '.join(failed)}")

        return {
            "status": status,
            "checks": checks,
            "checked_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
