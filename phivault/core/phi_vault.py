"""
PHI加密核心模块 - 对外暴露加密、解密、搜索哈希、健康检查和密钥轮换
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import DB_CONNECTION_STRING, HEALTH_CONFIG
from ..crypto.errors import ConfigurationError
from ..crypto.key_manager import KeyManager
from ..crypto.phi_encryption import PHIEncryptionService
from ..database.operations import DatabaseManager
from ..database.registry import decrypt_entity_fields, encrypt_entity_fields, get_entity
from .health import HealthChecker, HealthStatus
from .rotation import KeyRotation, RotationSummary
from .verify import verify_encryption

logger = logging.getLogger(__name__)


class PHIVault:
    """PHI加密系统主类"""

    def __init__(
        self,
        key_manager: Optional[KeyManager] = None,
        db_manager: Optional[DatabaseManager] = None,
        connection_string: Optional[str] = None,
        validate_on_startup: bool = True,
    ):
        """
        初始化PHI加密系统

        Args:
            key_manager: 密钥管理器, 默认从环境变量读取密钥
            db_manager: 数据库管理器, 默认在首次使用时按连接串创建
            connection_string: 数据库连接串, 默认使用配置文件中的值
            validate_on_startup: 是否在启动时执行自检, 失败则拒绝使用
        """
        self.key_manager = key_manager or KeyManager()
        self.service = PHIEncryptionService(self.key_manager)
        self.health_checker = HealthChecker(self.key_manager, self.service)
        self._db_manager = db_manager
        self._connection_string = connection_string or DB_CONNECTION_STRING

        if validate_on_startup:
            self.validate_startup()

    def validate_startup(self) -> Dict:
        """
        启动自检

        Returns:
            健康检查报告

        Raises:
            ConfigurationError: 密钥缺失、格式错误或自检失败
        """
        self.key_manager.initialize_key()
        report = self.health_checker.run()
        if report["status"] == HealthStatus.FAIL:
            logger.critical("PHI encryption system failed validation - refusing to start")
            raise ConfigurationError("PHI encryption self-test failed")
        logger.info("PHI encryption system validated successfully")
        return report

    @property
    def db_manager(self) -> DatabaseManager:
        if self._db_manager is None:
            self._db_manager = DatabaseManager(self._connection_string)
        return self._db_manager

    # ===== 加解密接口 =====

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        return self.service.encrypt(plaintext)

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        return self.service.decrypt(ciphertext)

    def create_search_hash(self, plaintext: Optional[str]) -> Optional[str]:
        return self.service.create_search_hash(plaintext)

    def health_check(self) -> Dict:
        return self.health_checker.run()

    # ===== 实体记录 =====

    def add_entity_record(
        self, entity_name: str, phi: Dict[str, Optional[str]], **columns
    ) -> int:
        """
        加密PHI字段并添加一条实体记录

        Args:
            entity_name: 实体名, 如 "clients"
            phi: 明文字段名 -> 明文
            columns: 其他非加密列

        Returns:
            新记录的ID
        """
        entity = get_entity(entity_name)
        values = encrypt_entity_fields(entity, phi, self.service)
        values.update(columns)
        return self.db_manager.add_record(entity.model, **values)

    def get_entity_record(self, entity_name: str, record_id: int) -> Optional[Dict[str, Optional[str]]]:
        """
        获取并解密一条实体记录的PHI字段

        Returns:
            明文字段名 -> 明文, 记录不存在时返回None
        """
        entity = get_entity(entity_name)
        record = self.db_manager.get_record(entity.model, record_id)
        if record is None:
            return None
        return decrypt_entity_fields(entity, record, self.service)

    def search_entity(self, entity_name: str, field: str, value: str) -> List[Any]:
        """
        通过搜索哈希按明文等值查找记录

        Args:
            entity_name: 实体名
            field: 带搜索哈希的明文字段名, 如 "email"
            value: 要查找的明文

        Returns:
            匹配的记录列表

        Raises:
            KeyError: 该字段没有搜索哈希列
        """
        entity = get_entity(entity_name)
        if field not in entity.search_hashes:
            raise KeyError(f"{entity_name}.{field} has no search hash column")
        return self.db_manager.find_by_search_hash(
            entity.search_hashes[field], self.create_search_hash(value)
        )

    # ===== 运维操作 =====

    def rotate(
        self,
        old_key_hex: str,
        new_key_hex: str,
        reason: Optional[str] = None,
        entities: Optional[Iterable[str]] = None,
        should_abort: Optional[Callable[[], bool]] = None,
        rotated_by: Optional[str] = None,
    ) -> RotationSummary:
        """
        执行密钥轮换, 不替换本进程的当前密钥

        Returns:
            RotationSummary
        """
        rotation = KeyRotation(
            self.db_manager, old_key_hex, new_key_hex, reason=reason, rotated_by=rotated_by
        )
        return rotation.run(entities=entities, should_abort=should_abort)

    def verify(self, sample_size: int = HEALTH_CONFIG["verify_sample_size"]) -> Dict:
        return verify_encryption(self.db_manager, self.service, sample_size)

    def rotation_history(self, limit: Optional[int] = None):
        return self.db_manager.get_rotation_history(limit)
