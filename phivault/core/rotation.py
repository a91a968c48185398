"""
密钥轮换模块 - 使用新密钥重新加密全部PHI字段

运维操作说明:
    - 一次性批处理, 由运维人员在维护窗口内手动触发, 期间应暂停业务流量
    - 执行前必须备份数据库: 整个运行过程没有全局事务, 无法整体回滚
    - 可安全重复执行: 已使用新密钥加密的字段在旧密钥下解密失败, 会被跳过
    - 单个字段失败只跳过该字段; 每条记录的更新是原子的
    - 可在实体类之间中止, 之后通过只指定剩余实体来继续
"""

import json
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import ROTATION_CONFIG
from ..crypto.errors import (
    ConfigurationError,
    PHIEncryptionError,
    RotationFieldError,
    RotationValidationError,
)
from ..crypto.key_manager import decode_key_hex, key_fingerprint
from ..crypto.phi_encryption import decrypt_with_key, encrypt_with_key, is_blank
from ..database.registry import ENCRYPTED_ENTITIES, EntityFields, get_entity
from ..utils import ProgressTracker

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class RotationSummary:
    """一次轮换运行的汇总结果"""

    def __init__(self, old_fingerprint: str, new_fingerprint: str, reason: str):
        self.old_fingerprint = old_fingerprint
        self.new_fingerprint = new_fingerprint
        self.reason = reason
        self.entity_counts: Dict[str, int] = {}
        self.skipped: List[RotationFieldError] = []
        self.pending_entities: List[str] = []
        self.aborted = False
        self.status = STATUS_FAILED
        self.duration = 0.0
        self.audit_record_id: Optional[int] = None

    @property
    def total_records(self) -> int:
        return sum(self.entity_counts.values())

    @property
    def completed_entities(self) -> List[str]:
        return list(self.entity_counts)

    def as_dict(self) -> Dict:
        return {
            "status": self.status,
            "reason": self.reason,
            "old_key_fingerprint": self.old_fingerprint,
            "new_key_fingerprint": self.new_fingerprint,
            "entity_counts": dict(self.entity_counts),
            "total_records": self.total_records,
            "fields_skipped": len(self.skipped),
            "skipped": [str(error) for error in self.skipped],
            "aborted": self.aborted,
            "pending_entities": list(self.pending_entities),
            "duration": round(self.duration, 3),
            "audit_record_id": self.audit_record_id,
        }


class KeyRotation:
    """PHI密钥轮换流程"""

    def __init__(
        self,
        db_manager,
        old_key_hex: str,
        new_key_hex: str,
        reason: Optional[str] = None,
        rotated_by: Optional[str] = None,
        batch_size: int = ROTATION_CONFIG["batch_size"],
    ):
        """
        初始化轮换流程 (不会访问数据库)

        Args:
            db_manager: DatabaseManager实例
            old_key_hex: 旧密钥 (64位十六进制)
            new_key_hex: 新密钥 (64位十六进制)
            reason: 轮换原因, 如 scheduled / compromised / manual
            rotated_by: 执行人
            batch_size: 每批加载的记录数
        """
        self.db_manager = db_manager
        self.old_key_hex = old_key_hex or ""
        self.new_key_hex = new_key_hex or ""
        self.reason = reason or ROTATION_CONFIG["default_reason"]
        self.rotated_by = rotated_by
        self.batch_size = batch_size
        self._old_key: Optional[bytes] = None
        self._new_key: Optional[bytes] = None

    def validate_keys(self) -> None:
        """
        校验轮换前置条件

        Raises:
            RotationValidationError: 密钥格式错误、新旧密钥相同或自检失败
        """
        try:
            old_key = decode_key_hex(self.old_key_hex, ROTATION_CONFIG["old_key_env"])
            new_key = decode_key_hex(self.new_key_hex, ROTATION_CONFIG["new_key_env"])
        except ConfigurationError as e:
            raise RotationValidationError(str(e)) from None

        if old_key == new_key:
            raise RotationValidationError("OLD_KEY and NEW_KEY must be different")

        probe = ROTATION_CONFIG["self_test_probe"]
        for name, key in (
            (ROTATION_CONFIG["old_key_env"], old_key),
            (ROTATION_CONFIG["new_key_env"], new_key),
        ):
            try:
                ok = decrypt_with_key(encrypt_with_key(probe, key), key) == probe
            except PHIEncryptionError:
                ok = False
            if not ok:
                raise RotationValidationError(f"{name} validation failed")

        self._old_key, self._new_key = old_key, new_key
        logger.info("Both rotation keys validated successfully")

    def _resolve_entities(self, entities: Optional[Iterable[str]]) -> List[EntityFields]:
        if entities is None:
            return list(ENCRYPTED_ENTITIES.values())
        try:
            return [get_entity(name) for name in entities]
        except KeyError as e:
            raise RotationValidationError(str(e.args[0])) from None

    def run(
        self,
        entities: Optional[Iterable[str]] = None,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> RotationSummary:
        """
        执行轮换

        Args:
            entities: 要轮换的实体名, 默认全部 (用于中止后继续)
            should_abort: 在每个实体类开始前调用, 返回True时中止

        Returns:
            RotationSummary

        Raises:
            RotationValidationError: 前置条件不满足, 未修改任何数据
            SQLAlchemyError: 读写记录时数据库出错 (已写入失败的审计记录)
        """
        self.validate_keys()
        selected = self._resolve_entities(entities)

        summary = RotationSummary(
            key_fingerprint(self._old_key),
            key_fingerprint(self._new_key),
            self.reason,
        )
        logger.info(
            f"Starting PHI key rotation (reason: {summary.reason}, "
            f"old key ...{summary.old_fingerprint}, new key ...{summary.new_fingerprint})"
        )

        start_time = time.time()
        try:
            for index, entity in enumerate(selected):
                if should_abort is not None and should_abort():
                    summary.aborted = True
                    summary.pending_entities = [e.name for e in selected[index:]]
                    logger.warning(
                        f"Rotation aborted before {entity.name}; "
                        f"pending: {', '.join(summary.pending_entities)}"
                    )
                    break
                summary.entity_counts[entity.name] = self.rotate_entity(entity, summary)
        except SQLAlchemyError:
            done = set(summary.entity_counts)
            summary.pending_entities = [e.name for e in selected if e.name not in done]
            summary.duration = time.time() - start_time
            logger.error(
                f"Rotation failed; pending entities: {', '.join(summary.pending_entities)}"
            )
            self._log_rotation(summary)
            raise

        summary.status = STATUS_FAILED if summary.aborted else STATUS_COMPLETED
        summary.duration = time.time() - start_time
        self._log_rotation(summary)

        logger.info(
            f"Key rotation {summary.status}: {summary.total_records} records rotated, "
            f"{len(summary.skipped)} fields skipped in {summary.duration:.2f}s"
        )
        return summary

    def rotate_entity(self, entity: EntityFields, summary: RotationSummary) -> int:
        """
        轮换一类实体的全部记录

        Args:
            entity: 实体声明
            summary: 用于收集跳过字段的汇总对象

        Returns:
            至少更新了一个字段的记录数
        """
        model = entity.model
        total = self.db_manager.count_records(model)
        logger.info(f"Rotating {entity.label}: found {total} records")

        tracker = ProgressTracker(total, f"Rotating {entity.label}")
        tracker.start()
        rotated = 0

        for batch in self.db_manager.iter_records(model, self.batch_size):
            for record in batch:
                updates = self._reencrypt_record(entity, record, summary)
                if updates and self.db_manager.update_fields(model, record.id, updates):
                    rotated += 1
                tracker.update()

        tracker.finish()
        logger.info(f"Rotated {rotated} {entity.label} records")
        return rotated

    def _reencrypt_record(self, entity: EntityFields, record, summary: RotationSummary) -> Dict[str, str]:
        updates = {}
        for field in entity.fields:
            value = getattr(record, field.key)
            if is_blank(value):
                continue
            try:
                plaintext = decrypt_with_key(value, self._old_key)
                new_value = encrypt_with_key(plaintext, self._new_key)
                if new_value is None:
                    raise PHIEncryptionError("decrypted value is blank")
            except PHIEncryptionError as e:
                error = RotationFieldError(entity.name, record.id, field.key, f"{type(e).__name__}: {e}")
                logger.warning(f"Skipping {field.key} for {entity.name} record {record.id}: {error.reason}")
                summary.skipped.append(error)
                continue
            updates[field.key] = new_value
        return updates

    def _log_rotation(self, summary: RotationSummary) -> None:
        """写入轮换审计记录, 失败只记录警告"""
        try:
            summary.audit_record_id = self.db_manager.add_rotation_record(
                key_type=ROTATION_CONFIG["key_type"],
                rotated_by=self.rotated_by,
                rotation_reason=summary.reason,
                old_key_fingerprint=summary.old_fingerprint,
                new_key_fingerprint=summary.new_fingerprint,
                records_reencrypted=summary.total_records,
                entity_counts=json.dumps(summary.entity_counts),
                fields_skipped=len(summary.skipped),
                rotation_status=summary.status,
            )
            logger.info("Rotation logged to database")
        except SQLAlchemyError as e:
            logger.warning(f"Failed to log rotation to database: {e}")
