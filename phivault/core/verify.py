"""
加密校验 - 抽样检查各实体的加密字段能否用当前密钥解密

用于轮换完成并切换密钥之后。结果只包含计数和字段位置, 不包含解密值。
"""

import logging
from typing import Dict, Iterable, Optional

from ..config import HEALTH_CONFIG
from ..crypto.errors import PHIEncryptionError
from ..crypto.phi_encryption import is_blank
from ..database.registry import ENCRYPTED_ENTITIES, get_entity

logger = logging.getLogger(__name__)


def verify_entity(db_manager, service, entity, sample_size: int) -> Dict:
    """
    校验一类实体的抽样记录

    Args:
        db_manager: DatabaseManager实例
        service: PHIEncryptionService实例
        entity: 实体声明
        sample_size: 抽样记录数

    Returns:
        该实体的校验结果
    """
    records = db_manager.sample_records(entity.model, sample_size)
    result = {
        "total_records": db_manager.count_records(entity.model),
        "sample_size": len(records),
        "successful_decryptions": 0,
        "failed_decryptions": 0,
        "errors": [],
    }

    for record in records:
        for field in entity.fields:
            value = getattr(record, field.key)
            if is_blank(value):
                continue
            try:
                service.decrypt(value)
                result["successful_decryptions"] += 1
            except PHIEncryptionError as e:
                result["failed_decryptions"] += 1
                result["errors"].append(f"{field.key} in record {record.id}: {type(e).__name__}")

    if result["failed_decryptions"]:
        logger.error(f"{entity.label}: {result['failed_decryptions']} decryption failures")
    else:
        logger.info(f"{entity.label}: all {result['successful_decryptions']} fields decrypted successfully")
    return result


def verify_encryption(
    db_manager,
    service,
    sample_size: int = HEALTH_CONFIG["verify_sample_size"],
    entities: Optional[Iterable[str]] = None,
) -> Dict:
    """
    校验全部 (或指定) 实体

    Returns:
        {"ok": 是否全部成功, "entities": {实体名: 结果}}
    """
    selected = (
        list(ENCRYPTED_ENTITIES.values())
        if entities is None
        else [get_entity(name) for name in entities]
    )
    results = {
        entity.name: verify_entity(db_manager, service, entity, sample_size)
        for entity in selected
    }
    return {
        "ok": all(r["failed_decryptions"] == 0 for r in results.values()),
        "entities": results,
    }
