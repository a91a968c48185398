"""
数据库模块初始化文件
"""

from .models import (
    Client,
    ClinicalSession,
    KeyRotationHistory,
    Patient,
    TherapistPHI,
    init_db,
)
from .operations import DatabaseManager
from .registry import (
    ENCRYPTED_ENTITIES,
    EntityFields,
    decrypt_entity_fields,
    encrypt_entity_fields,
    get_entity,
)

__all__ = [
    "DatabaseManager",
    "Client",
    "ClinicalSession",
    "KeyRotationHistory",
    "Patient",
    "TherapistPHI",
    "init_db",
    "ENCRYPTED_ENTITIES",
    "EntityFields",
    "decrypt_entity_fields",
    "encrypt_entity_fields",
    "get_entity",
]
