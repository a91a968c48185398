"""
加密模块异常定义

异常消息中不得包含密钥材料或明文。
"""


class PHIEncryptionError(Exception):
    """PHI加密相关错误的基类"""


class ConfigurationError(PHIEncryptionError):
    """密钥缺失或格式错误, 属于致命配置错误"""


class InvalidCiphertextFormat(PHIEncryptionError, ValueError):
    """密文信封不符合 version:iv:tag:ciphertext 格式或版本未知"""


class AuthenticationFailure(PHIEncryptionError):
    """信封格式正确但完整性校验失败 (密钥错误或数据被篡改)"""


class RotationError(PHIEncryptionError):
    """密钥轮换错误的基类"""


class RotationValidationError(RotationError):
    """轮换前置条件不满足, 在修改任何数据之前中止"""


class RotationFieldError(RotationError):
    """
    单条记录的单个字段在轮换中解密失败

    仅用于记录和汇总, 不会中止轮换。
    """

    def __init__(self, entity: str, record_id, field: str, reason: str):
        self.entity = entity
        self.record_id = record_id
        self.field = field
        self.reason = reason
        super().__init__(f"{entity}#{record_id}.{field}: {reason}")
