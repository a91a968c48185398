"""
项目配置文件 - PHI加密与密钥轮换
"""

import os

# 数据库配置
DB_CONFIG = {
    "host": os.environ.get("PHIVAULT_DB_HOST", "localhost"),
    "port": int(os.environ.get("PHIVAULT_DB_PORT", "5432")),
    "username": os.environ.get("PHIVAULT_DB_USER", "phivault"),
    "password": os.environ.get("PHIVAULT_DB_PASSWORD", ""),
    "database": os.environ.get("PHIVAULT_DB_NAME", "practice"),
}

# 完整连接串优先, 否则由DB_CONFIG拼接
DB_CONNECTION_STRING = os.environ.get(
    "PHIVAULT_DB_URL",
    f"postgresql://{DB_CONFIG['username']}:{DB_CONFIG['password']}@{DB_CONFIG['host']}:{DB_CONFIG['port']}/{DB_CONFIG['database']}",
)

# 加密配置
ENCRYPTION_CONFIG = {
    "algorithm": "AES-256-GCM",
    "key_size": 32,  # AES-256 (32字节)
    "iv_size": 16,  # 信封格式固定使用16字节IV
    "tag_size": 16,  # GCM认证标签大小
    "current_version": "v1",  # 新数据使用的版本标签
    "read_versions": ("v1", "v2"),  # 可读取的版本标签 (v2为兼容读取)
}

# 密钥管理配置
KEY_CONFIG = {
    "env_var": "PHI_ENCRYPTION_KEY",  # 当前密钥所在的环境变量
    "environment_var": "APP_ENV",  # 运行环境标识
    "production_names": ("prod", "production"),
    "fingerprint_length": 8,  # 密钥指纹长度 (十六进制字符)
}

# 密钥轮换配置
ROTATION_CONFIG = {
    "key_type": "PHI_ENCRYPTION_KEY",
    "default_reason": os.environ.get("ROTATION_REASON", "manual"),
    "old_key_env": "OLD_KEY",
    "new_key_env": "NEW_KEY",
    "batch_size": int(os.environ.get("PHIVAULT_BATCH_SIZE", "200")),
    "self_test_probe": "test-encryption-data-123",
}

# 健康检查配置
HEALTH_CONFIG = {
    "key_probe": "test-encryption-validation",
    "round_trip_probe": "test-phi-data-123",
    "search_hash_probe": "health-check@example.com",
    "verify_sample_size": int(os.environ.get("PHIVAULT_VERIFY_SAMPLE", "10")),
}

# 日志配置
LOG_CONFIG = {
    "log_file": os.environ.get("PHIVAULT_LOG_FILE", "phivault.log"),
    "level": os.environ.get("PHIVAULT_LOG_LEVEL", "INFO"),
    "max_size": 10 * 1024 * 1024,  # 最大日志文件大小 (10MB)
    "backup_count": 5,  # 保留的日志文件数量
    "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
