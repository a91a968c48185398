"""
主程序 - PHI加密运维命令行入口
"""

import argparse
import getpass
import json
import logging
import os
import signal
import sys
import threading

from sqlalchemy.exc import SQLAlchemyError

from .config import DB_CONNECTION_STRING, HEALTH_CONFIG, ROTATION_CONFIG
from .core.health import HealthStatus
from .core.phi_vault import PHIVault
from .core.rotation import STATUS_COMPLETED, KeyRotation
from .crypto.errors import ConfigurationError, PHIEncryptionError, RotationValidationError
from .crypto.key_manager import KeyManager
from .crypto.phi_encryption import create_search_hash
from .database.operations import DatabaseManager
from .database.registry import ENCRYPTED_ENTITIES
from .utils import install_exception_hook, setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """解析命令行参数"""
    parser = argparse.ArgumentParser(description="PHI字段加密与密钥轮换运维工具")

    # 创建互斥操作组
    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument(
        "--genkey", action="store_true", help="生成新的64位十六进制密钥 (生产环境禁用)"
    )
    operation_group.add_argument("--health", action="store_true", help="执行加密健康检查")
    operation_group.add_argument(
        "--rotate", action="store_true", help="使用 OLD_KEY / NEW_KEY 轮换全部PHI加密"
    )
    operation_group.add_argument(
        "--verify", action="store_true", help="抽样校验当前密钥能否解密已存储的PHI"
    )
    operation_group.add_argument("--history", action="store_true", help="显示密钥轮换历史")
    operation_group.add_argument("--search-hash", type=str, help="计算明文的搜索哈希")

    # 轮换参数组
    rotation_group = parser.add_argument_group("密钥轮换")
    rotation_group.add_argument("--reason", type=str, help="轮换原因 (默认读取 ROTATION_REASON)")
    rotation_group.add_argument(
        "--only",
        nargs="+",
        choices=list(ENCRYPTED_ENTITIES),
        help="只轮换指定实体 (用于中止后继续)",
    )
    rotation_group.add_argument("--rotated-by", type=str, help="执行人")
    rotation_group.add_argument(
        "--confirm-backup", action="store_true", help="确认已完成数据库备份"
    )

    # 其他参数
    misc_group = parser.add_argument_group("其他")
    misc_group.add_argument("--db-url", type=str, help="数据库连接串 (覆盖配置文件)")
    misc_group.add_argument(
        "--sample", type=int, default=HEALTH_CONFIG["verify_sample_size"], help="校验抽样数"
    )
    misc_group.add_argument("--limit", type=int, default=20, help="历史记录条数")

    return parser.parse_args(argv)


def validate_args(args):
    """验证命令行参数的有效性"""
    if args.rotate and not args.confirm_backup:
        logger.error("轮换无法整体回滚, 请先备份数据库并使用 --confirm-backup")
        return False

    if (args.only or args.reason or args.rotated_by) and not args.rotate:
        logger.error("--only / --reason / --rotated-by 仅用于 --rotate")
        return False

    if args.sample <= 0 or args.limit <= 0:
        logger.error("--sample 和 --limit 必须为正数")
        return False

    return True


def _read_rotation_key(env_name):
    """从环境变量读取轮换密钥, 缺失时交互式输入 (不回显)"""
    value = os.environ.get(env_name)
    if value:
        return value
    if not sys.stdin.isatty():
        return None
    return getpass.getpass(f"请输入 {env_name}: ").strip() or None


def handle_key_operations(args):
    """处理不需要加载当前密钥的操作"""
    if args.genkey:
        try:
            print(KeyManager().generate_new_key())
            return True
        except ConfigurationError as e:
            logger.error(f"生成密钥失败: {e}")
            print(f"生成密钥失败: {e}")
            return False

    if args.search_hash is not None:
        search_hash = create_search_hash(args.search_hash)
        if search_hash is None:
            print("输入为空, 无搜索哈希")
            return False
        print(search_hash)
        return True

    return None


def handle_rotation(args):
    """处理密钥轮换"""
    if not args.rotate:
        return None

    old_key = _read_rotation_key(ROTATION_CONFIG["old_key_env"])
    new_key = _read_rotation_key(ROTATION_CONFIG["new_key_env"])
    if not old_key or not new_key:
        print("缺少 OLD_KEY 或 NEW_KEY 环境变量")
        print("用法: OLD_KEY=<旧密钥> NEW_KEY=<新密钥> phivault --rotate --confirm-backup")
        return False

    # Ctrl+C 只在实体类之间生效
    abort_event = threading.Event()

    def request_abort(signum, frame):
        logger.warning("收到中断信号, 将在当前实体类完成后中止轮换")
        abort_event.set()

    previous_handler = signal.signal(signal.SIGINT, request_abort)
    try:
        db_manager = DatabaseManager(args.db_url or DB_CONNECTION_STRING)
        rotation = KeyRotation(
            db_manager, old_key, new_key, reason=args.reason, rotated_by=args.rotated_by
        )
        summary = rotation.run(entities=args.only, should_abort=abort_event.is_set)
    except RotationValidationError as e:
        logger.error(f"轮换前置校验失败: {e}")
        print(f"轮换前置校验失败: {e}")
        return False
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print(json.dumps(summary.as_dict(), indent=2, ensure_ascii=False))
    if summary.aborted:
        print(f"轮换已中止, 使用 --only {' '.join(summary.pending_entities)} 继续")
    elif summary.status == STATUS_COMPLETED:
        print("下一步: 执行 --verify, 更新 PHI_ENCRYPTION_KEY 并重启应用, 然后从所有系统移除旧密钥")
    return summary.status == STATUS_COMPLETED


def handle_vault_operations(args):
    """处理需要当前密钥的操作"""
    if args.health:
        vault = PHIVault(connection_string=args.db_url, validate_on_startup=False)
        report = vault.health_check()
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return report["status"] != HealthStatus.FAIL

    if args.verify:
        vault = PHIVault(connection_string=args.db_url)
        results = vault.verify(args.sample)
        print(json.dumps(results, indent=2, ensure_ascii=False))
        return results["ok"]

    if args.history:
        db_manager = DatabaseManager(args.db_url or DB_CONNECTION_STRING)
        for record in db_manager.get_rotation_history(args.limit):
            print(
                f"{record.rotated_at:%Y-%m-%d %H:%M:%S} {record.rotation_status:<9} "
                f"...{record.old_key_fingerprint} -> ...{record.new_key_fingerprint} "
                f"records={record.records_reencrypted} skipped={record.fields_skipped} "
                f"reason={record.rotation_reason}"
            )
        return True

    return None


def main(argv=None):
    """主函数"""
    setup_logging()
    install_exception_hook()

    args = parse_args(argv)
    if not validate_args(args):
        return 1

    try:
        for handler in (handle_key_operations, handle_rotation, handle_vault_operations):
            result = handler(args)
            if result is not None:
                return 0 if result else 1

        logger.warning("未执行任何操作，但参数解析通过。这可能是一个逻辑错误。")
        print("未执行任何操作。使用 --help 获取使用信息。")
        return 1

    except ConfigurationError as e:
        logger.error(f"配置错误: {e}")
        print(f"配置错误: {e}")
        return 1
    except PHIEncryptionError as e:
        logger.error(f"加密错误: {type(e).__name__}")
        print(f"加密错误: {type(e).__name__}")
        return 1
    except SQLAlchemyError as e:
        logger.exception("数据库错误")
        print(f"数据库错误: {type(e).__name__}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
