"""
工具函数模块
"""

import logging
import logging.handlers
import sys
import time
from functools import wraps
from typing import Callable, Optional, Tuple

from .config import LOG_CONFIG

# 配置日志
logger = logging.getLogger(__name__)


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None) -> None:
    """
    配置日志系统: 滚动文件日志 + 标准输出

    Args:
        log_file: 日志文件路径, 默认使用LOG_CONFIG
        level: 日志级别名称, 默认使用LOG_CONFIG
    """
    log_file = log_file or LOG_CONFIG["log_file"]
    level = (level or LOG_CONFIG["level"]).upper()

    handlers = [
        logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_CONFIG["max_size"],
            backupCount=LOG_CONFIG["backup_count"],
            encoding="utf-8",
        ),
        logging.StreamHandler(sys.stdout),
    ]
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_CONFIG["log_format"],
        handlers=handlers,
        force=True,
    )


def timing_decorator(func: Callable) -> Callable:
    """
    计时装饰器，用于测量函数执行时间

    Args:
        func: 要计时的函数

    Returns:
        包装后的函数
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        result = func(*args, **kwargs)
        elapsed = time.time() - start_time
        logger.info(f"{func.__name__} completed in {elapsed:.3f} seconds")
        return result

    return wrapper


class ProgressTracker:
    """批处理进度日志, 按时间间隔输出已处理记录数"""

    def __init__(self, total: int, description: str = "Processing", log_interval: float = 0.5):
        """
        Args:
            total: 预计处理的记录数
            description: 日志中的操作描述
            log_interval: 两次进度日志之间的最短间隔 (秒)
        """
        self.total = total
        self.description = description
        self.log_interval = log_interval
        self.current = 0
        self.start_time: Optional[float] = None
        self._last_logged = 0.0

    def start(self) -> None:
        self.start_time = self._last_logged = time.time()
        logger.info(f"Started {self.description}: 0/{self.total}")

    def update(self, increment: int = 1) -> None:
        """记录已处理的记录数, 未调用start时自动开始"""
        if self.start_time is None:
            self.start()

        self.current += increment
        now = time.time()
        if now - self._last_logged < self.log_interval:
            return

        percent = self.current * 100 / self.total if self.total else 100.0
        logger.info(
            f"{self.description}: {self.current}/{self.total} ({percent:.1f}%), "
            f"{now - self.start_time:.1f}s elapsed"
        )
        self._last_logged = now

    def finish(self) -> Tuple[float, float]:
        """
        结束跟踪

        Returns:
            元组 (总耗时, 每秒处理记录数); 未开始时返回 (0, 0)
        """
        if self.start_time is None:
            return 0, 0

        elapsed = time.time() - self.start_time
        rate = self.current / elapsed if elapsed > 0 else 0
        logger.info(
            f"Completed {self.description}: {self.current}/{self.total} records "
            f"in {elapsed:.2f}s ({rate:.2f} records/s)"
        )
        return elapsed, rate


def exception_handler(exc_type, exc_value, exc_traceback):
    """处理未捕获的异常"""
    if issubclass(exc_type, KeyboardInterrupt):
        # 正常处理Ctrl+C
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


def install_exception_hook() -> None:
    """设置系统异常钩子，确保未捕获的异常被记录"""
    sys.excepthook = exception_handler
