"""
日志模块。

anyvm 的日志写入滚动文件和标准错误输出。标准输出只留给命令结果
（例如 get-downinfo 的 JSON），控制台默认只显示警告和错误，--verbose 时显示全部。
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from platformdirs import user_log_dir

_logger: Optional[logging.Logger] = None

LOGGER_NAME = "anyvm"
LOG_DIR_ENV = "ANYVM_LOG_DIR"
LOG_FILE_NAME = "anyvm.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(module)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5


def get_log_dir() -> Path:
    """返回日志目录：ANYVM_LOG_DIR，否则为平台日志目录。"""
    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override)
    return Path(user_log_dir(LOGGER_NAME, appauthor=False))


def _file_handler(log_dir: Path, level: int, max_bytes: int, backup_count: int) -> Optional[logging.Handler]:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # 只读家目录等情况下退化为仅控制台输出
        print(f"无法创建日志文件，仅输出到控制台: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    return handler


def setup_logger(
    file_level: int = logging.INFO,
    console_level: int = logging.WARNING,
    log_dir: Optional[Path] = None,
    max_bytes: int = MAX_BYTES,
    backup_count: int = BACKUP_COUNT,
) -> logging.Logger:
    """
    初始化 anyvm 日志记录器，重复调用返回同一实例。

    参数:
        file_level: 日志文件的级别
        console_level: 标准错误输出的级别
        log_dir: 日志目录，默认由 get_log_dir() 决定
        max_bytes: 单个日志文件最大字节数
        backup_count: 保留的备份文件数量

    返回:
        配置好的 Logger 实例
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(file_level, console_level))
    logger.handlers.clear()
    logger.propagate = False

    handler = _file_handler(log_dir or get_log_dir(), file_level, max_bytes, backup_count)
    if handler is not None:
        logger.addHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    if _logger is None:
        return setup_logger()
    return _logger


def set_log_level(level: int) -> None:
    """
    把记录器和所有处理器切换到同一级别（--verbose 使用）。

    参数:
        level: 日志级别（如 logging.DEBUG）
    """
    logger = get_logger()
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
