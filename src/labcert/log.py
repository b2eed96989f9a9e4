"""
日志初始化：统一使用 loguru。
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    替换 loguru 默认输出，写到 stderr，可选追加一个滚动文件。
    :param level: 日志级别，如 INFO / DEBUG。
    :param log_file: 日志文件路径，None 表示不写文件。
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if log_file is not None:
        logger.add(
            str(log_file),
            level=level.upper(),
            rotation="5 MB",
            retention=5,
            encoding="utf-8",
        )
