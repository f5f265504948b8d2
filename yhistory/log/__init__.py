"""日志模块

提供简化的日志配置：
- setup_logger / setup_root_logger: 日志配置
- get_logger: 按模块名获取日志器

使用示例:
    from yhistory.log import setup_root_logger, get_logger

    setup_root_logger(level="DEBUG")
    logger = get_logger()
"""

from .logger import (
    LoggingConfigProtocol,
    MicrosecondFormatter,
    DEFAULT_LOG_FORMAT,
    create_formatter,
    setup_logger,
    setup_root_logger,
    get_logger,
)

__all__ = [
    "LoggingConfigProtocol",
    "MicrosecondFormatter",
    "DEFAULT_LOG_FORMAT",
    "create_formatter",
    "setup_logger",
    "setup_root_logger",
    "get_logger",
]
