"""日志配置"""

import logging

from rich.console import Console
from rich.logging import RichHandler

_CONFIGURED = False


def setup_logging(level: str | int = "INFO", console: Console | None = None) -> logging.Logger:
    """为 storybook_studio 包配置 rich 日志输出

    重复调用只更新日志级别，不会重复添加 handler。

    Args:
        level: 日志级别（字符串或整数）
        console: 输出使用的 rich Console，默认输出到 stderr

    Returns:
        包级别的 logger
    """
    global _CONFIGURED

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger("storybook_studio")
    logger.setLevel(level)

    if not _CONFIGURED:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
        _CONFIGURED = True

    return logger
