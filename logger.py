"""
Logging utility for the lobby bot.

Console output stays terse; an optional log file receives everything.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s] %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def setup_logger(name: str, log_file: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Setup logger with console and optional file output.

    Args:
        name: Logger name (typically __name__)
        log_file: Optional path to log file
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers (modules are imported once, tests may re-import)
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)

    # Records are handled here; the root logger (discord.py's) must not print them again.
    logger.propagate = False
    return logger


def quiet_library_loggers(level: int = logging.WARNING) -> None:
    """Lower the noisy discord.py loggers."""
    for name in ("discord.gateway", "discord.http", "discord.client", "discord.state"):
        logging.getLogger(name).setLevel(level)
