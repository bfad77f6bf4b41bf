"""Process-wide logging for the gateway entry points."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Mapping, Optional

__all__ = ["setup_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(environ: Optional[Mapping[str, str]] = None, *, console: bool = True) -> logging.Logger:
    """
    Configure the ``tool_gateway`` logger from ``LOG_*`` variables.

    Records go to a rotating file and, unless *console* is false, to stderr.
    Stdout is left alone: it carries the MCP stream and CLI output.
    """
    env = os.environ if environ is None else environ
    level_name = env.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger("tool_gateway")
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = env.get("LOG_FILE", os.path.join("logs", "tool_gateway.log"))
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=int(env.get("LOG_MAX_BYTES", 20 * 1024 * 1024)),
            backupCount=int(env.get("LOG_BACKUP_COUNT", 5)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    # SDK chatter stays at WARNING unless explicitly debugging
    if level > logging.DEBUG:
        for noisy in ("httpx", "httpcore", "openai", "anthropic"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger
