"""Logging setup for the Cursor API service: one rotating app logger, colored when asked."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog

from config import log_color_enabled

LOGGER_NAME = "cursor_api"
DEFAULT_LOG_PATH = "/var/log/cursor-api/cursor-api.log"

LOG_MAX_BYTES = 1_048_576  # 1 MB
LOG_BACKUP_COUNT = 3

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
COLOR_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

# Per-request chatter from the HTTP stack drowns the upstream attempt log.
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_path: str | None = None, level_name: str | None = None) -> logging.Logger:
    """
    Configure the "cursor_api" logger.

    The file handler rotates at 1 MB and keeps 3 backups; if the file cannot be
    opened, records go to stderr instead. LOG_LEVEL=DISABLE turns logging off.
    """
    if level_name is None:
        level_name = os.getenv("LOG_LEVEL", "INFO")
    level_name = level_name.upper().strip()

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    path = log_path or DEFAULT_LOG_PATH
    handler, open_err = _open_handler(path)
    handler.setFormatter(_formatter())
    logger.addHandler(handler)

    if open_err is not None:
        logger.warning("Cannot write log file %r (%s), logging to stderr", path, open_err)
    return logger


def _open_handler(path: str) -> tuple[logging.Handler, OSError | None]:
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        return logging.StreamHandler(), e
    return handler, None


def _formatter() -> logging.Formatter:
    if not log_color_enabled():
        return logging.Formatter(PLAIN_FORMAT)
    return colorlog.ColoredFormatter(COLOR_FORMAT, reset=True, log_colors=LOG_COLORS, style="%")


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"


def preview(text: str, limit: int = 50) -> str:
    """Shorten a token or body for a log line."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... ({len(text)} chars)"
