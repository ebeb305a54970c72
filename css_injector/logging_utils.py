"""Logging setup for the injector: one named logger, rotating file output."""
from __future__ import annotations

import logging
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from version import DEV_MODE_ENV_VAR, is_dev_build

LOGGER_NAME = "CSSInjector"
LOG_FILE_NAME = "css_injector.log"
LOG_LEVEL_ENV_VAR = "CSS_INJECTOR_LOG_LEVEL"
LOGS_DIR_ENV_VAR = "CSS_INJECTOR_LOG_DIR"
MAX_LOG_BYTES = 512 * 1024

__all__ = [
    "LOGGER_NAME",
    "LOG_FILE_NAME",
    "build_rotating_file_handler",
    "configure_logging",
    "get_logger",
    "resolve_log_level_hint",
    "resolve_logs_dir",
]


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


class _ReleaseLogLevelFilter(logging.Filter):
    """Promote debug logs to INFO in release builds so diagnostics stay visible."""

    def __init__(self, release_mode: bool) -> None:
        super().__init__()
        self._release_mode = release_mode

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging shim
        if self._release_mode and record.levelno == logging.DEBUG:
            record.levelno = logging.INFO
            record.levelname = "INFO"
        return True


def resolve_logs_dir(root: Path) -> Path:
    """Pick the directory for log files, honouring the env override."""

    override = os.getenv(LOGS_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return root / "logs"


def build_rotating_file_handler(
    logs_dir: Path,
    file_name: str,
    *,
    retention: int,
    max_bytes: int,
    formatter: logging.Formatter,
) -> RotatingFileHandler:
    logs_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        logs_dir / file_name,
        maxBytes=max_bytes,
        backupCount=max(0, retention - 1),
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def resolve_log_level_hint(value: Optional[str] = None) -> Optional[int]:
    """Translate a level name or number (default: env var) into a logging level."""

    raw = value if value is not None else os.getenv(LOG_LEVEL_ENV_VAR)
    if raw is None:
        return None
    token = str(raw).strip()
    if not token:
        return None
    try:
        return int(token)
    except ValueError:
        pass
    level = getattr(logging, token.upper(), None)
    return level if isinstance(level, int) else None


def configure_logging(
    root: Path,
    *,
    retention: int = 5,
    level_hint: Optional[int] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Attach the file handler to the injector logger and pick its level.

    Dev builds (see ``version.is_dev_build``) log at DEBUG and release builds at
    INFO. An explicit level hint wins over both; in release builds any debug
    records it lets through are written as INFO.
    """

    logger = get_logger()
    dev_mode = is_dev_build()
    if level_hint is not None:
        level = level_hint
    else:
        level = logging.DEBUG if dev_mode else logging.INFO
    logger.setLevel(level)
    logger.propagate = propagate

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        try:
            existing.close()
        except Exception:
            pass
    for existing_filter in list(logger.filters):
        logger.removeFilter(existing_filter)
    logger.addFilter(_ReleaseLogLevelFilter(release_mode=not dev_mode))

    formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d UTC - %(levelname)s - %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )
    formatter.converter = time.gmtime
    retention = max(1, int(retention))
    logs_dir = resolve_logs_dir(root)
    try:
        handler: logging.Handler = build_rotating_file_handler(
            logs_dir,
            LOG_FILE_NAME,
            retention=retention,
            max_bytes=MAX_LOG_BYTES,
            formatter=formatter,
        )
    except OSError as exc:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.warning("Failed to initialise file logging in %s: %s", logs_dir, exc)
        return logger

    logger.addHandler(handler)
    logger.debug(
        "Injector logging initialised: path=%s retention=%d max_bytes=%d dev_mode=%s (%s)",
        logs_dir / LOG_FILE_NAME,
        retention,
        MAX_LOG_BYTES,
        dev_mode,
        DEV_MODE_ENV_VAR,
    )
    return logger
