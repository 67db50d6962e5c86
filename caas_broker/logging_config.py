from __future__ import annotations

import logging
import os
import sys

_DEFAULT_LOG_LEVEL = "INFO"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_RESET = "\x1b[0m"
_LEVEL_COLORS = {
    "DEBUG": "\x1b[36m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
# Request-level chatter from the cluster HTTP client.
_NOISY_LOGGERS = ("httpx", "httpcore")


class _LevelColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = _LEVEL_COLORS.get(levelname)
        if color:
            record.levelname = f"{color}{levelname}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _color_enabled() -> bool:
    if os.getenv("NO_COLOR") or os.getenv("CAAS_LOG_FORMAT", "").lower() == "plain":
        return False
    return sys.stderr.isatty()


def _resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    name = (level or os.getenv("CAAS_LOG_LEVEL", _DEFAULT_LOG_LEVEL)).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_handler(level: int) -> logging.Handler:
    formatter_cls = _LevelColorFormatter if _color_enabled() else logging.Formatter
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter_cls(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def configure_logging(*, level: str | int | None = None, force: bool = False) -> None:
    """Configure root logging for the API server and the CLI.

    Repeated calls only adjust levels unless ``force`` is set.
    """
    resolved_level = _resolve_level(level)
    root = logging.getLogger()
    root.setLevel(resolved_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    if root.handlers and not force:
        for handler in root.handlers:
            handler.setLevel(resolved_level)
        return

    root.handlers.clear()
    root.addHandler(_build_handler(resolved_level))
