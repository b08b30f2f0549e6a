"""Logging for ``autoledger``: one handler on the package logger, set by the host.

Library modules only ever do::

    _logger = get_logger("autoledger.<module>")

and never attach handlers themselves. The process entrypoint (the CLI root
callback, or whatever service embeds the pipeline) calls
:func:`configure_logging` once at startup. Until then the package logger
carries a ``NullHandler`` so embedding applications see nothing unless they
opt in.

Pipeline work runs on a thread pool, so the default format includes the
thread name.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "autoledger"
_HANDLER_NAME = "autoledger-stream"
_LEVEL_ENV = "AUTOLEDGER_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(threadName)s %(name)s %(levelname)s %(message)s"


def _level_from_name(name: str) -> int | None:
    name = name.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelNamesMapping().get(name)
    return numeric if isinstance(numeric, int) else None


def resolve_level(level: int | str | None = None) -> int:
    """Explicit ``level`` first, then ``AUTOLEDGER_LOG_LEVEL``, then INFO.

    Unrecognized names fall through to the next source.
    """

    if isinstance(level, int):
        return level
    for candidate in (level, os.getenv(_LEVEL_ENV)):
        if candidate:
            parsed = _level_from_name(candidate)
            if parsed is not None:
                return parsed
    return logging.INFO


def _installed_handler(logger: logging.Logger) -> logging.Handler | None:
    for h in logger.handlers:
        if h.get_name() == _HANDLER_NAME:
            return h
    return None


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Attach the package handler, or adjust its level if already attached.

    Repeated calls never stack handlers. A later call with an explicit
    ``level`` (e.g. ``--log-level`` on the command line) wins over the level
    chosen earlier; ``fmt`` and ``stream`` only apply to the first call.
    """

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    resolved = resolve_level(level)

    handler = _installed_handler(logger)
    if handler is None:
        for h in list(logger.handlers):
            if isinstance(h, logging.NullHandler):
                logger.removeHandler(h)
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        logger.addHandler(handler)
        # Records stop here; the root logger belongs to the host.
        logger.propagate = False
    elif level is None:
        return logger

    handler.setLevel(resolved)
    logger.setLevel(resolved)
    return logger


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["DEFAULT_FORMAT", "configure_logging", "get_logger", "resolve_level"]
