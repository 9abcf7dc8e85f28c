"""
# Logging Manager

Central place where every module gets its logger.

`get_logger(prefix="[DATABASE]")` returns a `logging.LoggerAdapter` that
prepends the prefix to every message, so log lines from one subsystem can be
grepped together. Handlers are attached once, to the package root logger:

- a console handler (stderr)
- a rotating file handler writing `<LOG_DIR>/server.log`

`configure_logging(level, log_dir)` is called by `create_app`; modules may call
`get_logger` at import time before that happens.
"""

import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Any, MutableMapping, Optional, Tuple

ROOT_LOGGER_NAME = "community_microhelp"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_FILE_NAME = "server.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_configured = False


class PrefixAdapter(logging.LoggerAdapter):
    """Logger adapter that prefixes every message with a subsystem tag."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            msg = f"{self.prefix} {msg}"
        return msg, kwargs


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """
    Attach console and file handlers to the package root logger.

    Safe to call more than once; later calls only adjust the level.

    Args:
        level: Log level name, e.g. "DEBUG" or "INFO".
        log_dir: Directory for `server.log`. File logging is skipped when `None`
            or when the directory cannot be created.

    Returns:
        logging.Logger: The configured package root logger.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if _configured:
        return root

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, LOG_FILE_NAME),
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as e:
            root.warning("File logging disabled, cannot use %s: %s", log_dir, e)

    root.propagate = False
    _configured = True
    return root


def get_logger(name: Optional[str] = None, prefix: str = "") -> PrefixAdapter:
    """
    Return a prefixed logger under the package root.

    Args:
        name: Child logger name. Defaults to the package root.
        prefix: Tag prepended to every message, e.g. "[Auth Routes]".
    """
    logger_name = f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME
    return PrefixAdapter(logging.getLogger(logger_name), prefix)
