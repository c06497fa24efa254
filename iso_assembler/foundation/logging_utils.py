"""Operational logging setup."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_operational_logger(
    build_id: str,
    *,
    log_dir: str | None = None,
    level: int = logging.INFO,
) -> tuple[logging.Logger, str | None]:
    """
    Configure a per-build logger.

    Logs go to stderr at ``level`` and, when ``log_dir`` is given, to a UTF-8
    file at DEBUG. Returns ``(logger, log_file_or_None)``.
    """

    logger_name = f"iso_assembler.{build_id}"
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_file: str | None = None
    if log_dir:
        log_file = os.path.join(log_dir, f"{build_id}_oplog.log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError:
            close_logger(logger)
            raise
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    logger.info("Operational logging initialized for build %s", build_id)
    if log_file:
        logger.debug("Operational log file: %s", log_file)

    return logger, log_file


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
