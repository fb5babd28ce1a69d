import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FILE_MAX_BYTES_DEFAULT = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT_DEFAULT = 5

# --debug values accepted on the command line
DEBUG_LEVELS = {
    "NONE": logging.CRITICAL + 10,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "DEBUG": logging.DEBUG,
}

FILE_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s.%(funcName)s:%(lineno)d] - %(message)s"


def parse_debug_level(value: str) -> int:
    """Map a --debug value (ERROR, WARN, DEBUG or NONE) to a logging level; unknown values mean ERROR."""
    return DEBUG_LEVELS.get((value or "").upper(), logging.ERROR)


class RuntimeFormatter(logging.Formatter):
    """Console format: seconds since startup, origin, level label, message.

    ``12s sync_orchestrator [88] > [WARN] SIGINT or SIGTERM signal received``
    """

    LABELS = {logging.WARNING: "WARN", logging.CRITICAL: "ERROR"}

    def __init__(self, started: Optional[float] = None):
        super().__init__()
        self.started = time.monotonic() if started is None else started

    def format(self, record: logging.LogRecord) -> str:
        runtime = int(time.monotonic() - self.started)
        label = self.LABELS.get(record.levelno, record.levelname)
        line = f"{runtime}s {record.module} [{record.lineno}] > [{label}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    logger_name: str,
    log_level: int = logging.ERROR,
    log_dir: Optional[Path] = None,
    log_file_max_bytes: int = LOG_FILE_MAX_BYTES_DEFAULT,
    log_file_backup_count: int = LOG_FILE_BACKUP_COUNT_DEFAULT,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure the process logger for a sync run.

    Console output goes to stdout in the runtime format; a rotating file in
    ``log_dir`` (when given) gets full timestamps. Calling again for the
    same logger only changes its level.

    Args:
        logger_name: Logger to configure.
        log_level: Minimum level, usually from parse_debug_level().
        log_dir: Directory for ``<logger_name>.log``. None disables file logging.
        log_file_max_bytes: Maximum size of a log file before rotation.
        log_file_backup_count: Number of rotated files to keep.
        console_output: Whether to log to stdout.

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)

    if logger.handlers:
        return logger

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(RuntimeFormatter())
        logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_stem = "".join(c if c.isalnum() or c in "_-" else "_" for c in logger_name)

        file_handler = RotatingFileHandler(
            log_dir / f"{file_stem}.log",
            maxBytes=log_file_max_bytes,
            backupCount=log_file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger
