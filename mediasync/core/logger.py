"""
Logging configuration for mediasync.

Outputs:
    - Console: colored level names, written through tqdm so messages never
      tear an active progress bar
    - <data_dir>/logs/<file>: complete rotating log (DEBUG and above)
    - <data_dir>/logs/sync_failures.log: one entry per item whose transfer
      failed, for the user to inspect after a sync

Usage:
    from mediasync.core.logger import setup_logging, get_logger

    setup_logging(config.logging, config.storage.data_directory)
    logger = get_logger(__name__)

    logger.info("Connected to server")
    log_transfer_failure(logger, server_name, item_name, job_item_id, "timeout")
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TextIO

import colorama
from colorama import Back, Fore, Style
from tqdm import tqdm

from mediasync.core.config import LoggingConfig


colorama.init()

SYNC_FAILURES_FILENAME = "sync_failures.log"

FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"

# Libraries that log every request at INFO/DEBUG
_NOISY_LOGGERS = ("urllib3", "requests", "charset_normalizer")


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colours the level name for console output.

    Colors:
        - DEBUG: Cyan
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bright red on white
    """

    LEVEL_COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Back.WHITE + Style.BRIGHT,
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__(CONSOLE_LOG_FORMAT)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        color = self.LEVEL_COLORS.get(record.levelno, Fore.WHITE)
        message = f"{color}{record.levelname}{Style.RESET_ALL}: {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


class TqdmLoggingHandler(logging.Handler):
    """
    Console handler that writes through tqdm.write().

    tqdm redraws its bar in place with carriage returns; writing through
    tqdm.write() keeps log lines above any active bar.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class SyncFailureHandler(logging.Handler):
    """
    Handler that records failed item transfers in a human-readable report.

    Only records carrying a 'sync_failed_item' extra field are written:

        [Home Server] Episode 3 (job item 1234)
            timeout while downloading media

    Attributes:
        report_path: Path to sync_failures.log.
        report_file: Open file handle, set by open().
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file in append mode."""
        self.report_file = open(self.report_path, "a", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "sync_failed_item"):
            return

        if self.report_file is None:
            return

        try:
            server = getattr(record, "sync_failed_server", "Unknown")
            item = getattr(record, "sync_failed_item", "Unknown")
            job_item_id = getattr(record, "sync_failed_job_item_id", "")
            reason = getattr(record, "sync_failed_reason", "")

            self.report_file.write(f"[{server}] {item} (job item {job_item_id})\n")
            self.report_file.write(f"    {reason}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


def setup_logging(config: LoggingConfig, data_dir: Path | None = None) -> None:
    """
    Configure the logging system for the application.

    Call ONCE at startup, after the configuration is loaded.

    Args:
        config: Logging section of the loaded configuration.
        data_dir: Root data directory. Log files go to data_dir/logs.
                  When None, only console logging is configured.

    Behavior:
        1. Reset root logger handlers, set root level to DEBUG
        2. Console handler (TqdmLoggingHandler) at config.level
        3. Rotating file handler at DEBUG when config.file is set
        4. Sync failure report handler
        5. Quiet noisy HTTP libraries to WARNING
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    if config.console_output:
        console_handler = TqdmLoggingHandler()
        console_handler.setLevel(getattr(logging, config.level, logging.INFO))
        console_handler.setFormatter(ColoredConsoleFormatter(use_colors=config.colored_output))
        root_logger.addHandler(console_handler)

    if data_dir is not None:
        logs_dir = data_dir / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)

        if config.file:
            file_handler = logging.handlers.RotatingFileHandler(
                logs_dir / config.file,
                maxBytes=config.max_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
            root_logger.addHandler(file_handler)

        failure_handler = SyncFailureHandler(logs_dir / SYNC_FAILURES_FILENAME)
        failure_handler.open()
        root_logger.addHandler(failure_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
    """
    return logging.getLogger(name)


def log_transfer_failure(
    logger: logging.Logger,
    server_name: str,
    item_name: str,
    job_item_id: str,
    reason: str
) -> None:
    """
    Log an item whose media could not be transferred.

    Attaches the extra fields SyncFailureHandler writes to sync_failures.log.
    """
    logger.error(
        f"Transfer failed: {item_name} - {reason}",
        extra={
            "sync_failed_server": server_name,
            "sync_failed_item": item_name,
            "sync_failed_job_item_id": job_item_id,
            "sync_failed_reason": reason,
        }
    )


def shutdown_logging() -> None:
    """Flush, close and detach every root handler."""
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
