"""
Centralized logging configuration for TopHatBlobCounter.

Logging layout:
- Rotating main log (DEBUG+) with gzip-compressed backups
- Rotating error log (WARNING+) for quick triage of GPU setup failures
- Console handler (INFO+ by default, overridable with LOG_CONSOLE_LEVEL)
- Age-based cleanup of rotated logs on every startup

Per-frame pipeline messages are emitted at DEBUG only so the console stays
readable at display refresh rates.
"""

import gzip
import logging
import logging.handlers
import os
import shutil
import sys
import time
from pathlib import Path

# ============================================================================
# Logging Configuration Constants
# ============================================================================

LOG_DIR: str = os.getenv("LOG_DIR", "data/logs")
LOG_FILE_PREFIX: str = "tophat_counter"

LOG_RETENTION_DAYS: int = 7

LOG_MAX_BYTES: int = 10 * 1024 * 1024   # 10 MB per main log file
LOG_BACKUP_COUNT: int = 5

ERROR_LOG_MAX_BYTES: int = 2 * 1024 * 1024
ERROR_LOG_BACKUP_COUNT: int = 3

_DETAILED_FMT = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
_CONSOLE_FMT = "%(asctime)s | %(levelname)-8s | %(message)s"
_DETAILED_DATEFMT = "%Y-%m-%d %H:%M:%S"
_CONSOLE_DATEFMT = "%H:%M:%S"


def _namer(name: str) -> str:
    """Rotated files get a .gz suffix; _rotator compresses them."""
    return name + ".gz"


def _rotator(source: str, dest: str) -> None:
    """Compress a rotated log file, falling back to a plain rename."""
    try:
        with open(source, "rb") as f_in:
            with gzip.open(dest, "wb") as f_out:
                shutil.copyfileobj(f_in, f_out)  # type: ignore[arg-type]
        os.remove(source)
    except OSError:
        try:
            os.rename(source, dest)
        except OSError:
            pass


def _rotating_handler(
    path: str, max_bytes: int, backups: int, level: int, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.namer = _namer
    handler.rotator = _rotator
    return handler


def _console_level_from_env(default: int) -> int:
    name = os.getenv("LOG_CONSOLE_LEVEL")
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


# ============================================================================
# Setup
# ============================================================================

def setup_logging(
    log_dir: str = LOG_DIR,
    log_max_bytes: int = LOG_MAX_BYTES,
    log_backup_count: int = LOG_BACKUP_COUNT,
    error_log_max_bytes: int = ERROR_LOG_MAX_BYTES,
    error_log_backup_count: int = ERROR_LOG_BACKUP_COUNT,
    retention_days: int = LOG_RETENTION_DAYS,
    console_level: int = logging.INFO,
) -> logging.Logger:
    """
    Create the application logger.

    Args:
        log_dir: Directory for log files (created if missing).
        log_max_bytes: Max bytes per main log file before rotation.
        log_backup_count: Number of rotated main-log backups to keep.
        error_log_max_bytes: Max bytes per error log file before rotation.
        error_log_backup_count: Number of rotated error-log backups to keep.
        retention_days: Days to keep rotated log files.
        console_level: Minimum level for console output.

    Returns:
        The configured ``TopHatBlobCounter`` logger.
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    _cleanup_old_logs(log_dir, retention_days=retention_days)

    app_logger = logging.getLogger("TopHatBlobCounter")
    app_logger.setLevel(logging.DEBUG)

    # Re-import must not stack handlers
    if app_logger.handlers:
        return app_logger

    detailed_formatter = logging.Formatter(_DETAILED_FMT, datefmt=_DETAILED_DATEFMT)
    console_formatter = logging.Formatter(_CONSOLE_FMT, datefmt=_CONSOLE_DATEFMT)

    main_log_path = os.path.join(log_dir, f"{LOG_FILE_PREFIX}.log")
    app_logger.addHandler(
        _rotating_handler(main_log_path, log_max_bytes, log_backup_count, logging.DEBUG, detailed_formatter)
    )

    error_log_path = os.path.join(log_dir, f"{LOG_FILE_PREFIX}_error.log")
    app_logger.addHandler(
        _rotating_handler(
            error_log_path, error_log_max_bytes, error_log_backup_count, logging.WARNING, detailed_formatter
        )
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_console_level_from_env(console_level))
    console_handler.setFormatter(console_formatter)
    app_logger.addHandler(console_handler)

    app_logger.info(
        "[Logging] Initialised: main=%s (max %s MB x %d backups), error=%s, retention=%d days",
        main_log_path,
        round(log_max_bytes / (1024 * 1024), 1),
        log_backup_count,
        error_log_path,
        retention_days,
    )

    return app_logger


def _cleanup_old_logs(log_dir: str, retention_days: int = LOG_RETENTION_DAYS) -> None:
    """
    Delete rotated log files older than *retention_days*.

    Runs before the logger exists, so it reports through ``print()``.
    """
    cutoff = time.time() - (retention_days * 86400)
    deleted = 0
    patterns = [
        f"{LOG_FILE_PREFIX}*.log.*",
        f"{LOG_FILE_PREFIX}*.gz",
    ]
    log_path = Path(log_dir)
    for pattern in patterns:
        for log_file in log_path.glob(pattern):
            try:
                if log_file.stat().st_mtime < cutoff:
                    log_file.unlink()
                    deleted += 1
            except OSError:
                pass  # removed concurrently

    if deleted > 0:
        print(f"[LogRetention] Deleted {deleted} log file(s) older than {retention_days} days")


# ============================================================================
# Global logger instance
# ============================================================================

logger = setup_logging()


def reconfigure_console_level(level: int = logging.INFO) -> None:
    """
    Change the console handler level at runtime, e.g. to watch per-frame
    DEBUG output while tuning the structuring element.
    """
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(
            handler, logging.FileHandler
        ):
            handler.setLevel(level)
            logger.info("[Logging] Console level changed to %s", logging.getLevelName(level))
            break
