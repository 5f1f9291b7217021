"""Centralized logging configuration for prs1core."""

import logging
import logging.config
import os
import sys

from pathlib import Path
from typing import Any

from prs1core.constants import (
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_MAX_BYTES,
)

PACKAGE_LOGGER = "prs1core"

_VALID_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

_logging_configured = False


def get_log_dir() -> Path:
    """
    Get log directory path, creating if needed.

    Returns:
        Path to log directory
    """
    log_dir = DEFAULT_LOG_DIR
    os.makedirs(log_dir, mode=0o700, exist_ok=True)
    return log_dir


def get_log_path() -> Path:
    """Path to the active rotating log file."""
    return get_log_dir() / DEFAULT_LOG_FILE


def _get_user_logging_config() -> dict[str, Any]:
    """
    Load the ``[logging]`` section from the config file.

    Returns:
        Dictionary with logging settings, or empty dict if not configured
    """
    from prs1core.config import load_config

    section = load_config().get("logging", {})
    return section if isinstance(section, dict) else {}


def _normalize_level(value: Any, default: str) -> str:
    level = str(value).upper() if value is not None else default
    return level if level in _VALID_LEVELS else default


def _build_logging_config(
    verbose: bool = False,
    console_format: str | None = None,
    log_file: Path | None = None,
) -> dict[str, Any]:
    """
    Build the dictConfig configuration dictionary.

    Args:
        verbose: If True, set console to DEBUG level
        console_format: Override console format string
        log_file: Override the rotating log file location

    Returns:
        Dictionary suitable for logging.config.dictConfig()
    """
    user_config = _get_user_logging_config()
    file_enabled = bool(user_config.get("enabled", True))
    file_level = _normalize_level(user_config.get("level"), "DEBUG")
    max_size_mb = user_config.get("max_size_mb")
    max_bytes = (
        int(max_size_mb) * 1024 * 1024
        if max_size_mb is not None
        else DEFAULT_LOG_MAX_BYTES
    )
    backup_count = int(user_config.get("backup_count", DEFAULT_LOG_BACKUP_COUNT))

    file_fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    console_fmt = console_format or "%(levelname)s: %(message)s"

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": console_fmt},
            "file": {"format": file_fmt},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG" if verbose else "WARNING",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            PACKAGE_LOGGER: {
                "level": "DEBUG",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }

    if file_enabled:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": file_level,
            "formatter": "file",
            "filename": str(log_file or get_log_path()),
            "maxBytes": max_bytes,
            "backupCount": backup_count,
            "encoding": "utf-8",
        }
        config["loggers"][PACKAGE_LOGGER]["handlers"].append("file")

    return config


def setup_logging(
    *,
    verbose: bool = False,
    console_format: str | None = None,
    log_file: Path | None = None,
) -> None:
    """
    Configure logging for the prs1core command line.

    Library callers normally leave logging to their host application; the
    package logger only carries a NullHandler until this is called.

    Args:
        verbose: If True, set console to DEBUG level
        console_format: Override console format string
        log_file: Override the rotating log file location
    """
    global _logging_configured

    if _logging_configured:
        return

    try:
        config = _build_logging_config(
            verbose=verbose, console_format=console_format, log_file=log_file
        )
        logging.config.dictConfig(config)
    except (OSError, ValueError) as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format=console_format or "%(levelname)s: %(message)s",
        )

    _logging_configured = True


def reset_logging() -> None:
    """Allow setup_logging() to run again (used by the CLI tests)."""
    global _logging_configured
    _logging_configured = False
