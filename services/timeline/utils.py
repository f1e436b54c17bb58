"""
Logging and error handling utilities for the repository timeline service.

Provides:
- Structured logging with rotation
- Custom exception classes shared by the edge service and the viewer
- Performance timing context manager
- Repository key helpers
"""

from __future__ import annotations

import re
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from loguru import logger


# =============================================================================
# Logging Setup
# =============================================================================

# Custom format for pretty console output
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{module}</magenta>:<cyan>{function}</cyan> | "
    "<level>{message}</level>"
)

# Detailed format for file logs
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)

# Simple format for verbose mode
VERBOSE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = "./logs/timeline.log",
    max_size_mb: int = 50,
    backup_count: int = 5,
    verbose: bool = False,
) -> None:
    """
    Configure logging for the timeline service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. None disables the file sink.
        max_size_mb: Maximum log file size before rotation.
        backup_count: Number of backup log files to keep.
        verbose: If True, use simplified verbose format.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=VERBOSE_FORMAT if verbose else CONSOLE_FORMAT,
        level=level,
        colorize=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            format=FILE_FORMAT,
            level="DEBUG",  # Always log everything to file
            rotation=f"{max_size_mb} MB",
            retention=backup_count,
            compression="zip",
            enqueue=True,  # Thread-safe
        )

    logger.info(f"Logging configured: level={level}, file={log_file}")


# =============================================================================
# Custom Exceptions
# =============================================================================

class TimelineError(Exception):
    """Base exception for timeline errors."""
    kind = "internal_error"


class NotFoundOrPrivate(TimelineError):
    """Repository is missing, or private and not visible to the token."""
    kind = "not_found"


class RateLimited(TimelineError):
    """Upstream quota exhausted."""
    kind = "rate_limited"

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded",
        remaining: Optional[int] = None,
        limit: Optional[int] = None,
        reset: Optional[int] = None,
    ):
        super().__init__(message)
        self.remaining = remaining
        self.limit = limit
        self.reset = reset


class UpstreamError(TimelineError):
    """Any other non-success upstream response, or a transport failure."""
    kind = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageUnavailable(TimelineError):
    """Persistent store could not be read or written."""
    kind = "storage_unavailable"


class MalformedResponse(TimelineError):
    """An error response whose body could not be parsed."""
    kind = "malformed_response"

    def __init__(self, message: str = "Unknown error"):
        super().__init__(message)


class InvalidRequest(TimelineError):
    """Request parameters the edge service rejected."""
    kind = "invalid_request"


class ConfigError(TimelineError):
    """Error with configuration."""
    kind = "config_error"


# =============================================================================
# Performance Timing
# =============================================================================

@contextmanager
def timed_operation(operation_name: str, log_level: str = "info"):
    """
    Context manager for timing operations.

    Example:
        with timed_operation("Sync owner/repo"):
            engine.sync_repo("owner", "repo")
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start_time
        log_func = getattr(logger, log_level)
        log_func(f"{operation_name} completed in {elapsed:.3f}s")


# =============================================================================
# Repository Keys
# =============================================================================

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def make_repo_key(owner: str, repo: str) -> str:
    """
    Build the canonical "owner/repo" key.

    Raises:
        ValueError: If either part is empty or contains illegal characters.
    """
    owner = owner.strip()
    repo = repo.strip()
    if not _NAME_PATTERN.match(owner) or not _NAME_PATTERN.match(repo):
        raise ValueError(f"Invalid repository name: {owner}/{repo}")
    return f"{owner}/{repo}".lower()


def split_repo_key(repo_key: str) -> tuple[str, str]:
    """Split "owner/repo" into its parts, validating both."""
    parts = repo_key.strip().strip("/").split("/")
    if len(parts) != 2:
        raise ValueError(f"Invalid repository key: {repo_key}")
    owner, repo = parts
    make_repo_key(owner, repo)
    return owner, repo
