"""
Utility functions for chainorch.

Includes logging setup and the retry/backoff executor every remote
state-mutating call goes through.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, TypeVar

from rich.console import Console
from rich.logging import RichHandler

from chainorch.errors import PermanentError, RetryExhausted


# Global console for pretty output
console = Console()

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 5.0


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "structured",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for an orchestration run.

    Args:
        log_file: Path to log file; None disables file logging
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    root = logging.getLogger("chainorch")
    root.setLevel(getattr(logging, log_level.upper()))
    root.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        root.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(levelname)s: %(message)s")
            )
        root.addHandler(console_handler)

    return root


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "step"):
            log_data["step"] = record.step
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    description: Optional[str] = None,
) -> T:
    """
    Run an operation with bounded retries and linear backoff.

    After the n-th failed attempt the executor sleeps n * base_delay before
    trying again; there is no sleep after the final attempt. The operation
    may run more than once, so it must be safe to repeat.

    PermanentError raised by the operation is propagated immediately.

    Args:
        operation: Zero-argument callable to run
        max_attempts: Maximum number of attempts (>= 1)
        base_delay: Backoff unit in seconds
        sleep: Sleep function (injected by tests)
        description: Label used in log messages and the final error

    Returns:
        Result of the first successful attempt

    Raises:
        RetryExhausted: If every attempt failed; wraps the last error
        PermanentError: Unchanged, on first occurrence
        ValueError: If max_attempts < 1
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    what = description or getattr(operation, "__name__", "operation")
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except PermanentError:
            raise
        except Exception as e:
            last_error = e
            if attempt == max_attempts:
                break
            wait_time = attempt * base_delay
            logger.warning(
                f"{what}: attempt {attempt}/{max_attempts} failed: {e}. Retrying in {wait_time}s...",
                extra={"event": "retry", "metadata": {"attempt": attempt, "wait": wait_time}},
            )
            sleep(wait_time)

    logger.error(f"{what}: all {max_attempts} attempts failed: {last_error}")
    raise RetryExhausted(last_error, max_attempts, description=what) from last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff shared by every remote call of a run."""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    sleep: Callable[[float], None] = time.sleep

    def run(self, operation: Callable[[], T], description: Optional[str] = None) -> T:
        return with_retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
            description=description,
        )


def short_address(address: str) -> str:
    """Abbreviate an address for console output."""
    if len(address) <= 12:
        return address
    return f"{address[:6]}…{address[-4:]}"
