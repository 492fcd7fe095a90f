"""
Logging setup for the Medea services and CLI.

The scout and the balancer are long-running processes, so a log file, when
configured, is rotated by size instead of growing forever. Console output
always goes to stdout.

Every Medea module logs through get_logger(), which places it under the
"medea." hierarchy. HTTP client and server libraries are kept at WARNING so
that per-request chatter from urllib3 and uvicorn does not drown the
placement decisions.
"""

import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, List

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("urllib3", "requests", "uvicorn.access", "httpx")

_CONFIGURED = False


def _handlers(log_file: Optional[Path], max_bytes: int, backup_count: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        if max_bytes > 0:
            handlers.append(logging.handlers.RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count
            ))
        else:
            handlers.append(logging.FileHandler(log_file))
    return handlers


def setup_logging(level: str = "INFO",
                  log_file: Optional[Path] = None,
                  verbose: bool = False,
                  max_bytes: int = 10 * 1024 * 1024,
                  backup_count: int = 3
                  ) -> None:
    """
    Configure the root logger once per process.

    Later calls are no-ops, so the CLI callback and the services can both
    call it without stacking handlers.

    :param level: One of LOG_LEVELS, case-insensitive.
    :param log_file: Optional file receiving a copy of the console output.
    :param verbose: Include logger name and line number in each record.
    :param max_bytes: Rotate the log file at this size (0 disables rotation).
    :param backup_count: Number of rotated files to keep.
    :raises ValueError: If level is not a known level name.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    if level.upper() not in LOG_LEVELS:
        raise ValueError(f"Unknown log level '{level}', expected one of {LOG_LEVELS}")

    logging.basicConfig(
        level=level.upper(),
        format=VERBOSE_FORMAT if verbose else PLAIN_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=_handlers(log_file, max_bytes, backup_count),
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a Medea component, e.g. get_logger("scout.prober") -> "medea.scout.prober".
    """
    return logging.getLogger(f"medea.{name}")
