import json
import logging
import sys
from typing import Optional
from pathlib import Path

from storyguard.core.config import settings

# Moderation context callers pass through ``extra``
CONTEXT_FIELDS = ("request_id", "story_id", "author_id", "decision", "phase")

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def _context(record: logging.LogRecord) -> dict:
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}


class ContextFormatter(logging.Formatter):
    """Console format with any story context appended as ``key=value`` pairs."""

    def format(self, record):
        line = super().format(record)
        context = _context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, for the log file."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record):
        entry = {
            'timestamp': self.formatTime(record),
            'service': self.service_name,
            'level': record.levelname,
            'where': f"{record.module}.{record.funcName}:{record.lineno}",
            'message': record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    service_name: str = "storyguard"
) -> logging.Logger:
    """
    Configure the service logger.

    Args:
        level: Logging level name
        log_file: Optional path that receives JSON lines at DEBUG level
        service_name: Logger name, also stamped on file records

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, level.upper()))

    # Reimports must not stack handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ContextFormatter(fmt=CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonLineFormatter(service_name))
        logger.addHandler(file_handler)

    return logger

logger = setup_logging(level=settings.log_level, log_file=settings.log_file)
