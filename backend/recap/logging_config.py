"""
Logging configuration for the recap pipeline.

Supports per-module log levels via environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: Log format - simple or structured (default: structured)
- LOG_LEVEL_<MODULE>: Per-module override (e.g., LOG_LEVEL_ENGINE=DEBUG,
  LOG_LEVEL_PERF=WARNING to silence timing lines)
"""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from recap.config import Settings


# Module name mapping: settings field suffix -> logger name
MODULE_LOGGERS = {
    "remote": "recap.services.remote_client",
    "engine": "recap.services.encoding_engine",
    "assembler": "recap.services.video_assembler",
    "pipeline": "recap.services.pipeline",
    "perf": "recap.perf",
}


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter for easy parsing.

    Format: timestamp | level | logger | message
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record in structured format."""
        # Shorten logger name for readability
        logger_name = record.name
        if logger_name.startswith("recap.services."):
            logger_name = logger_name.replace("recap.services.", "")
        elif logger_name.startswith("recap."):
            logger_name = logger_name.replace("recap.", "")

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")

        message = (
            f"{timestamp} | "
            f"{record.levelname:8} | "
            f"{logger_name:15} | "
            f"{record.getMessage()}"
        )

        # Traceback on its own lines
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(settings: "Settings") -> None:
    """
    Configure logging based on settings.

    Args:
        settings: Application settings with log configuration
    """
    # Unknown level names fall back to INFO
    root_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # "structured" unless explicitly "simple"
    if settings.log_format == "structured":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # Root logger: one stdout handler
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(root_level)
    root_logger.addHandler(handler)

    # LOG_LEVEL_REMOTE, LOG_LEVEL_ENGINE, ... overrides
    _configure_module_loggers(settings, root_level)

    # Quiet noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _configure_module_loggers(settings: "Settings", default_level: int) -> None:
    """
    Configure individual module log levels.

    Args:
        settings: Application settings
        default_level: Default log level to use
    """
    for module_key, logger_name in MODULE_LOGGERS.items():
        # e.g. settings.log_level_perf controls the PERF timing lines
        level_str = getattr(settings, f"log_level_{module_key}", None)

        if level_str:
            level = getattr(logging, level_str.upper(), default_level)
            logging.getLogger(logger_name).setLevel(level)


def mask_phone(phone: str) -> str:
    """Mask a phone number for logs, keeping the last two digits."""
    phone = phone.strip()
    if len(phone) <= 2:
        return "*" * len(phone)
    return "*" * (len(phone) - 2) + phone[-2:]
