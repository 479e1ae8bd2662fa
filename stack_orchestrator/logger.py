"""
Colored console logging for the orchestrator.

One package logger ("stack_orchestrator") writes to stdout through a
colorlog ColoredFormatter. Layers log through child loggers so that every
line carries the layer name.

Usage:
    from stack_orchestrator.logger import logger, get_layer_logger

    logger.info("✓ Configuration loaded")
    layer_logger = get_layer_logger("network")
    layer_logger.warning("⚠ Endpoint not reachable")
"""

import logging
import sys
import traceback

from colorlog import ColoredFormatter

LOGGER_NAME = "stack_orchestrator"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_log_level(level: str) -> int:
    """
    Map a textual level (debug/info/warn/error) to a logging level.

    Raises:
        ValueError: If the level name is unknown
    """
    try:
        return LOG_LEVELS[level.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown log level '{level}'. Available: {sorted(LOG_LEVELS)}"
        ) from None


def setup_logger(level: str = "info") -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    numeric_level = parse_log_level(level)
    log.setLevel(numeric_level)
    log.propagate = False

    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = ColoredFormatter(
            "%(log_color)s[%(levelname)s]%(reset)s %(name_suffix)s%(message)s",
            log_colors={
                "DEBUG":    "cyan",
                "INFO":     "green",
                "WARNING":  "yellow",
                "ERROR":    "red",
                "CRITICAL": "red,bg_white",
            }
        )
        handler.setFormatter(formatter)
        handler.addFilter(_LayerNameFilter())
        log.addHandler(handler)

    for handler in log.handlers:
        handler.setLevel(numeric_level)

    return log


class _LayerNameFilter(logging.Filter):
    """Expose the child logger suffix as `[layer] ` for the formatter."""

    def filter(self, record: logging.LogRecord) -> bool:
        prefix = LOGGER_NAME + "."
        if record.name.startswith(prefix):
            record.name_suffix = f"[{record.name[len(prefix):]}] "
        else:
            record.name_suffix = ""
        return True


def get_layer_logger(layer_name: str) -> logging.Logger:
    """Return the child logger used by a single layer."""
    return logging.getLogger(f"{LOGGER_NAME}.{layer_name}")


def is_debug() -> bool:
    return logger.isEnabledFor(logging.DEBUG)


def print_stack_trace():
    """
    Log the current exception's stack trace when debug logging is active.
    """
    if is_debug():
        logger.debug(traceback.format_exc())


def truncate_tail(text: str, limit: int = 500) -> str:
    """
    Keep the last `limit` characters of a diagnostic text.

    Command output usually carries the actual error at the end, so the
    head is dropped and marked with an ellipsis.
    """
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


# Logger defaults to INFO until the CLI reconfigures it.
logger = setup_logger("info")
