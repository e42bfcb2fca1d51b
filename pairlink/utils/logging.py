import atexit
import logging
import logging.handlers
import os
from pathlib import (
    Path,
)
import queue
import sys
import threading
from typing import (
    Any,
)

ROOT_LOGGER_NAME = "pairlink"
DEBUG_ENV_VAR = "PAIRLINK_DEBUG"
DEBUG_FILE_ENV_VAR = "PAIRLINK_DEBUG_FILE"

# Create a log queue
log_queue: "queue.Queue[Any]" = queue.Queue()

# Store the current listener to stop it on exit
_current_listener: logging.handlers.QueueListener | None = None

# Event to track when the listener is ready
_listener_ready = threading.Event()

# Default format for log messages
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_debug_modules(debug_str: str) -> dict[str, int]:
    """
    Parse the PAIRLINK_DEBUG environment variable into module log levels.

    Format examples:
    - "DEBUG"  # All modules at DEBUG level
    - "pairlink.signaling.session:DEBUG"  # Only the session module at DEBUG
    - "signaling.session:DEBUG"  # Same as above, pairlink prefix is optional
    - "signaling:DEBUG,stream:INFO"  # Multiple modules
    """
    module_levels: dict[str, int] = {}

    if not debug_str or debug_str.isspace():
        return module_levels

    # A plain log level applies to every module
    if ":" not in debug_str and debug_str.strip().upper() in logging._nameToLevel:
        return {"": getattr(logging, debug_str.strip().upper())}

    for part in debug_str.split(","):
        if ":" not in part:
            continue

        module, level = part.rsplit(":", 1)
        level = level.strip().upper()
        if level not in logging._nameToLevel:
            continue

        module = module.strip()
        if module.startswith(f"{ROOT_LOGGER_NAME}."):
            module = module[len(ROOT_LOGGER_NAME) + 1 :]
        module = module.replace("/", ".").strip(".")

        module_levels[module] = getattr(logging, level)

    return module_levels


def _silence(root_logger: logging.Logger) -> None:
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)
    root_logger.propagate = False


def setup_logging() -> None:
    """
    Set up logging configuration based on environment variables.

    Environment Variables:
        PAIRLINK_DEBUG
            Controls logging levels, e.g. "DEBUG" or
            "signaling.session:DEBUG,stream:INFO".

        PAIRLINK_DEBUG_FILE
            If set, logs are also written to this file.

    Without PAIRLINK_DEBUG the pairlink logger only lets warnings through and
    has no handlers of its own.
    """
    global _current_listener

    _listener_ready.clear()

    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    module_levels = _parse_debug_modules(os.environ.get(DEBUG_ENV_VAR, ""))
    if not module_levels:
        _silence(root_logger)
        _listener_ready.set()
        return

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    log_file = os.environ.get(DEBUG_FILE_ENV_VAR)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="w")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    queue_handler = logging.handlers.QueueHandler(log_queue)

    root_logger.handlers.clear()
    root_logger.addHandler(queue_handler)
    root_logger.propagate = False
    root_logger.setLevel(module_levels.get("", logging.INFO))

    for module, level in module_levels.items():
        if module:
            logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{module}")
            logger.handlers.clear()
            logger.addHandler(queue_handler)
            logger.setLevel(level)
            logger.propagate = False  # Prevent message duplication

    # Start the listener after every logger is configured
    _current_listener = logging.handlers.QueueListener(
        log_queue, *handlers, respect_handler_level=True
    )
    _current_listener.start()

    _listener_ready.set()


@atexit.register
def cleanup_logging() -> None:
    """Stop the queue listener, flushing pending records."""
    global _current_listener
    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None
