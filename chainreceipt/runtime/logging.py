"""Centralized logging configuration for chainreceipt.

Usage:
    from chainreceipt.runtime import get_logger
    logger = get_logger(__name__)

    logger.debug("Receipt in %s is not addressed to this account", tx_hash)
    logger.warning("Skipping extrinsic %s", index)

Environment variables:
    CHAINRECEIPT_LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
"""

import logging
import os
import sys

# Default log level, can be overridden by environment variable
DEFAULT_LOG_LEVEL = logging.INFO

LOG_NAMESPACE = "chainreceipt"

# Format for log messages
LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
LOG_FORMAT_DEBUG = "%(levelname)s [%(name)s:%(lineno)d] %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

# httpx logs every request at INFO; the node client logs every websocket frame.
_CHATTY_LIBRARIES = ("httpx", "httpcore", "substrateinterface", "websocket")

# Track if logging has been configured
_logging_configured = False


def level_from_env(environ: dict[str, str] | None = None) -> int:
    """Log level named by CHAINRECEIPT_LOG_LEVEL, or DEFAULT_LOG_LEVEL."""
    env = os.environ if environ is None else environ
    return _LEVELS.get(env.get("CHAINRECEIPT_LOG_LEVEL", "").strip().upper(), DEFAULT_LOG_LEVEL)


def _formatter(level: int) -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT_DEBUG if level == logging.DEBUG else LOG_FORMAT)


def configure_logging(level: int | None = None) -> None:
    """Configure the chainreceipt logger namespace.

    Args:
        level: Log level to use. If None, reads from CHAINRECEIPT_LOG_LEVEL env var
               or uses DEFAULT_LOG_LEVEL.
    """
    global _logging_configured

    if _logging_configured:
        return

    if level is None:
        level = level_from_env()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(level))

    namespace_logger = logging.getLogger(LOG_NAMESPACE)
    namespace_logger.setLevel(level)
    namespace_logger.addHandler(handler)
    namespace_logger.propagate = False

    # Library request logs only show when debugging chainreceipt itself.
    for library in _CHATTY_LIBRARIES:
        logging.getLogger(library).setLevel(logging.DEBUG if level == logging.DEBUG else max(level, logging.WARNING))

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    Args:
        name: Module name, typically __name__

    Returns:
        Logger under the chainreceipt namespace
    """
    configure_logging()

    # Module names already carry the namespace when imported as a package.
    if name == LOG_NAMESPACE or name.startswith(f"{LOG_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOG_NAMESPACE}.{name}")


def set_log_level(level: int) -> None:
    """Change the log level at runtime.

    Args:
        level: New log level (e.g., logging.DEBUG)
    """
    logger = logging.getLogger(LOG_NAMESPACE)
    logger.setLevel(level)

    for handler in logger.handlers:
        handler.setFormatter(_formatter(level))
