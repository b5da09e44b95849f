"""Runtime infrastructure for chainreceipt.

This package provides process/runtime services including:
- Logging setup via get_logger()
- Wallet configuration via get_config(), load_config(), WalletConfig
- Key-value caches for decrypted receipts and reconciled history

Usage:
    from chainreceipt.runtime import get_logger, get_config

    logger = get_logger(__name__)
    config = get_config()
    print(config.indexer_url, config.page_size)
"""

from chainreceipt.runtime.cache import FileCache, KeyValueCache, MemoryCache
from chainreceipt.runtime.config import (
    WalletConfig,
    get_config,
    load_config,
    reset_config,
)
from chainreceipt.runtime.logging import (
    DEFAULT_LOG_LEVEL,
    LOG_FORMAT,
    LOG_FORMAT_DEBUG,
    configure_logging,
    get_logger,
    set_log_level,
)

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "set_log_level",
    "DEFAULT_LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FORMAT_DEBUG",
    # Config
    "WalletConfig",
    "get_config",
    "load_config",
    "reset_config",
    # Cache
    "KeyValueCache",
    "MemoryCache",
    "FileCache",
]
