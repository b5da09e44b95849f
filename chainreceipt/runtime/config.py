"""Centralized configuration for chainreceipt.

Settings come from three layers, later layers winning:
    1. Dataclass defaults below
    2. A TOML file (``[chainreceipt]`` table)
    3. Environment variables

The TOML file is looked up at ``$CHAINRECEIPT_CONFIG`` or
``~/.config/chainreceipt/config.toml``. A missing file is not an error.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from chainreceipt.runtime.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/chainreceipt/config.toml")


def _default_cache_dir() -> Path:
    return Path("~/.cache/chainreceipt").expanduser()


@dataclass
class WalletConfig:
    """Runtime settings for the indexer, ledger node and optical transport."""

    indexer_url: str = "https://assethub-paseo.api.subscan.io"
    indexer_api_key: str | None = None
    node_url: str = "wss://asset-hub-paseo-rpc.dwellir.com"
    request_timeout: float = 30.0

    # Chain parameters
    ss58_prefix: int = 0
    token_decimals: int = 10

    # Reconciliation
    page_size: int = 20
    transfer_page_size: int = 50
    extrinsic_limit: int = 10
    detail_concurrency: int = 4

    # Optical transport
    qr_chunk_size: int = 1000
    qr_interval: float = 0.1

    cache_dir: Path = field(default_factory=_default_cache_dir)

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir).expanduser()

    @property
    def history_cache_dir(self) -> Path:
        """Directory holding persisted history and decrypted receipts."""
        return self.cache_dir / "history"


_ENV_OVERRIDES = {
    "CHAINRECEIPT_INDEXER_URL": "indexer_url",
    "SUBSCAN_API_KEY": "indexer_api_key",
    "CHAINRECEIPT_NODE_URL": "node_url",
    "CHAINRECEIPT_CACHE_DIR": "cache_dir",
}


def _coerce(name: str, expected: Any, value: Any) -> Any:
    if expected is Path or expected == "Path":
        if not isinstance(value, (str, Path)):
            raise ValueError(f"Config key {name!r} must be a path string")
        return Path(value)
    if expected is int or expected == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Config key {name!r} must be an integer")
        return value
    if expected is float or expected == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Config key {name!r} must be a number")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"Config key {name!r} must be a string")
    return value


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    with open(path, "rb") as f:
        data = tomllib.load(f)
    section = data.get("chainreceipt", {})
    if not isinstance(section, dict):
        raise ValueError(f"[chainreceipt] in {path} must be a table")
    return section


def load_config(path: Path | str | None = None, *, environ: dict[str, str] | None = None) -> WalletConfig:
    """Build a new WalletConfig from a TOML file and the environment.

    Args:
        path: TOML file to read. If None, uses $CHAINRECEIPT_CONFIG or the default location.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        A fresh WalletConfig (not the singleton).
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = env.get("CHAINRECEIPT_CONFIG") or DEFAULT_CONFIG_PATH
    config_path = Path(path).expanduser()

    types = {f.name: f.type for f in dataclasses.fields(WalletConfig)}
    values: dict[str, Any] = {}

    if config_path.exists():
        for key, value in _read_toml(config_path).items():
            if key not in types:
                logger.warning("Ignoring unknown config key %r in %s", key, config_path)
                continue
            values[key] = value
        logger.debug("Loaded %d config value(s) from %s", len(values), config_path)

    for env_name, key in _ENV_OVERRIDES.items():
        env_value = env.get(env_name)
        if env_value:
            values[key] = env_value

    coerced = {key: _coerce(key, types[key], value) for key, value in values.items()}
    return WalletConfig(**coerced)


# Module-level singleton
_config: WalletConfig | None = None


def get_config() -> WalletConfig:
    """Get or create the global WalletConfig instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the global config so the next get_config() reloads it. Useful for testing."""
    global _config
    _config = None
