import sys
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, ClassVar, TypeVar

import keyring
from keyring.errors import KeyringError
from loguru import logger

# --- Constants ---
APP_NAME = "candlestream"
# Use a platform-agnostic user config directory
if sys.platform == "win32":
    CONFIG_DIR = Path.home() / "AppData" / "Roaming" / APP_NAME
else:
    CONFIG_DIR = Path.home() / ".config" / APP_NAME

CONFIG_FILE = CONFIG_DIR / "config.toml"

KEYRING_SERVICE_NAME = f"{APP_NAME}-api-keys"

DEFAULT_CONFIG_TEXT = """\
# CandleStream configuration file
# Uncomment and edit values to override the defaults.
#
# [general]
# log_level_console = "INFO"
#
# [feed]
# snapshot_refresh_seconds = 60.0
#
# [chart]
# default_symbol = "BTCUSDT"
# default_timeframe = "7d"
"""

T = TypeVar("T")


@dataclass
class GeneralSettings:
    """Logging and other process-wide settings."""

    log_level_console: str = "INFO"
    log_level_file: str = "DEBUG"
    log_directory: str = str(CONFIG_DIR / "logs")
    file_logging: bool = False


@dataclass
class FeedSettings:
    """Endpoints and timing for the candle snapshot and live feed."""

    rest_base_url: str = "https://api.binance.com/api/v3"
    ws_base_url: str = "wss://stream.binance.com:9443/ws"
    request_timeout_seconds: float = 20.0
    initial_reconnect_delay_seconds: float = 1.0
    max_reconnect_delay_seconds: float = 60.0
    # Re-fetch the snapshot this often; 0 disables the refresh.
    snapshot_refresh_seconds: float = 60.0


@dataclass
class ChartSettings:
    """What the chart shows when nothing is selected explicitly."""

    default_symbol: str = "BTCUSDT"
    default_timeframe: str = "7d"


@dataclass
class MarketSettings:
    """Settings for the market overview (coin list)."""

    # Note: the optional API key is stored in the system keyring, not here.
    base_url: str = "https://api.coingecko.com/api/v3"
    vs_currency: str = "usd"
    per_page: int = 250


@dataclass
class Settings:
    """Root container for all application settings."""

    general: GeneralSettings = field(default_factory=GeneralSettings)
    feed: FeedSettings = field(default_factory=FeedSettings)
    chart: ChartSettings = field(default_factory=ChartSettings)
    market: MarketSettings = field(default_factory=MarketSettings)

    _instance: ClassVar["Settings | None"] = None

    @classmethod
    def get_instance(cls) -> "Settings":
        """Returns the process-wide Settings, loading them on first use."""
        if cls._instance is None:
            cls._instance = load_config()
        return cls._instance


def _update_dataclass(dc_instance: T, data: dict[str, Any]) -> T:
    """Recursively updates a dataclass instance from a dictionary.

    Unknown keys are logged and ignored.
    """
    known = {f.name for f in fields(dc_instance)}  # type: ignore[arg-type]
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown configuration key '{key}'.")
            continue
        current = getattr(dc_instance, key)
        if is_dataclass(current):
            if isinstance(value, dict):
                _update_dataclass(current, value)
            else:
                logger.warning(f"Configuration section '{key}' must be a table.")
        else:
            setattr(dc_instance, key, value)
    return dc_instance


def load_config(path: Path = CONFIG_FILE) -> Settings:
    """Loads settings from a TOML file, merging them over the defaults.

    If the file does not exist, a commented template is written in its place
    and the defaults are returned. A file that cannot be parsed is reported
    and also yields the defaults.

    Args:
        path: The path to the configuration file.

    Returns:
        A populated Settings object.
    """
    settings_obj = Settings()
    logger.info(f"Loading configuration from '{path}'...")

    if not path.exists():
        logger.warning(f"Configuration file not found. Creating default at '{path}'.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to create default config file: {e}")
        return settings_obj

    try:
        with path.open("rb") as f:
            user_config = tomllib.load(f)
        _update_dataclass(settings_obj, user_config)
        logger.success("Successfully loaded user configuration.")
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Error decoding TOML from '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()
    except OSError as e:
        logger.error(f"Could not read configuration file '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()

    return settings_obj


# --- Keyring Management ---


def get_api_key(provider: str) -> str | None:
    """Retrieves a provider's API key from the system keyring.

    Args:
        provider: The lower-case provider name (e.g., 'coingecko').

    Returns:
        The key, or None if none is stored or the keyring is unavailable.
    """
    provider = provider.lower()
    try:
        api_key = keyring.get_password(KEYRING_SERVICE_NAME, f"{provider}_key")
    except KeyringError as e:
        logger.error(f"Could not retrieve credentials from keyring: {e}")
        return None
    if api_key:
        logger.debug(f"Retrieved API key for '{provider}' from keyring.")
    return api_key


def set_api_key(provider: str, api_key: str) -> None:
    """Stores a provider's API key in the system keyring.

    Raises:
        KeyringError: If the keyring backend refuses the write.
    """
    provider = provider.lower()
    keyring.set_password(KEYRING_SERVICE_NAME, f"{provider}_key", api_key)
    logger.info(f"Stored API key for '{provider}' in keyring.")
