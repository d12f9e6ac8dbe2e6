from pathlib import Path

import pytest
from keyring.errors import NoKeyringError
from pytest_mock import MockerFixture

from candlestream.config import (
    KEYRING_SERVICE_NAME,
    Settings,
    get_api_key,
    load_config,
    set_api_key,
)


def test_missing_file_creates_template_and_returns_defaults(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.toml"

    settings = load_config(path)

    assert settings == Settings()
    assert path.exists()
    assert path.read_text(encoding="utf-8").startswith("# CandleStream configuration")


def test_template_parses_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    load_config(path)
    assert load_config(path) == Settings()


def test_user_values_override_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "[general]\n"
        'log_level_console = "DEBUG"\n'
        "[feed]\n"
        "snapshot_refresh_seconds = 0\n"
        "[chart]\n"
        'default_symbol = "ETHUSDT"\n'
        'default_timeframe = "4h"\n',
        encoding="utf-8",
    )

    settings = load_config(path)

    assert settings.general.log_level_console == "DEBUG"
    assert settings.general.log_level_file == "DEBUG"
    assert settings.feed.snapshot_refresh_seconds == 0
    assert settings.feed.rest_base_url == "https://api.binance.com/api/v3"
    assert settings.chart.default_symbol == "ETHUSDT"
    assert settings.chart.default_timeframe == "4h"


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        'feed = 3\n[chart]\ncolour = "red"\n[plugins]\nenabled = true\n',
        encoding="utf-8",
    )
    assert load_config(path) == Settings()


def test_invalid_toml_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("[chart\ndefault_symbol = ", encoding="utf-8")
    assert load_config(path) == Settings()


def test_get_instance_is_cached(mocker: MockerFixture) -> None:
    loaded = Settings()
    load = mocker.patch("candlestream.config.load_config", return_value=loaded)
    mocker.patch.object(Settings, "_instance", None)

    assert Settings.get_instance() is loaded
    assert Settings.get_instance() is loaded
    load.assert_called_once()


def test_get_api_key_reads_keyring(mocker: MockerFixture) -> None:
    get_password = mocker.patch(
        "candlestream.config.keyring.get_password", return_value="demo-key"
    )
    assert get_api_key("CoinGecko") == "demo-key"
    get_password.assert_called_once_with(KEYRING_SERVICE_NAME, "coingecko_key")


def test_get_api_key_without_keyring_backend(mocker: MockerFixture) -> None:
    mocker.patch(
        "candlestream.config.keyring.get_password", side_effect=NoKeyringError()
    )
    assert get_api_key("coingecko") is None


def test_set_api_key_writes_keyring(mocker: MockerFixture) -> None:
    set_password = mocker.patch("candlestream.config.keyring.set_password")
    set_api_key("coingecko", "demo-key")
    set_password.assert_called_once_with(
        KEYRING_SERVICE_NAME, "coingecko_key", "demo-key"
    )


def test_set_api_key_propagates_backend_errors(mocker: MockerFixture) -> None:
    mocker.patch(
        "candlestream.config.keyring.set_password", side_effect=NoKeyringError()
    )
    with pytest.raises(NoKeyringError):
        set_api_key("coingecko", "demo-key")
