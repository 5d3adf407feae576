"""Unit tests covering environment and TOML overrides for settings."""

from __future__ import annotations

import textwrap

import pytest

from civitas.settings.config import BASE_MAINNET_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID, NETWORK_DEFAULTS, get_settings, reload_settings


def _clear_env(monkeypatch: object, *names: str) -> None:
    """Remove env vars for every alias and prefixed variant."""

    for name in names:
        monkeypatch.delenv(name, raising=False)
        if name.startswith("CIVITAS_"):
            monkeypatch.delenv(name.removeprefix("CIVITAS_"), raising=False)
        else:
            monkeypatch.delenv(f"CIVITAS_{name}", raising=False)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    yield
    get_settings.cache_clear()


@pytest.fixture
def clean_chain_env(monkeypatch):
    _clear_env(
        monkeypatch,
        "CIVITAS_CHAIN__NETWORK_MODE",
        "CIVITAS_CHAIN__RPC_URL",
        "CIVITAS_CHAIN__CHAIN_ID",
        "CIVITAS_CHAIN__FACTORY_ADDRESS",
        "CHAIN_NETWORK_MODE",
        "BASE_RPC_URL",
        "BASE_CHAIN_ID",
        "CHAIN_FACTORY_ADDRESS",
        "CIVITAS_SETTINGS_FILE",
    )


def test_testnet_defaults(clean_chain_env) -> None:
    settings = reload_settings(env="dev")

    assert settings.chain.network_mode == "testnet"
    assert settings.chain.chain_id == BASE_SEPOLIA_CHAIN_ID
    assert settings.rpc_url == NETWORK_DEFAULTS["testnet"]["rpc_url"]
    assert settings.factory_address == NETWORK_DEFAULTS["testnet"]["factory_address"]
    assert settings.indexer.poll_interval_seconds == 10
    assert settings.indexer.startup_lookback_blocks == 2
    assert settings.indexer.sync_window_blocks == 10_000


def test_network_mode_env_switches_chain_defaults(clean_chain_env, monkeypatch: object) -> None:
    monkeypatch.setenv("CIVITAS_CHAIN__NETWORK_MODE", "mainnet")

    settings = reload_settings(env="dev")

    assert settings.chain.chain_id == BASE_MAINNET_CHAIN_ID
    assert settings.factory_address == NETWORK_DEFAULTS["mainnet"]["factory_address"]
    assert settings.rpc_url == "https://mainnet.base.org"


def test_explicit_chain_values_win(clean_chain_env, monkeypatch: object) -> None:
    monkeypatch.setenv("CIVITAS_CHAIN__RPC_URL", "http://localhost:8545")
    monkeypatch.setenv("CIVITAS_CHAIN__FACTORY_ADDRESS", "0x" + "AB" * 20)
    monkeypatch.setenv("CIVITAS_CHAIN__CHAIN_ID", "31337")

    settings = reload_settings(env="dev")

    assert settings.rpc_url == "http://localhost:8545"
    assert settings.factory_address == "0x" + "ab" * 20
    assert settings.chain.chain_id == 31337


def test_indexer_env_overrides(monkeypatch: object) -> None:
    _clear_env(
        monkeypatch,
        "CIVITAS_INDEXER__SYNC_WINDOW_BLOCKS",
        "CIVITAS_INDEXER__PERSIST_CURSOR",
        "CIVITAS_INDEXER__STARTUP_MAX_ATTEMPTS",
        "CIVITAS_SETTINGS_FILE",
    )
    monkeypatch.setenv("CIVITAS_INDEXER__SYNC_WINDOW_BLOCKS", "500")
    monkeypatch.setenv("CIVITAS_INDEXER__PERSIST_CURSOR", "false")
    monkeypatch.setenv("CIVITAS_INDEXER__STARTUP_MAX_ATTEMPTS", "5")

    settings = reload_settings(env="dev")

    assert settings.indexer.sync_window_blocks == 500
    assert settings.indexer.persist_cursor is False
    assert settings.indexer.startup_max_attempts == 5


def test_settings_file_override(tmp_path, clean_chain_env, monkeypatch: object) -> None:
    _clear_env(monkeypatch, "CIVITAS_INDEXER__MAX_WORKERS", "CIVITAS_STORAGE__SQLITE_PATH")

    settings_file = tmp_path / "settings.local.toml"
    settings_file.write_text(
        textwrap.dedent(
            """
            [chain]
            network_mode = "mainnet"

            [indexer]
            max_workers = 9

            [storage]
            sqlite_path = "var/custom.db"
            """
        ).strip(),
        encoding="utf-8",
    )
    monkeypatch.setenv("CIVITAS_SETTINGS_FILE", str(settings_file))

    settings = reload_settings(env="dev")

    assert settings_file in settings.config_files
    assert settings.chain.chain_id == BASE_MAINNET_CHAIN_ID
    assert settings.indexer.max_workers == 9
    assert settings.sqlite_path.is_absolute()
    assert settings.sqlite_path.name == "custom.db"

    monkeypatch.setenv("CIVITAS_INDEXER__MAX_WORKERS", "2")
    assert reload_settings(env="dev").indexer.max_workers == 2


def test_nested_env_overrides_beat_checked_in_defaults(tmp_path, monkeypatch: object) -> None:
    _clear_env(
        monkeypatch,
        "CIVITAS_RUNTIME__LOG_LEVEL",
        "RUNTIME_LOG_LEVEL",
        "CIVITAS_STORAGE__SQLITE_PATH",
        "STORAGE_SQLITE_PATH",
        "CIVITAS_SETTINGS_FILE",
    )
    database = tmp_path / "indexer.db"
    monkeypatch.setenv("CIVITAS_RUNTIME__LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("CIVITAS_STORAGE__SQLITE_PATH", str(database))

    settings = reload_settings(env="dev")

    assert settings.log_level == "DEBUG"
    assert settings.sqlite_path == database
