"""Configuration loader for the Civitas indexer using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "CIVITAS_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "CIVITAS_SETTINGS_FILE"

NetworkMode = Literal["mainnet", "testnet"]

BASE_MAINNET_CHAIN_ID = 8453
BASE_SEPOLIA_CHAIN_ID = 84532

# Public endpoints and factory deployments per network mode.
NETWORK_DEFAULTS: dict[str, dict[str, Any]] = {
    "mainnet": {
        "chain_id": BASE_MAINNET_CHAIN_ID,
        "rpc_url": "https://mainnet.base.org",
        "factory_address": "0xaf4d13cac35b65d24203962ff22dc281f1c1fc5c",
    },
    "testnet": {
        "chain_id": BASE_SEPOLIA_CHAIN_ID,
        "rpc_url": "https://sepolia.base.org",
        "factory_address": "0xa44ebcc68383fc6761292a4d5ec13127cc123b56",
    },
}


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name.

    Args:
        explicit_env: Environment value supplied directly by the caller.

    Returns:
        A stripped environment name, falling back to ``DEFAULT_ENV``.
    """

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution."""

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority() -> tuple[Path, ...]:
    """Return existing config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("RUNTIME_LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class ChainSettings(BaseSettings):
    """JSON-RPC endpoint and factory contract wiring."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    network_mode: NetworkMode = Field(
        default="testnet",
        validation_alias=AliasChoices("CHAIN_NETWORK_MODE", "CHAIN__NETWORK_MODE"),
    )
    rpc_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BASE_RPC_URL", "CHAIN__RPC_URL"),
    )
    chain_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("BASE_CHAIN_ID", "CHAIN__CHAIN_ID"),
    )
    factory_address: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CHAIN_FACTORY_ADDRESS", "CHAIN__FACTORY_ADDRESS"),
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("CHAIN_REQUEST_TIMEOUT_SECONDS", "CHAIN__REQUEST_TIMEOUT_SECONDS"),
    )
    max_retries: int = Field(
        default=3,
        validation_alias=AliasChoices("CHAIN_MAX_RETRIES", "CHAIN__MAX_RETRIES"),
    )
    backoff_seconds: float = Field(
        default=0.5,
        validation_alias=AliasChoices("CHAIN_BACKOFF_SECONDS", "CHAIN__BACKOFF_SECONDS"),
    )


class StorageSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    sqlite_path: Path = Field(
        default=PROJECT_ROOT / "data" / "civitas_indexer.db",
        validation_alias=AliasChoices("STORAGE_SQLITE_PATH", "STORAGE__SQLITE_PATH"),
    )
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STORAGE_DATABASE_URL", "STORAGE__DATABASE_URL"),
    )


class IndexerSettings(BaseSettings):
    """Factory poller and per-contract synchronizer tuning."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    poll_interval_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices("INDEXER_POLL_INTERVAL_SECONDS", "INDEXER__POLL_INTERVAL_SECONDS"),
    )
    startup_lookback_blocks: int = Field(
        default=2,
        validation_alias=AliasChoices("INDEXER_STARTUP_LOOKBACK_BLOCKS", "INDEXER__STARTUP_LOOKBACK_BLOCKS"),
    )
    sync_window_blocks: int = Field(
        default=10_000,
        validation_alias=AliasChoices("INDEXER_SYNC_WINDOW_BLOCKS", "INDEXER__SYNC_WINDOW_BLOCKS"),
    )
    max_workers: int = Field(
        default=4,
        validation_alias=AliasChoices("INDEXER_MAX_WORKERS", "INDEXER__MAX_WORKERS"),
    )
    persist_cursor: bool = Field(
        default=True,
        validation_alias=AliasChoices("INDEXER_PERSIST_CURSOR", "INDEXER__PERSIST_CURSOR"),
    )
    max_catchup_blocks: int = Field(
        default=10_000,
        validation_alias=AliasChoices("INDEXER_MAX_CATCHUP_BLOCKS", "INDEXER__MAX_CATCHUP_BLOCKS"),
    )
    startup_max_attempts: int = Field(
        default=0,
        validation_alias=AliasChoices("INDEXER_STARTUP_MAX_ATTEMPTS", "INDEXER__STARTUP_MAX_ATTEMPTS"),
    )


class APISettings(BaseSettings):
    """HTTP server binding for the resync API."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    host: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("API_HOST", "API__HOST"),
    )
    port: int = Field(
        default=8000,
        validation_alias=AliasChoices("API_PORT", "API__PORT"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    otlp_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_OTLP_ENDPOINT", "OBSERVABILITY__OTLP_ENDPOINT"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="civitas",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )
    service_name: str = Field(
        default="civitas-indexer",
        validation_alias=AliasChoices("OBS_SERVICE_NAME", "OBSERVABILITY__SERVICE_NAME"),
    )


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    indexer: IndexerSettings = Field(default_factory=IndexerSettings)
    api: APISettings = Field(default_factory=APISettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="CIVITAS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths once the model is initialised."""

        if not self.storage.sqlite_path.is_absolute():
            resolved = (self.project_root / self.storage.sqlite_path).resolve()
            object.__setattr__(self, "storage", self.storage.model_copy(update={"sqlite_path": resolved}))
        return self

    @model_validator(mode="after")
    def _apply_network_defaults(self) -> "Settings":
        """Fill chain id, RPC URL, and factory address from the network mode."""

        defaults = NETWORK_DEFAULTS[self.chain.network_mode]
        chain_updates: dict[str, object] = {}
        if self.chain.chain_id is None:
            chain_updates["chain_id"] = defaults["chain_id"]
        if not self.chain.rpc_url:
            chain_updates["rpc_url"] = defaults["rpc_url"]
        if not self.chain.factory_address:
            chain_updates["factory_address"] = defaults["factory_address"]
        else:
            chain_updates["factory_address"] = self.chain.factory_address.strip().lower()
        object.__setattr__(self, "chain", self.chain.model_copy(update=chain_updates))
        return self

    @property
    def log_level(self) -> str:
        """str: Effective logging level for the running process."""

        return self.runtime.log_level

    @property
    def rpc_url(self) -> str:
        """str: JSON-RPC endpoint of the target chain."""

        return self.chain.rpc_url or NETWORK_DEFAULTS[self.chain.network_mode]["rpc_url"]

    @property
    def factory_address(self) -> str:
        """str: Lower-cased address of the clone factory contract."""

        return self.chain.factory_address or NETWORK_DEFAULTS[self.chain.network_mode]["factory_address"]

    @property
    def sqlite_path(self) -> Path:
        """Path: Filesystem path for the local SQLite database."""

        return self.storage.sqlite_path

    @property
    def is_local(self) -> bool:
        """bool: True when the active environment is ``local``."""

        return self.env.lower() == "local"


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
    "NETWORK_DEFAULTS",
]
