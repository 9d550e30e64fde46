"""
Configuration models for the signal executor.

Uses Pydantic for validation and type safety. Values come from
config.yaml (with ${VAR} expansion) and a handful of env overrides.
"""
import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from signal_executor.constants import (
    AGGRESSIVE_BUY_PRICE_CAP,
    AGGRESSIVE_SELL_PRICE_FLOOR,
    DEFAULT_ALERT_STORE_PATH,
    DEFAULT_API_TIMEOUT_MS,
    DEFAULT_EXCHANGE,
    MAX_RECONCILE_ATTEMPTS,
    SETTLE_DELAY_SECONDS,
    SIZE_TOLERANCE,
)
from signal_executor.exceptions import ConfigurationError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)")
_CREDENTIAL_FIELDS = ("api_key", "api_secret", "password", "wallet_address", "private_key")


class SystemConfig(BaseSettings):
    """System metadata."""
    model_config = SettingsConfigDict(extra="ignore")

    name: str = "Signal Executor"
    version: str = "1.0.0"
    dry_run: bool = False  # If True, every exchange key routes to the paper gateway


class ExchangeConfig(BaseSettings):
    """Exchange gateways and credentials."""
    model_config = SettingsConfigDict(extra="ignore")

    default_exchange: str = DEFAULT_EXCHANGE
    # Exchange key (as alerts send it) -> ccxt exchange id; "paper" means PaperGateway
    gateways: Dict[str, str] = Field(default_factory=lambda: {DEFAULT_EXCHANGE: "dydx"})
    # Exchange key -> {api_key, api_secret, password, wallet_address, private_key}
    credentials: Dict[str, Dict[str, Optional[str]]] = Field(default_factory=dict)
    testnet: bool = False
    timeout_ms: int = Field(default=DEFAULT_API_TIMEOUT_MS, ge=1000, le=120000)
    settle_currency: Optional[str] = "USDC"

    @field_validator("gateways")
    @classmethod
    def lowercase_keys(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {k.lower(): ccxt_id for k, ccxt_id in v.items()}

    @field_validator("credentials")
    @classmethod
    def drop_unexpanded(cls, v: Dict[str, Dict[str, Optional[str]]]) -> Dict[str, Dict[str, Optional[str]]]:
        """${VAR} left in place means the env var was not set."""
        cleaned = {}
        for key, creds in v.items():
            cleaned[key.lower()] = {
                name: (value if value and not str(value).startswith("${") else None)
                for name, value in (creds or {}).items()
            }
        return cleaned


class ExecutionConfig(BaseSettings):
    """Reconciliation loop parameters."""
    model_config = SettingsConfigDict(extra="ignore")

    size_tolerance: Decimal = Field(default=SIZE_TOLERANCE, gt=0)
    max_attempts: int = Field(default=MAX_RECONCILE_ATTEMPTS, ge=1, le=50)
    settle_delay_seconds: float = Field(default=SETTLE_DELAY_SECONDS, ge=0.0, le=60.0)
    buy_price_cap: Decimal = Field(default=AGGRESSIVE_BUY_PRICE_CAP, gt=0)
    sell_price_floor: Decimal = Field(default=AGGRESSIVE_SELL_PRICE_FLOOR, gt=0)
    # Protective stop distance from entry, e.g. 0.02 = 2%. None disables the stop.
    stop_loss_pct: Optional[Decimal] = Field(default=None, gt=0, lt=1)

    @model_validator(mode="after")
    def price_bounds_ordered(self) -> "ExecutionConfig":
        if self.sell_price_floor >= self.buy_price_cap:
            raise ValueError("sell_price_floor must be below buy_price_cap")
        return self


class WebhookConfig(BaseSettings):
    """Inbound alert endpoint."""
    model_config = SettingsConfigDict(extra="ignore")

    passphrase: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)

    @field_validator("passphrase")
    @classmethod
    def empty_is_none(cls, v: Optional[str]) -> Optional[str]:
        if not v or v.startswith("${"):
            return None
        return v


class StorageConfig(BaseSettings):
    """Persisted inbound dedup store."""
    model_config = SettingsConfigDict(extra="ignore")

    alert_store_path: str = DEFAULT_ALERT_STORE_PATH


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    system: SystemConfig = Field(default_factory=SystemConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "paper", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Keep original if not set

        config_dict = yaml.safe_load(_ENV_PATTERN.sub(replace_match, raw_content)) or {}
        _apply_env_overrides(config_dict)
        return cls(**config_dict)

    def validate_config(self) -> None:
        """Cross-section checks that a single model cannot express."""
        if self.exchange.default_exchange.lower() not in self.exchange.gateways:
            raise ConfigurationError(
                f"default_exchange '{self.exchange.default_exchange}' has no entry in exchange.gateways"
            )
        if self.environment == "prod" and not self.system.dry_run and not self.webhook.passphrase:
            raise ConfigurationError("TRADINGVIEW_PASSPHRASE must be set for live trading in prod")


def _apply_env_overrides(config_dict: dict) -> None:
    if "ENVIRONMENT" in os.environ:
        config_dict["environment"] = os.environ["ENVIRONMENT"]

    if os.getenv("TRADINGVIEW_PASSPHRASE"):
        config_dict.setdefault("webhook", {})["passphrase"] = os.environ["TRADINGVIEW_PASSPHRASE"]

    if os.getenv("ALERT_STORE_PATH"):
        config_dict.setdefault("storage", {})["alert_store_path"] = os.environ["ALERT_STORE_PATH"]

    # DRY_RUN env wins; outside prod, an unset dry_run defaults to on
    system = config_dict.setdefault("system", {})
    env_dry_run = os.getenv("DRY_RUN")
    if env_dry_run is not None:
        system["dry_run"] = env_dry_run in ("1", "true", "True", "TRUE")
    elif config_dict.get("environment", "prod") != "prod" and "dry_run" not in system:
        system["dry_run"] = True

    # <KEY>_API_KEY, <KEY>_PRIVATE_KEY, ... for each configured exchange key
    exchange = config_dict.setdefault("exchange", {})
    gateways = exchange.get("gateways") or {DEFAULT_EXCHANGE: "dydx"}
    credentials = exchange.setdefault("credentials", {}) or {}
    for key in gateways:
        creds = dict(credentials.get(key) or {})
        for name in _CREDENTIAL_FIELDS:
            value = os.getenv(f"{key.upper()}_{name.upper()}")
            if value:
                creds[name] = value
        if creds:
            credentials[key] = creds
    exchange["credentials"] = credentials


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml file. If None, uses signal_executor/config/config.yaml

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If a value fails model validation
        ConfigurationError: If sections are inconsistent
    """
    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"

    config = Config.from_yaml(config_path)
    config.validate_config()
    return config
