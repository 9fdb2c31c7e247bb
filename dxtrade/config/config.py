"""
Configuration models for the DXtrade client.

Uses Pydantic for validation and type safety. Values come from keyword
arguments, an optional YAML file, or ``DXTRADE_*`` environment variables
(nested timeouts via ``DXTRADE_TIMEOUTS__ORDER=45``).
"""
import os
import re
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dxtrade.constants import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STREAM_TIMEOUT,
    INSTRUMENTS_SETTLE_SECONDS,
    LIMITS_SETTLE_SECONDS,
    MAX_RETRY_ATTEMPTS,
    OHLC_BAR_SETTLE_SECONDS,
    OHLC_INIT_SETTLE_SECONDS,
)


class TimeoutConfig(BaseModel):
    """Wait budgets and quiescence windows, in seconds."""
    model_config = ConfigDict(extra="ignore")

    handshake: float = Field(default=DEFAULT_STREAM_TIMEOUT, gt=0, description="Stream handshake budget")
    request: float = Field(default=DEFAULT_HTTP_TIMEOUT, gt=0, description="REST request timeout")
    stream: float = Field(default=DEFAULT_STREAM_TIMEOUT, gt=0, description="Request-style stream waits")
    order: float = Field(default=DEFAULT_STREAM_TIMEOUT, gt=0, description="Order confirmation budget")
    close: float = Field(default=DEFAULT_STREAM_TIMEOUT, gt=0, description="Position close confirmation budget")
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0, description="Close-by-poll interval")

    # Quiescence windows: a collection is complete after this long without a new batch
    instruments_settle: float = Field(default=INSTRUMENTS_SETTLE_SECONDS, ge=0)
    limits_settle: float = Field(default=LIMITS_SETTLE_SECONDS, ge=0)
    ohlc_init_settle: float = Field(default=OHLC_INIT_SETTLE_SECONDS, ge=0)
    ohlc_bar_settle: float = Field(default=OHLC_BAR_SETTLE_SECONDS, ge=0)


class ClientConfig(BaseSettings):
    """Credentials, broker selection and client behaviour."""
    model_config = SettingsConfigDict(
        env_prefix="DXTRADE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    username: str
    password: str
    broker: str = Field(description="Broker key (FTMO, EIGHTCAP, ...) or base URL")
    account_id: Optional[str] = Field(default=None, description="Switch to this account after login")
    broker_urls: Dict[str, str] = Field(default_factory=dict, description="Custom broker base URLs")
    retries: int = Field(default=MAX_RETRY_ATTEMPTS, ge=1, le=10)

    # False, True, or comma-separated envelope types ("POSITIONS,ORDERS")
    debug: Union[bool, str] = False

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    @field_validator("broker")
    @classmethod
    def validate_broker(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("broker must not be empty")
        return v

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "ClientConfig":
        """Load configuration from a YAML file, expanding ${VAR} references."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        pattern = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # keep original if not set

        config_dict = yaml.safe_load(pattern.sub(replace_match, raw_content)) or {}
        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration file must contain a mapping: {yaml_path}")

        # the file may nest everything under a top-level "dxtrade" key
        config_dict = config_dict.get("dxtrade", config_dict)
        return cls(**config_dict)


def load_config(config_path: Optional[Union[str, Path]] = None) -> ClientConfig:
    """
    Load and validate configuration.

    Args:
        config_path: Optional YAML file. Without one, values come from
            ``DXTRADE_*`` environment variables only.

    Raises:
        FileNotFoundError: If config_path is given but missing
        pydantic.ValidationError: If required values are missing or invalid
    """
    if config_path is None:
        return ClientConfig()
    return ClientConfig.from_yaml(config_path)
