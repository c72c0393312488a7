"""
Configuration management for chainorch.

Loads and validates the chainorch YAML configuration file:

    network:
      name: arbitrum
      tags: [public, mainnet, arbitrum]
      chain_id: 42161
    rpc:
      url: https://arb1.example.org
      deployer: "0x..."
      timeout: 30
      confirmation_timeout: 300
    paths:
      artifacts: artifacts
      deployments: deployments
    retry:
      max_attempts: 3
      base_delay: 5
    policy:
      on_missing_code: redeploy
    logging:
      level: INFO
      format: structured
      output: logs/chainorch-{date}.log
      console: true

Relative paths are resolved against the directory holding the config file.
CHAINORCH_NETWORK and CHAINORCH_RPC_URL override the file; an .env file
next to the config is loaded first.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from chainorch.engine import MissingCodePolicy
from chainorch.network import TargetEnvironment
from chainorch.utils import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, RetryPolicy


CONFIG_FILENAME = "config.yaml"


class ConfigError(Exception):
    """Configuration validation error."""
    pass


def get_chainorch_home() -> Path:
    """Directory holding the default config ($CHAINORCH_HOME or ~/.chainorch)."""
    return Path(os.environ.get("CHAINORCH_HOME", Path.home() / ".chainorch")).expanduser()


class ChainorchConfig:
    """Complete chainorch configuration."""

    def __init__(self, config_path: Path, raw_config: Optional[dict[str, Any]] = None):
        self.config_path = Path(config_path)
        self.raw_config = raw_config if raw_config is not None else self._load_yaml()
        self.base_dir = self.config_path.parent

        network = self.raw_config.get("network") or {}
        self.network_name = os.environ.get("CHAINORCH_NETWORK") or network.get("name", "")
        self.network_tags = list(network.get("tags", []))
        self.chain_id = network.get("chain_id")

        rpc = self.raw_config.get("rpc") or {}
        self.rpc_url = os.environ.get("CHAINORCH_RPC_URL") or rpc.get("url")
        self.deployer = rpc.get("deployer")
        self.rpc_timeout = float(rpc.get("timeout", 30))
        self.confirmation_timeout = float(rpc.get("confirmation_timeout", 300))

        paths = self.raw_config.get("paths") or {}
        self.artifacts_dir = self._resolve(paths.get("artifacts", "artifacts"))
        self.deployments_dir = self._resolve(paths.get("deployments", "deployments"))

        # Retry
        self.retry = self.raw_config.get("retry") or {}

        # Policy
        self.policy = self.raw_config.get("policy") or {}

        # Logging
        self.logging = self.raw_config.get("logging") or {}

    def _load_yaml(self) -> dict[str, Any]:
        """Load and parse YAML configuration file."""
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {e}")

        if not config:
            raise ConfigError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ConfigError("Configuration file must contain a mapping")
        return config

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    def get_environment(self) -> TargetEnvironment:
        """Target environment described by the network section."""
        return TargetEnvironment(
            name=self.network_name,
            tags=frozenset(self.network_tags),
            chain_id=self.chain_id,
        )

    def get_records_dir(self) -> Path:
        """Per-network record directory (deployments/<network>)."""
        return self.deployments_dir / self.network_name

    def get_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=int(self.retry.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
            base_delay=float(self.retry.get("base_delay", DEFAULT_BASE_DELAY)),
        )

    def get_missing_code_policy(self) -> MissingCodePolicy:
        return MissingCodePolicy(self.policy.get("on_missing_code", MissingCodePolicy.REDEPLOY.value))

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation; None disables file logging."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return self._resolve(log_output)

    def get_log_level(self) -> str:
        """Get logging level."""
        return self.logging.get("level", "INFO").upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "structured")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return self.logging.get("console", True)

    def validate(self) -> None:
        """Validate entire configuration."""
        if not self.network_name:
            raise ConfigError("network.name is required")
        if "/" in self.network_name or "\\" in self.network_name:
            raise ConfigError(f"network.name must not contain path separators: {self.network_name}")

        try:
            policy = self.get_retry_policy()
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid retry settings: {e}")
        if policy.max_attempts < 1:
            raise ConfigError("retry.max_attempts must be >= 1")
        if policy.base_delay < 0:
            raise ConfigError("retry.base_delay must be >= 0")

        try:
            self.get_missing_code_policy()
        except ValueError:
            allowed = ", ".join(p.value for p in MissingCodePolicy)
            raise ConfigError(f"policy.on_missing_code must be one of: {allowed}")

        if self.get_log_format() not in ("structured", "pretty"):
            raise ConfigError("logging.format must be 'structured' or 'pretty'")

    def __repr__(self) -> str:
        return f"ChainorchConfig(network={self.network_name}, rpc={self.rpc_url})"


def default_config(network: str = "localhost") -> dict[str, Any]:
    """Config written by `chainorch init`."""
    return {
        "network": {"name": network, "tags": ["private", "test"]},
        "rpc": {"url": "http://127.0.0.1:8545", "deployer": None},
        "paths": {"artifacts": "artifacts", "deployments": "deployments"},
        "retry": {"max_attempts": DEFAULT_MAX_ATTEMPTS, "base_delay": DEFAULT_BASE_DELAY},
        "policy": {"on_missing_code": MissingCodePolicy.REDEPLOY.value},
        "logging": {"level": "INFO", "format": "pretty", "console": True},
    }


def load_config(config_path: Optional[Path] = None) -> ChainorchConfig:
    """
    Load chainorch configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $CHAINORCH_HOME/config.yaml

    Returns:
        Validated ChainorchConfig instance

    Raises:
        ConfigError: If config is invalid or missing
    """
    if config_path is None:
        config_path = get_chainorch_home() / CONFIG_FILENAME
    config_path = Path(config_path)

    env_file = config_path.parent / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    config = ChainorchConfig(config_path)
    config.validate()
    return config
