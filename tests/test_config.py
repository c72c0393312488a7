"""Tests for chainorch configuration loading."""

import pytest
import yaml

from chainorch.config import ConfigError, default_config, get_chainorch_home, load_config
from chainorch.engine import MissingCodePolicy


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("CHAINORCH_NETWORK", "CHAINORCH_RPC_URL", "CHAINORCH_HOME"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="config.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data) if isinstance(data, dict) else data)
        return path
    return _write


@pytest.fixture
def full_config():
    return {
        "network": {"name": "arbitrum", "tags": ["public", "mainnet", "arbitrum"], "chain_id": 42161},
        "rpc": {"url": "https://arb.example.org", "deployer": "0x" + "aa" * 20, "timeout": 10},
        "paths": {"artifacts": "build/artifacts", "deployments": "deployments"},
        "retry": {"max_attempts": 5, "base_delay": 2},
        "policy": {"on_missing_code": "fail"},
        "logging": {"level": "debug", "format": "pretty", "output": "logs/run-{date}.log"},
    }


class TestLoadConfig:
    """Parsing and derived values."""

    def test_full_config(self, write_config, full_config, tmp_path):
        config = load_config(write_config(full_config))

        env = config.get_environment()
        assert env.name == "arbitrum"
        assert env.is_mainnet
        assert env.chain_id == 42161
        assert config.rpc_url == "https://arb.example.org"
        assert config.rpc_timeout == 10.0
        assert config.artifacts_dir == tmp_path / "build" / "artifacts"
        assert config.get_records_dir() == tmp_path / "deployments" / "arbitrum"
        assert config.get_retry_policy().max_attempts == 5
        assert config.get_retry_policy().base_delay == 2.0
        assert config.get_missing_code_policy() == MissingCodePolicy.FAIL
        assert config.get_log_level() == "DEBUG"
        assert config.get_log_format() == "pretty"
        assert config.get_log_file_path().parent == tmp_path / "logs"
        assert "{date}" not in config.get_log_file_path().name

    def test_defaults(self, write_config, tmp_path):
        config = load_config(write_config({"network": {"name": "localhost"}}))
        assert config.get_retry_policy().max_attempts == 3
        assert config.get_retry_policy().base_delay == 5.0
        assert config.get_missing_code_policy() == MissingCodePolicy.REDEPLOY
        assert config.get_log_file_path() is None
        assert config.should_log_to_console()
        assert config.get_records_dir() == tmp_path / "deployments" / "localhost"

    def test_env_overrides(self, write_config, full_config, monkeypatch):
        monkeypatch.setenv("CHAINORCH_NETWORK", "arbitrumSepolia")
        monkeypatch.setenv("CHAINORCH_RPC_URL", "http://127.0.0.1:8545")
        config = load_config(write_config(full_config))
        assert config.network_name == "arbitrumSepolia"
        assert config.rpc_url == "http://127.0.0.1:8545"

    def test_dotenv_next_to_config(self, write_config, full_config, tmp_path, monkeypatch):
        # Registered with monkeypatch so the value loaded from .env is undone
        monkeypatch.setenv("CHAINORCH_RPC_URL", "placeholder")
        monkeypatch.delenv("CHAINORCH_RPC_URL")
        (tmp_path / ".env").write_text("CHAINORCH_RPC_URL=http://from-dotenv:8545\n")
        config = load_config(write_config(full_config))
        assert config.rpc_url == "http://from-dotenv:8545"

    def test_default_location(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path / "home"))
        assert get_chainorch_home() == tmp_path / "home"
        with pytest.raises(ConfigError, match="not found"):
            load_config()


class TestValidation:
    """ConfigError cases."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, write_config):
        with pytest.raises(ConfigError, match="empty"):
            load_config(write_config(""))

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(write_config("network: [unclosed"))

    def test_network_required(self, write_config):
        with pytest.raises(ConfigError, match="network.name"):
            load_config(write_config({"rpc": {"url": "http://x"}}))

    def test_network_name_is_a_single_path_segment(self, write_config):
        with pytest.raises(ConfigError, match="path separators"):
            load_config(write_config({"network": {"name": "../prod"}}))

    @pytest.mark.parametrize("retry, message", [
        ({"max_attempts": 0}, "max_attempts"),
        ({"base_delay": -1}, "base_delay"),
        ({"max_attempts": "many"}, "Invalid retry"),
    ])
    def test_bad_retry(self, write_config, retry, message):
        with pytest.raises(ConfigError, match=message):
            load_config(write_config({"network": {"name": "dev"}, "retry": retry}))

    def test_bad_policy(self, write_config):
        with pytest.raises(ConfigError, match="on_missing_code"):
            load_config(write_config({"network": {"name": "dev"}, "policy": {"on_missing_code": "ignore"}}))

    def test_bad_log_format(self, write_config):
        with pytest.raises(ConfigError, match="logging.format"):
            load_config(write_config({"network": {"name": "dev"}, "logging": {"format": "xml"}}))


def test_default_config_is_valid(write_config):
    config = load_config(write_config(default_config("localhost")))
    assert config.get_environment().is_testnet
