# PATH: tests/unit/test_config.py
"""
Unit tests for configuration loading.
"""

import tempfile
import unittest
from pathlib import Path

from config import (
    SimulatorConfig,
    apply_env_overrides,
    deep_merge,
    load_simulator_config,
    load_yaml,
)
from harness.provider import MockEthereumProvider

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class TestConfigLoading(unittest.TestCase):
    """Tests for config loading functions."""

    def test_config_dir_exists(self):
        """Config directory exists."""
        self.assertTrue(CONFIG_DIR.exists())
        self.assertTrue((CONFIG_DIR / "default.yaml").exists())

    def test_load_defaults(self):
        """default.yaml loads into typed sections."""
        config = load_simulator_config(environ={})

        self.assertIsInstance(config, SimulatorConfig)
        self.assertEqual(config.rpc.chain_id, 1)
        self.assertEqual(config.simulation.time_increase_delta, 12)
        self.assertEqual(config.simulation.default_max_priority_fee_per_gas, 10**8)
        self.assertFalse(config.simulation.validation)
        self.assertTrue(config.simulation.trace_transfers)
        self.assertEqual(config.accounts.active_address, "0xd8da6bf26964af9d7eed9e03e53415d37aa96045")

    def test_missing_file(self):
        """Missing YAML raises FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            load_yaml("nope.yaml", CONFIG_DIR)

    def test_user_yaml_overrides_defaults(self):
        """user.yaml is merged over default.yaml."""
        with tempfile.TemporaryDirectory() as tmp:
            config_dir = Path(tmp)
            (config_dir / "default.yaml").write_text(
                "rpc:\n  url: http://default\n  chain_id: 1\nlogging:\n  level: INFO\n",
                encoding="utf-8",
            )
            (config_dir / "user.yaml").write_text("rpc:\n  url: http://user\n", encoding="utf-8")

            config = load_simulator_config(config_dir, environ={})

        self.assertEqual(config.rpc.url, "http://user")
        self.assertEqual(config.rpc.chain_id, 1)
        self.assertEqual(config.logging.level, "INFO")

    def test_empty_default_uses_dataclass_defaults(self):
        """An empty default.yaml still yields a full config."""
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "default.yaml").write_text("", encoding="utf-8")
            config = load_simulator_config(Path(tmp), environ={})

        self.assertEqual(config, SimulatorConfig())


class TestOverrides(unittest.TestCase):
    """Tests for merge and environment overrides."""

    def test_deep_merge_nested(self):
        base = {"rpc": {"url": "a", "chain_id": 1}, "logging": {"level": "INFO"}}
        merged = deep_merge(base, {"rpc": {"url": "b"}})

        self.assertEqual(merged, {"rpc": {"url": "b", "chain_id": 1}, "logging": {"level": "INFO"}})
        self.assertEqual(base["rpc"]["url"], "a")

    def test_env_overrides_cast(self):
        data = {"rpc": {"url": "a", "chain_id": 1}}
        result = apply_env_overrides(data, {
            "TEST_RPC_ENDPOINT": "http://env",
            "SIM_CHAIN_ID": "10",
            "SIM_ACTIVE_ADDRESS": "0x1000000000000000000000000000000000000012",
        })

        self.assertEqual(result["rpc"], {"url": "http://env", "chain_id": 10})
        self.assertEqual(result["accounts"]["active_address"], "0x1000000000000000000000000000000000000012")
        self.assertEqual(data["rpc"]["url"], "a")

    def test_empty_env_value_ignored(self):
        result = apply_env_overrides({"logging": {"level": "INFO"}}, {"SIM_LOG_LEVEL": ""})
        self.assertEqual(result["logging"]["level"], "INFO")

    def test_env_wins_over_yaml(self):
        config = load_simulator_config(environ={"SIM_LOG_LEVEL": "DEBUG"})
        self.assertEqual(config.logging.level, "DEBUG")


class TestProviderFromConfig(unittest.TestCase):
    def test_from_config(self):
        config = SimulatorConfig.from_dict({
            "rpc": {"url": "http://node", "chain_id": 10},
            "simulation": {"validation": True, "time_increase_delta": 2, "default_max_priority_fee_per_gas": 7},
            "accounts": {"active_address": "0x1000000000000000000000000000000000000012"},
        })
        provider = MockEthereumProvider.from_config(config)

        self.assertEqual(provider.upstream.rpc_url, "http://node")
        self.assertEqual(provider.upstream.chain_id, 10)
        self.assertTrue(provider.upstream.simulation_validation)
        self.assertEqual(provider.time_increase_delta, 2)
        self.assertEqual(provider.default_max_priority_fee_per_gas, 7)
        self.assertEqual(provider.active_address, "0x1000000000000000000000000000000000000012")


if __name__ == "__main__":
    unittest.main()
