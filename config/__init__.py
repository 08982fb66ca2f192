# PATH: config/__init__.py
"""
Configuration loading utilities for the simulation overlay.

Resolution order (later wins):
  1. config/default.yaml
  2. config/user.yaml (optional, not committed)
  3. environment variables (a .env file is loaded first):
     TEST_RPC_ENDPOINT, SIM_CHAIN_ID, SIM_ACTIVE_ADDRESS, SIM_LOG_LEVEL
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv


CONFIG_DIR = Path(__file__).parent

ENV_OVERRIDES = {
    "TEST_RPC_ENDPOINT": ("rpc", "url", str),
    "SIM_CHAIN_ID": ("rpc", "chain_id", int),
    "SIM_ACTIVE_ADDRESS": ("accounts", "active_address", str),
    "SIM_LOG_LEVEL": ("logging", "level", str),
}


def load_yaml(filename: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        filename: Name of file in config directory
        config_dir: Directory to look in (default: this package)

    Returns:
        Parsed YAML as dict
    """
    filepath = (config_dir or CONFIG_DIR) / filename
    if not filepath.exists():
        raise FileNotFoundError(f"Config file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class RPCConfig:
    url: str = "https://ethereum.dark.florist"
    chain_id: int = 1
    timeout_seconds: float = 30


@dataclass
class SimulationConfig:
    validation: bool = False
    trace_transfers: bool = True
    time_increase_delta: int = 12
    default_max_priority_fee_per_gas: int = 10**8


@dataclass
class AccountsConfig:
    active_address: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json_output: bool = True
    log_file: Optional[str] = None


@dataclass
class SimulatorConfig:
    """Full overlay configuration."""

    rpc: RPCConfig = field(default_factory=RPCConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    accounts: AccountsConfig = field(default_factory=AccountsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulatorConfig":
        return cls(
            rpc=RPCConfig(**data.get("rpc", {})),
            simulation=SimulationConfig(**data.get("simulation", {})),
            accounts=AccountsConfig(**data.get("accounts", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply ENV_OVERRIDES on top of a raw config dict."""
    environ = os.environ if environ is None else environ
    result = {section: dict(values or {}) for section, values in data.items()}
    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            result.setdefault(section, {})[key] = cast(value)
    return result


def load_simulator_config(
    config_dir: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> SimulatorConfig:
    """
    Load overlay configuration from YAML and the environment.

    Args:
        config_dir: Directory containing default.yaml / user.yaml
        environ: Environment mapping (default: os.environ after load_dotenv)

    Returns:
        SimulatorConfig with all overrides applied
    """
    config_dir = config_dir or CONFIG_DIR
    if environ is None:
        load_dotenv()

    data = load_yaml("default.yaml", config_dir)
    if (config_dir / "user.yaml").exists():
        data = deep_merge(data, load_yaml("user.yaml", config_dir))

    return SimulatorConfig.from_dict(apply_env_overrides(data, environ))
