"""
TOML-based configuration for confidential balance clients.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

The network section resolves to a frozen ``NetworkConfig`` which is handed
explicitly to every builder, reader and orchestrator; nothing in the package
reads a module-level network setting.

Usage:
    from confidential_balance.config import load_config
    cfg = load_config("confbal.toml")
    network = cfg.network_config()
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]

from .errors import ConfigError

DEFAULT_MODULE_NAME = "confidential_asset"

# on-chain module address per network
KNOWN_NETWORKS: dict[str, str] = {
    "mainnet": "0x1",
    "testnet": "0x7",
    "devnet": "0x7",
    "local": "0xcafe",
}

DEFAULT_NODE_URLS: dict[str, str] = {
    "mainnet": "https://fullnode.mainnet.example.org",
    "testnet": "https://fullnode.testnet.example.org",
    "devnet": "https://fullnode.devnet.example.org",
    "local": "http://127.0.0.1:8080",
}


@dataclass(frozen=True)
class NetworkConfig:
    """Where the confidential asset module lives on one network."""
    name: str
    module_address: str
    module_name: str = DEFAULT_MODULE_NAME

    def __post_init__(self) -> None:
        if not self.module_address.startswith("0x"):
            raise ConfigError(f"module address must be 0x-prefixed: {self.module_address!r}")
        if not self.module_name:
            raise ConfigError("module name cannot be empty")

    @classmethod
    def for_network(cls, name: str, module_address: str | None = None) -> NetworkConfig:
        key = name.lower()
        if module_address is None:
            if key not in KNOWN_NETWORKS:
                raise ConfigError(
                    f"unknown network {name!r}; expected one of {sorted(KNOWN_NETWORKS)}"
                )
            module_address = KNOWN_NETWORKS[key]
        return cls(name=key, module_address=module_address)


@dataclass
class NetworkSection:
    """Network selection."""
    name: str = "local"
    module_address: str | None = None   # overrides the network default
    module_name: str = DEFAULT_MODULE_NAME


@dataclass
class LedgerSection:
    """Node transport settings."""
    node_url: str | None = None          # defaults per network
    request_timeout: float = 10.0
    commit_timeout: float = 30.0         # bound on a commitment wait
    poll_interval: float = 0.5


@dataclass
class ProverSection:
    """Proof backend settings."""
    verify_before_submit: bool = True
    max_workers: int | None = None       # None = ThreadPoolExecutor default


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class ClientConfig:
    """Top-level configuration container."""
    network: NetworkSection = field(default_factory=NetworkSection)
    ledger: LedgerSection = field(default_factory=LedgerSection)
    prover: ProverSection = field(default_factory=ProverSection)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def network_config(self) -> NetworkConfig:
        base = NetworkConfig.for_network(self.network.name, self.network.module_address)
        if self.network.module_name != base.module_name:
            return NetworkConfig(
                name=base.name,
                module_address=base.module_address,
                module_name=self.network.module_name,
            )
        return base

    @property
    def node_url(self) -> str:
        if self.ledger.node_url:
            return self.ledger.node_url
        try:
            return DEFAULT_NODE_URLS[self.network.name.lower()]
        except KeyError:
            raise ConfigError(
                f"no node_url configured for network {self.network.name!r}"
            ) from None


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _as_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"not a boolean: {value!r}")


def _as_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def load_config(path: str | None = None) -> ClientConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        CONFBAL_NETWORK         -> network.name
        CONFBAL_MODULE_ADDRESS  -> network.module_address
        CONFBAL_NODE_URL        -> ledger.node_url
        CONFBAL_COMMIT_TIMEOUT  -> ledger.commit_timeout
        CONFBAL_POLL_INTERVAL   -> ledger.poll_interval
        CONFBAL_VERIFY_PROOFS   -> prover.verify_before_submit
        CONFBAL_PROVER_WORKERS  -> prover.max_workers
        CONFBAL_LOG_LEVEL       -> logging.level
        CONFBAL_LOG_FMT         -> logging.format
        CONFBAL_LOG_FILE        -> logging.file
    """
    cfg = ClientConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            try:
                with open(p, "rb") as f:
                    data = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"cannot parse {path}: {exc}") from exc
            for section_name, section_dc in [
                ("network", cfg.network),
                ("ledger", cfg.ledger),
                ("prover", cfg.prover),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("CONFBAL_NETWORK"):
        cfg.network.name = v
    if v := os.environ.get("CONFBAL_MODULE_ADDRESS"):
        cfg.network.module_address = v
    if v := os.environ.get("CONFBAL_NODE_URL"):
        cfg.ledger.node_url = v
    if v := os.environ.get("CONFBAL_COMMIT_TIMEOUT"):
        cfg.ledger.commit_timeout = _as_float("CONFBAL_COMMIT_TIMEOUT", v)
    if v := os.environ.get("CONFBAL_POLL_INTERVAL"):
        cfg.ledger.poll_interval = _as_float("CONFBAL_POLL_INTERVAL", v)
    if v := os.environ.get("CONFBAL_VERIFY_PROOFS"):
        cfg.prover.verify_before_submit = _as_bool(v)
    if v := os.environ.get("CONFBAL_PROVER_WORKERS"):
        cfg.prover.max_workers = int(_as_float("CONFBAL_PROVER_WORKERS", v))
    if v := os.environ.get("CONFBAL_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("CONFBAL_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("CONFBAL_LOG_FILE"):
        cfg.logging.file = v

    # resolve early so a bad network name fails at load time
    cfg.network_config()
    return cfg
