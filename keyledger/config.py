# keyledger/config.py
"""
keyledger Configuration

Connection settings for the KeyManager contract, read from the environment
and overridden by command-line flags.

Environment:
    KEYLEDGER_RPC_URL           RPC endpoint
    INFURA_PROJECT_ID           Used for a Sepolia endpoint when no RPC URL is set
    KEYLEDGER_CONTRACT_ADDRESS  Deployed KeyManager address
    KEYLEDGER_PRIVATE_KEY       Sender key for write operations
    KEYLEDGER_CHAIN_ID          Chain ID (auto-detected if unset)
    KEYLEDGER_GAS_LIMIT         Gas limit override
    KEYLEDGER_SIGNED            "1" for the signature-gated contract variant
    KEYLEDGER_LOG_LEVEL         Logging level name (default: WARNING)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from web3 import Web3

SEPOLIA_CHAIN_ID = 11155111
INFURA_SEPOLIA_URL = "https://sepolia.infura.io/v3/{project_id}"


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def _to_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value, 0)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer") from exc


def _to_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class LedgerConfig:
    rpc_url: Optional[str] = None
    contract_address: Optional[str] = None
    private_key: Optional[str] = None
    chain_id: Optional[int] = None
    gas_limit: Optional[int] = None
    signed_variant: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> LedgerConfig:
        env = os.environ if environ is None else environ

        rpc_url = env.get("KEYLEDGER_RPC_URL") or None
        project_id = env.get("INFURA_PROJECT_ID")
        if rpc_url is None and project_id:
            rpc_url = INFURA_SEPOLIA_URL.format(project_id=project_id)

        return cls(
            rpc_url=rpc_url,
            contract_address=env.get("KEYLEDGER_CONTRACT_ADDRESS") or None,
            private_key=env.get("KEYLEDGER_PRIVATE_KEY") or None,
            chain_id=_to_int(env.get("KEYLEDGER_CHAIN_ID"), "KEYLEDGER_CHAIN_ID"),
            gas_limit=_to_int(env.get("KEYLEDGER_GAS_LIMIT"), "KEYLEDGER_GAS_LIMIT"),
            signed_variant=_to_bool(env.get("KEYLEDGER_SIGNED")),
            log_level=(env.get("KEYLEDGER_LOG_LEVEL") or "WARNING").upper(),
        )

    def override(self, **values) -> LedgerConfig:
        """Copy with every non-None value applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})

    def validate(self, require_key: bool = False) -> LedgerConfig:
        if not self.rpc_url:
            raise ConfigError("RPC URL missing (KEYLEDGER_RPC_URL or --rpc-url)")
        if not self.contract_address:
            raise ConfigError("contract address missing (KEYLEDGER_CONTRACT_ADDRESS or --contract)")
        if not Web3.is_address(self.contract_address):
            raise ConfigError(f"invalid contract address: {self.contract_address}")
        if require_key and not self.private_key:
            raise ConfigError("private key missing (KEYLEDGER_PRIVATE_KEY)")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigError(f"unknown log level: {self.log_level}")
        return self
