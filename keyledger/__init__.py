# keyledger/__init__.py
"""
keyledger: Append-Only Public Key History on EVM Ledgers

An account keeps an ordered history of its public keys on a shared ledger:
register, rotate (append a replacement), revoke, and query the active key
or the full history.

Submodules:
    registry/  - Key ledger model, contract client, resolver, signature gate
    config     - Environment-driven connection settings
    cli        - `keyledger` command-line front end

Quick Start:
    from keyledger import KeyLedger

    ledger = KeyLedger()
    ledger.register_key(alice, b"pk-1", "ed25519")
    ledger.rotate_key(alice, b"pk-2", "ed25519")
    ledger.get_active_key(alice).entry.public_key   # b"pk-2"
"""

from .config import LedgerConfig, ConfigError
from .registry import (
    KeyLedger,
    BoundLedger,
    KeyLedgerClient,
    KeyResolver,
    KeyEntry,
    ActiveKey,
    KeyStatus,
    SignatureAuthorizer,
    load_history,
    NO_PREVIOUS_INDEX,
    LedgerError,
    OutOfRangeError,
    AlreadyRevokedError,
    InvalidSignatureError,
)

__version__ = "0.1.0"

__all__ = [
    "LedgerConfig",
    "ConfigError",
    "KeyLedger",
    "BoundLedger",
    "KeyLedgerClient",
    "KeyResolver",
    "KeyEntry",
    "ActiveKey",
    "KeyStatus",
    "SignatureAuthorizer",
    "load_history",
    "NO_PREVIOUS_INDEX",
    "LedgerError",
    "OutOfRangeError",
    "AlreadyRevokedError",
    "InvalidSignatureError",
]
