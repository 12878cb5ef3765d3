# keyledger/registry/__init__.py
"""
keyledger Registry Layer

Per-owner, append-only public key history on an EVM ledger.

Components:
    KeyLedger:         In-memory model of the KeyManager contract
    KeyLedgerClient:   web3.py interface to the deployed contract
    KeyResolver:       Owner -> active key resolution with caching
    SignatureAuthorizer: Optional signature gate for register/rotate

Usage:
    from keyledger.registry import KeyLedgerClient, load_history

    client = KeyLedgerClient(
        contract_address="0x...",
        rpc_url="https://...",
        private_key="0x...",  # For write operations
    )
    client.register_key(b"my-public-key", "ed25519", expires_at=0)

    for row in load_history(client, client.account_address):
        print(row.index, row.entry.alg, "active" if row.active else "")
"""

from .errors import (
    LedgerError,
    OutOfRangeError,
    AlreadyRevokedError,
    InvalidSignatureError,
    TransactionFailedError,
    NoActiveKeyError,
)

from .history import (
    KeyStatus,
    KeyEntry,
    ActiveKey,
    KeyHistory,
    NO_PREVIOUS_INDEX,
    KNOWN_ALGORITHMS,
)

from .auth import (
    SignatureAuthorizer,
    challenge_hash,
    sign_challenge,
    recover_signer,
    REGISTER_PREFIX,
    ROTATE_PREFIX,
)

from .ledger import (
    KeyLedger,
    BoundLedger,
    KeyRegistered,
    KeyRotated,
    KeyRevoked,
)

from .key_store import KeyLedgerClient, load_abi

from .resolver import (
    HistoryRow,
    KeyResolver,
    load_history,
)

__all__ = [
    # Errors
    "LedgerError",
    "OutOfRangeError",
    "AlreadyRevokedError",
    "InvalidSignatureError",
    "TransactionFailedError",
    "NoActiveKeyError",
    # History
    "KeyStatus",
    "KeyEntry",
    "ActiveKey",
    "KeyHistory",
    "NO_PREVIOUS_INDEX",
    "KNOWN_ALGORITHMS",
    # Auth
    "SignatureAuthorizer",
    "challenge_hash",
    "sign_challenge",
    "recover_signer",
    "REGISTER_PREFIX",
    "ROTATE_PREFIX",
    # Ledger
    "KeyLedger",
    "BoundLedger",
    "KeyRegistered",
    "KeyRotated",
    "KeyRevoked",
    # Client
    "KeyLedgerClient",
    "load_abi",
    # Resolver
    "HistoryRow",
    "KeyResolver",
    "load_history",
]
