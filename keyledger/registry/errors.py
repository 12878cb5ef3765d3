# keyledger/registry/errors.py
"""
keyledger Registry: Error Taxonomy

Every ledger failure rejects the whole operation; state is left untouched.
Messages carry the same reason strings the KeyManager contract reverts with,
so on-chain and in-memory failures read the same.
"""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base ledger error."""
    pass


class OutOfRangeError(LedgerError):
    """Index is not below the owner's history length."""
    def __init__(self, owner: str, index: int, length: Optional[int] = None):
        self.owner = owner
        self.index = index
        self.length = length
        detail = f" (history length {length})" if length is not None else ""
        super().__init__(f"index out of range: {owner}[{index}]{detail}")


class AlreadyRevokedError(LedgerError):
    """Entry was revoked before."""
    def __init__(self, owner: str, index: int):
        self.owner = owner
        self.index = index
        super().__init__(f"key already revoked: {owner}[{index}]")


class InvalidSignatureError(LedgerError):
    """Authorization signature does not recover to an accepted identity."""
    def __init__(self, reason: str = ""):
        self.reason = reason
        message = "invalid signature"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransactionFailedError(LedgerError):
    """Transaction was mined but reverted (receipt status != 1)."""
    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Transaction failed: {tx_hash}")


class NoActiveKeyError(LedgerError):
    """Owner has no entry that is both unrevoked and unexpired."""
    def __init__(self, owner: str):
        self.owner = owner
        super().__init__(f"No active key for {owner}")
