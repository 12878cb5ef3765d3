# keyledger/registry/ledger.py
"""
keyledger Registry: In-Memory Key Ledger

Python model of the KeyManager contract state machine. Each owner has an
append-only history; entries can be revoked once and expire on their own.
The active key is the newest entry that is neither revoked nor expired.

Used as the reference behaviour and as a drop-in for KeyLedgerClient in
tests (no blockchain required).

Usage:
    ledger = KeyLedger()
    index = ledger.register_key(alice, b"pk-1", "ed25519")
    old, new = ledger.rotate_key(alice, b"pk-2", "ed25519", expires_at=t + 3600)
    ledger.revoke_key(alice, old)

    active = ledger.get_active_key(alice)
    if active.found:
        print(active.index, active.entry.public_key)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from web3 import Web3

from .auth import REGISTER_PREFIX, ROTATE_PREFIX, SignatureAuthorizer
from .errors import LedgerError
from .history import ActiveKey, KeyEntry, KeyHistory, NO_PREVIOUS_INDEX

logger = logging.getLogger(__name__)


# =============================================================================
# Notifications
# =============================================================================

@dataclass(frozen=True)
class KeyRegistered:
    owner: str
    index: int
    public_key: bytes
    alg: str
    expires_at: int


@dataclass(frozen=True)
class KeyRotated:
    owner: str
    old_index: int
    new_index: int
    public_key: bytes
    alg: str
    expires_at: int


@dataclass(frozen=True)
class KeyRevoked:
    owner: str
    index: int


LedgerEvent = Union[KeyRegistered, KeyRotated, KeyRevoked]
Listener = Callable[[LedgerEvent], None]


def _default_clock() -> int:
    return int(time.time())


# =============================================================================
# KeyLedger
# =============================================================================

class KeyLedger:
    """
    In-memory key ledger.

    Mutations are scoped to `sender` (the caller identity); reads take an
    explicit owner. Owners are normalised to checksum addresses.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
        authorizer: Optional[SignatureAuthorizer] = None,
    ):
        """
        Args:
            address: Ledger's own address (default: zero address)
            clock: Returns current unix time in seconds
            authorizer: Require register/rotate signatures when set
        """
        self.address = Web3.to_checksum_address(address or "0x" + "0" * 40)
        self._clock = clock or _default_clock
        self._authorizer = authorizer
        self._histories: Dict[str, KeyHistory] = {}
        self._listeners: List[Listener] = []
        self.events: List[LedgerEvent] = []

    # =========================================================================
    # Notifications
    # =========================================================================

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: LedgerEvent) -> None:
        self.events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # state is already committed; a listener must not undo it
                logger.exception("Listener %r failed on %s", listener, type(event).__name__)

    # =========================================================================
    # Write Operations
    # =========================================================================

    def register_key(
        self,
        sender: str,
        public_key: bytes,
        alg: str,
        expires_at: int = 0,
        signature: Optional[bytes] = None,
    ) -> int:
        """
        Append a new key to the sender's history.

        Returns:
            Index of the new entry
        """
        owner = self._normalize(sender)
        self._validate_key_fields(public_key, expires_at)
        if self._authorizer:
            self._authorizer.verify(REGISTER_PREFIX, owner, public_key, alg, expires_at, signature)

        index = self._append(owner, public_key, alg, expires_at)
        logger.info("Registered key %s[%d] alg=%s", owner, index, alg)
        self._emit(KeyRegistered(owner, index, bytes(public_key), alg, expires_at))
        return index

    def rotate_key(
        self,
        sender: str,
        public_key: bytes,
        alg: str,
        expires_at: int = 0,
        signature: Optional[bytes] = None,
    ) -> Tuple[int, int]:
        """
        Append a replacement key. The previous latest entry stays as it is;
        revoke it separately if needed.

        Returns:
            (old_index, new_index); old_index is NO_PREVIOUS_INDEX for an
            empty history
        """
        owner = self._normalize(sender)
        self._validate_key_fields(public_key, expires_at)
        if self._authorizer:
            self._authorizer.verify(ROTATE_PREFIX, owner, public_key, alg, expires_at, signature)

        history = self._histories.get(owner)
        latest = history.latest_index() if history is not None else None
        old_index = NO_PREVIOUS_INDEX if latest is None else latest

        new_index = self._append(owner, public_key, alg, expires_at)
        logger.info("Rotated key %s[%s -> %d] alg=%s", owner,
                    "none" if latest is None else latest, new_index, alg)
        self._emit(KeyRotated(owner, old_index, new_index, bytes(public_key), alg, expires_at))
        return old_index, new_index

    def revoke_key(self, sender: str, index: int) -> None:
        """
        Revoke entry `index` of the sender's history.

        Raises:
            OutOfRangeError: index not in [0, history length)
            AlreadyRevokedError: entry already revoked
        """
        owner = self._normalize(sender)
        history = self._histories.get(owner) or KeyHistory(owner)
        try:
            history.mark_revoked(index)
        except LedgerError as e:
            logger.warning("Revoke %s[%d] rejected: %s", owner, index, e)
            raise
        logger.info("Revoked key %s[%d]", owner, index)
        self._emit(KeyRevoked(owner, index))

    # =========================================================================
    # Read Operations
    # =========================================================================

    def get_history_count(self, owner: str) -> int:
        history = self._histories.get(self._normalize(owner))
        return len(history) if history is not None else 0

    def get_key(self, owner: str, index: int) -> KeyEntry:
        """Entry `index` of `owner`; raises OutOfRangeError."""
        owner = self._normalize(owner)
        history = self._histories.get(owner) or KeyHistory(owner)
        return history[index]

    def get_active_key(self, owner: str) -> ActiveKey:
        """Newest unrevoked, unexpired entry, or a not-found result."""
        history = self._histories.get(self._normalize(owner))
        if history is None:
            return ActiveKey.not_found()
        return history.find_active(self._clock())

    def get_active_key_index(self, owner: str) -> Tuple[bool, int]:
        active = self.get_active_key(owner)
        return active.found, active.index

    def get_history(self, owner: str) -> List[KeyEntry]:
        history = self._histories.get(self._normalize(owner))
        return history.snapshot() if history is not None else []

    def now(self) -> int:
        return self._clock()

    def bind(self, sender: str) -> BoundLedger:
        """View of this ledger with mutations issued as `sender`."""
        return BoundLedger(self, sender)

    # =========================================================================
    # Internals
    # =========================================================================

    def _append(self, owner: str, public_key: bytes, alg: str, expires_at: int) -> int:
        history = self._histories.get(owner)
        if history is None:
            history = self._histories[owner] = KeyHistory(owner)
        return history.append(KeyEntry(
            public_key=bytes(public_key),
            alg=alg,
            registered_at=self._clock(),
            expires_at=expires_at,
        ))

    @staticmethod
    def _validate_key_fields(public_key: bytes, expires_at: int) -> None:
        if not public_key:
            raise ValueError("public_key must not be empty")
        if expires_at < 0:
            raise ValueError("expires_at must be >= 0 (0 = never expires)")

    @staticmethod
    def _normalize(address: str) -> str:
        return Web3.to_checksum_address(address)


# =============================================================================
# BoundLedger
# =============================================================================

class BoundLedger:
    """
    KeyLedger bound to one caller.

    Same call shape as KeyLedgerClient, so code written against the
    contract client runs unchanged on the in-memory ledger.
    """

    def __init__(self, ledger: KeyLedger, sender: str):
        self.ledger = ledger
        self.account_address = Web3.to_checksum_address(sender)

    def register_key(self, public_key: bytes, alg: str, expires_at: int = 0,
                     signature: Optional[bytes] = None, **kwargs) -> int:
        return self.ledger.register_key(self.account_address, public_key, alg, expires_at, signature)

    def rotate_key(self, public_key: bytes, alg: str, expires_at: int = 0,
                   signature: Optional[bytes] = None, **kwargs) -> Tuple[int, int]:
        return self.ledger.rotate_key(self.account_address, public_key, alg, expires_at, signature)

    def revoke_key(self, index: int, **kwargs) -> None:
        self.ledger.revoke_key(self.account_address, index)

    def get_history_count(self, owner: str) -> int:
        return self.ledger.get_history_count(owner)

    def get_key(self, owner: str, index: int) -> KeyEntry:
        return self.ledger.get_key(owner, index)

    def get_active_key(self, owner: str) -> ActiveKey:
        return self.ledger.get_active_key(owner)

    def get_active_key_index(self, owner: str) -> Tuple[bool, int]:
        return self.ledger.get_active_key_index(owner)

    def get_history(self, owner: str) -> List[KeyEntry]:
        return self.ledger.get_history(owner)

    def now(self) -> int:
        return self.ledger.now()
