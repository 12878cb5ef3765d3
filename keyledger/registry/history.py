# keyledger/registry/history.py
"""
keyledger Registry: Key Entries and Per-Owner History

Data model shared by the in-memory ledger, the contract client and the
read model.

    KeyStatus:   ACTIVE -> REVOKED (one-shot, no reverse edge)
    KeyEntry:    one registered key instance (immutable value)
    ActiveKey:   result of an active-key lookup
    KeyHistory:  append-only list of KeyEntry for one owner

Indices handed out by KeyHistory never change: entries are appended at the
end and only ever replaced by their own revoked copy.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple

from .errors import AlreadyRevokedError, OutOfRangeError


# =============================================================================
# Constants
# =============================================================================

# uint256 max, the contract's "no previous entry" marker
NO_PREVIOUS_INDEX = 2 ** 256 - 1

# Suggested algorithm labels (not enforced)
KNOWN_ALGORITHMS = ("ed25519", "secp256k1", "rsa2048", "rsa4096")


# =============================================================================
# Types
# =============================================================================

class KeyStatus(IntEnum):
    """Revocation state of an entry."""
    ACTIVE = 0
    REVOKED = 1


@dataclass(frozen=True)
class KeyEntry:
    """
    One registered key.

    Attributes:
        public_key: Raw key material (opaque to the ledger)
        alg: Algorithm label, e.g. "ed25519"
        registered_at: Unix time of the registering operation
        expires_at: Unix time after which the key is not active (0 = never)
        status: ACTIVE or REVOKED
    """
    public_key: bytes
    alg: str
    registered_at: int
    expires_at: int = 0
    status: KeyStatus = KeyStatus.ACTIVE

    @property
    def revoked(self) -> bool:
        return self.status is KeyStatus.REVOKED

    def is_expired(self, now: int) -> bool:
        """Expiry is strict: an entry expiring exactly at `now` is expired."""
        if self.expires_at == 0:
            return False
        return self.expires_at <= now

    def is_active(self, now: int) -> bool:
        return not self.revoked and not self.is_expired(now)

    def revoke(self, owner: str = "", index: int = -1) -> KeyEntry:
        """Return the revoked copy of this entry."""
        if self.revoked:
            raise AlreadyRevokedError(owner, index)
        return replace(self, status=KeyStatus.REVOKED)

    def to_tuple(self) -> Tuple[bytes, str, int, int, bool]:
        """Contract return order: (publicKey, alg, registeredAt, expiresAt, revoked)."""
        return (self.public_key, self.alg, self.registered_at, self.expires_at, self.revoked)

    @classmethod
    def from_contract_tuple(cls, data: Tuple) -> KeyEntry:
        """Create from a getKey/getActiveKey return tuple."""
        return cls(
            public_key=bytes(data[0]),
            alg=data[1],
            registered_at=int(data[2]),
            expires_at=int(data[3]),
            status=KeyStatus.REVOKED if data[4] else KeyStatus.ACTIVE,
        )

    @classmethod
    def empty(cls) -> KeyEntry:
        """Zero-valued entry returned when no active key exists."""
        return cls(public_key=b"", alg="", registered_at=0, expires_at=0)


@dataclass(frozen=True)
class ActiveKey:
    """Active-key lookup result."""
    entry: KeyEntry
    index: int = NO_PREVIOUS_INDEX
    found: bool = False

    @classmethod
    def not_found(cls) -> ActiveKey:
        return cls(entry=KeyEntry.empty())


# =============================================================================
# KeyHistory
# =============================================================================

class KeyHistory:
    """
    Append-only key history of a single owner.

    Exposes append and index reads only. The one in-place change is
    `mark_revoked`, which swaps an entry for its revoked copy.
    """

    def __init__(self, owner: str):
        self.owner = owner
        self._entries: List[KeyEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[KeyEntry]:
        return iter(list(self._entries))

    def __getitem__(self, index: int) -> KeyEntry:
        self._check_index(index)
        return self._entries[index]

    def append(self, entry: KeyEntry) -> int:
        """Append entry, return its index."""
        self._entries.append(entry)
        return len(self._entries) - 1

    def latest_index(self) -> Optional[int]:
        """Index of the most recently appended entry, None if empty."""
        if not self._entries:
            return None
        return len(self._entries) - 1

    def mark_revoked(self, index: int) -> KeyEntry:
        """Flip entry `index` to REVOKED; fails if out of range or already revoked."""
        self._check_index(index)
        revoked = self._entries[index].revoke(self.owner, index)
        self._entries[index] = revoked
        return revoked

    def iter_newest_first(self) -> Iterator[Tuple[int, KeyEntry]]:
        """Lazily yield (index, entry) from the newest entry back to index 0."""
        for index in range(len(self._entries) - 1, -1, -1):
            yield index, self._entries[index]

    def find_active(self, now: int) -> ActiveKey:
        """Newest entry that is neither revoked nor expired at `now`."""
        for index, entry in self.iter_newest_first():
            if entry.is_active(now):
                return ActiveKey(entry=entry, index=index, found=True)
        return ActiveKey.not_found()

    def snapshot(self) -> List[KeyEntry]:
        return list(self._entries)

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self._entries):
            raise OutOfRangeError(self.owner, index, len(self._entries))
