# keyledger/registry/key_store.py
"""
keyledger Registry: KeyLedgerClient

Python interface to the deployed KeyManager contract.
Supports key registration, rotation, revocation, and history queries.

Usage:
    client = KeyLedgerClient(
        contract_address="0x...",
        rpc_url="https://sepolia.infura.io/v3/<project>",
        private_key="0x...",  # Optional, for write ops
    )

    index = client.register_key(b"pk-1", "ed25519", expires_at=0)
    old_index, new_index = client.rotate_key(b"pk-2", "ed25519")
    client.revoke_key(old_index)

    active = client.get_active_key(client.account_address)

Contract variants:
    KeyManager        registerKey/rotateKey(publicKey, alg, expiresAt)
    KeyManagerSigned  registerKey/rotateKey(publicKey, alg, expiresAt, signature)
                      with getActiveKeyIndex instead of getActiveKey
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD
from web3.middleware import ExtraDataToPOAMiddleware

from .auth import REGISTER_PREFIX, ROTATE_PREFIX, challenge_hash, sign_challenge
from .errors import (
    AlreadyRevokedError,
    InvalidSignatureError,
    LedgerError,
    OutOfRangeError,
    TransactionFailedError,
)
from .history import ActiveKey, KeyEntry, NO_PREVIOUS_INDEX

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

ABI_DIR = Path(__file__).parent / "contracts" / "abi"

DEFAULT_GAS = {
    "registerKey": 200000,
    "rotateKey": 250000,
    "revokeKey": 100000,
}


def load_abi(name: str = "KeyManager") -> List[Dict]:
    """Load a packaged contract ABI by contract name."""
    with open(ABI_DIR / f"{name}.json") as f:
        data = json.load(f)
    return data.get("abi", data)


def map_revert(error: Exception, owner: str = "", index: int = -1) -> LedgerError:
    """Translate a contract revert into the ledger error taxonomy."""
    message = str(error).lower()
    if "out of range" in message:
        return OutOfRangeError(owner, index)
    if "already revoked" in message:
        return AlreadyRevokedError(owner, index)
    if "invalid signature" in message:
        return InvalidSignatureError(str(error))
    return LedgerError(f"Contract call reverted: {error}")


# =============================================================================
# KeyLedgerClient
# =============================================================================

class KeyLedgerClient:
    """
    KeyManager contract interface.

    Write operations submit a signed transaction and block until the
    receipt is available.
    """

    def __init__(
        self,
        contract_address: str,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        web3: Optional[Web3] = None,
        signed_variant: bool = False,
        abi: Optional[List[Dict]] = None,
        gas_limit: Optional[int] = None,
    ):
        """
        Args:
            contract_address: Deployed KeyManager address
            rpc_url: RPC endpoint URL (ignored when `web3` is given)
            private_key: Private key for write operations (optional)
            chain_id: Chain ID (auto-detected if not provided)
            web3: Pre-configured Web3 instance
            signed_variant: Contract takes a signature on register/rotate
            abi: Override the packaged ABI
            gas_limit: Gas limit for every write (default: per-function)
        """
        if web3 is None and not rpc_url:
            raise ValueError("rpc_url or web3 instance required")

        self.contract_address = Web3.to_checksum_address(contract_address)
        self.rpc_url = rpc_url
        self.signed_variant = signed_variant
        self._private_key = private_key
        self._gas_limit = gas_limit

        if web3 is None:
            web3 = Web3(Web3.HTTPProvider(rpc_url))
            # PoA chains (Polygon, some testnets) carry extra header data
            web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self._w3 = web3

        if abi is None:
            abi = load_abi("KeyManagerSigned" if signed_variant else "KeyManager")
        self._contract = self._w3.eth.contract(address=self.contract_address, abi=abi)

        self._account = Account.from_key(private_key) if private_key else None
        self._chain_id = chain_id if chain_id is not None else self._w3.eth.chain_id

    @property
    def account_address(self) -> Optional[str]:
        """Sender address (if private key provided)."""
        return self._account.address if self._account else None

    # =========================================================================
    # Write Operations
    # =========================================================================

    def register_key(
        self,
        public_key: bytes,
        alg: str,
        expires_at: int = 0,
        signature: Optional[bytes] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> int:
        """
        Register a new key for the account.

        Returns:
            Index of the new entry
        """
        args = self._key_args(REGISTER_PREFIX, public_key, alg, expires_at, signature)
        receipt = self._transact("registerKey", args, gas_limit, gas_price)

        logs = self._contract.events.KeyRegistered().process_receipt(receipt, errors=DISCARD)
        if logs:
            return int(logs[0]["args"]["index"])

        # Fallback: event not decoded, read back the history length
        return self.get_history_count(self.account_address) - 1

    def rotate_key(
        self,
        public_key: bytes,
        alg: str,
        expires_at: int = 0,
        signature: Optional[bytes] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Append a replacement key. Does not revoke the previous one.

        Returns:
            (old_index, new_index)
        """
        args = self._key_args(ROTATE_PREFIX, public_key, alg, expires_at, signature)
        receipt = self._transact("rotateKey", args, gas_limit, gas_price)

        logs = self._contract.events.KeyRotated().process_receipt(receipt, errors=DISCARD)
        if logs:
            event = logs[0]["args"]
            return int(event["oldIndex"]), int(event["newIndex"])

        new_index = self.get_history_count(self.account_address) - 1
        return (new_index - 1 if new_index > 0 else NO_PREVIOUS_INDEX), new_index

    def revoke_key(
        self,
        index: int,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> str:
        """
        Revoke entry `index` of the account's history.

        Returns:
            tx_hash: Transaction hash
        """
        if index < 0:
            raise OutOfRangeError(self.account_address or "", index)
        receipt = self._transact("revokeKey", [index], gas_limit, gas_price, index=index)
        return Web3.to_hex(receipt["transactionHash"])

    # =========================================================================
    # Read Operations
    # =========================================================================

    def get_history_count(self, owner: str) -> int:
        owner = Web3.to_checksum_address(owner)
        return int(self._call("getHistoryCount", owner, owner=owner))

    def get_key(self, owner: str, index: int) -> KeyEntry:
        owner = Web3.to_checksum_address(owner)
        if index < 0:
            raise OutOfRangeError(owner, index)
        data = self._call("getKey", owner, index, owner=owner, index=index)
        return KeyEntry.from_contract_tuple(data)

    def get_active_key(self, owner: str) -> ActiveKey:
        owner = Web3.to_checksum_address(owner)
        if self.signed_variant:
            found, index = self.get_active_key_index(owner)
            if not found:
                return ActiveKey.not_found()
            return ActiveKey(entry=self.get_key(owner, index), index=index, found=True)

        data = self._call("getActiveKey", owner, owner=owner)
        if not data[5]:
            return ActiveKey.not_found()
        # getActiveKey does not report the index; locate it by scanning back
        entry = KeyEntry.from_contract_tuple(data[:5])
        index = self._locate(owner, entry)
        return ActiveKey(entry=entry, index=index, found=True)

    def get_active_key_index(self, owner: str) -> Tuple[bool, int]:
        owner = Web3.to_checksum_address(owner)
        if not self.signed_variant:
            active = self.get_active_key(owner)
            return active.found, active.index
        found, index = self._call("getActiveKeyIndex", owner, owner=owner)
        return bool(found), int(index)

    def get_history(self, owner: str) -> List[KeyEntry]:
        count = self.get_history_count(owner)
        return [self.get_key(owner, i) for i in range(count)]

    def now(self) -> int:
        """Timestamp of the latest block, the clock the contract's views use."""
        return int(self._w3.eth.get_block("latest")["timestamp"])

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_account(self) -> None:
        if not self._account:
            raise LedgerError("Private key required for write operations")

    def _key_args(
        self,
        prefix: str,
        public_key: bytes,
        alg: str,
        expires_at: int,
        signature: Optional[bytes],
    ) -> List[Any]:
        self._require_account()
        if not public_key:
            raise ValueError("public_key must not be empty")
        if expires_at < 0:
            raise ValueError("expires_at must be >= 0 (0 = never expires)")

        args: List[Any] = [bytes(public_key), alg, expires_at]
        if self.signed_variant:
            if signature is None:
                digest = challenge_hash(prefix, public_key, alg, expires_at, self.contract_address)
                signature = sign_challenge(self._private_key, digest)
            args.append(bytes(signature))
        return args

    def _transact(
        self,
        fn_name: str,
        args: List[Any],
        gas_limit: Optional[int],
        gas_price: Optional[int],
        index: int = -1,
    ) -> Dict[str, Any]:
        self._require_account()
        sender = self._account.address
        fn = getattr(self._contract.functions, fn_name)(*args)

        # Dry run first so reverts surface with their reason string
        try:
            fn.call({"from": sender})
        except ContractLogicError as e:
            err = map_revert(e, sender, index)
            logger.warning("%s rejected for %s: %s", fn_name, sender, err)
            raise err from e

        tx = fn.build_transaction({
            "from": sender,
            "chainId": self._chain_id,
            "nonce": self._w3.eth.get_transaction_count(sender),
            "gas": gas_limit or self._gas_limit or DEFAULT_GAS[fn_name],
            "gasPrice": gas_price or self._w3.eth.gas_price,
        })

        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("Submitted %s from %s: %s", fn_name, sender, Web3.to_hex(tx_hash))

        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise TransactionFailedError(Web3.to_hex(tx_hash))
        return receipt

    def _call(self, fn_name: str, *args: Any, owner: str = "", index: int = -1) -> Any:
        logger.debug("%s%r", fn_name, args)
        try:
            return getattr(self._contract.functions, fn_name)(*args).call()
        except ContractLogicError as e:
            raise map_revert(e, owner, index) from e

    def _locate(self, owner: str, entry: KeyEntry) -> int:
        for index in range(self.get_history_count(owner) - 1, -1, -1):
            if self.get_key(owner, index) == entry:
                return index
        # history changed between getActiveKey and the scan
        raise LedgerError(f"active key of {owner} changed during lookup; retry")
