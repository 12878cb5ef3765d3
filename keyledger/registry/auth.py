# keyledger/registry/auth.py
"""
keyledger Registry: Signature Authorization (optional hardening)

Register/rotate can be gated on an Ethereum personal-sign signature over a
challenge bound to the key fields and to the ledger's own address:

    digest = keccak256(abi.encodePacked(
        string  prefix,        # "RegisterKey:" or "RotateKey:"
        bytes   publicKey,
        string  alg,
        uint256 expiresAt,
        address ledger,
    ))
    signature = personal_sign(digest)   # EIP-191 "\\x19Ethereum Signed Message:\\n32"

The signature must recover to the caller or to a fixed authorized signer.

Usage:
    authorizer = SignatureAuthorizer(ledger_address)
    digest = challenge_hash(REGISTER_PREFIX, pk, "ed25519", 0, ledger_address)
    sig = sign_challenge(private_key, digest)
    authorizer.verify(REGISTER_PREFIX, sender, pk, "ed25519", 0, sig)
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .errors import InvalidSignatureError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

REGISTER_PREFIX = "RegisterKey:"
ROTATE_PREFIX = "RotateKey:"

SIGNATURE_SIZE = 65


# =============================================================================
# Helper Functions
# =============================================================================

def challenge_hash(
    prefix: str,
    public_key: bytes,
    alg: str,
    expires_at: int,
    ledger_address: str,
) -> bytes:
    """Compute the 32-byte challenge digest (matches Solidity abi.encodePacked)."""
    return bytes(Web3.solidity_keccak(
        ["string", "bytes", "string", "uint256", "address"],
        [prefix, public_key, alg, expires_at, Web3.to_checksum_address(ledger_address)],
    ))


def sign_challenge(private_key: Union[str, bytes], digest: bytes) -> bytes:
    """Personal-sign a challenge digest, returns the 65-byte signature."""
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
    return bytes(signed.signature)


def recover_signer(digest: bytes, signature: bytes) -> str:
    """
    Recover the checksum address that personal-signed `digest`.

    Raises:
        InvalidSignatureError: signature is malformed or unrecoverable
    """
    if len(signature) != SIGNATURE_SIZE:
        raise InvalidSignatureError(f"expected {SIGNATURE_SIZE} bytes, got {len(signature)}")
    try:
        return Account.recover_message(encode_defunct(primitive=digest), signature=signature)
    except Exception as e:
        raise InvalidSignatureError(str(e)) from e


# =============================================================================
# SignatureAuthorizer
# =============================================================================

class SignatureAuthorizer:
    """
    Checks register/rotate signatures for one ledger address.

    Accepted signers: the caller itself, or `authorized_signer` if set.
    """

    def __init__(self, ledger_address: str, authorized_signer: Optional[str] = None):
        self.ledger_address = Web3.to_checksum_address(ledger_address)
        self.authorized_signer = (
            Web3.to_checksum_address(authorized_signer) if authorized_signer else None
        )

    def challenge(self, prefix: str, public_key: bytes, alg: str, expires_at: int) -> bytes:
        return challenge_hash(prefix, public_key, alg, expires_at, self.ledger_address)

    def verify(
        self,
        prefix: str,
        sender: str,
        public_key: bytes,
        alg: str,
        expires_at: int,
        signature: Optional[bytes],
    ) -> str:
        """
        Verify `signature` for a register/rotate call by `sender`.

        Returns:
            The recovered signer address

        Raises:
            InvalidSignatureError: missing, malformed or foreign signature
        """
        if not signature:
            raise InvalidSignatureError("signature required")

        digest = self.challenge(prefix, public_key, alg, expires_at)
        signer = recover_signer(digest, bytes(signature))

        accepted = {Web3.to_checksum_address(sender)}
        if self.authorized_signer:
            accepted.add(self.authorized_signer)

        if signer not in accepted:
            logger.warning("Rejected %s signature from %s for %s", prefix, signer, sender)
            raise InvalidSignatureError(f"recovered {signer}")
        return signer
