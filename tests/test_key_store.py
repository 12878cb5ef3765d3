# tests/test_key_store.py
"""
keyledger KeyLedgerClient Tests

The contract is replaced by a stubbed Web3 instance; these tests cover the
client's own logic: transaction flow, event decoding, revert mapping and
result conversion.

Categories:
  C1. Construction / ABI
  C2. Write operations
  C3. Read operations
  C4. Error mapping
"""

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError

from keyledger.registry import (
    AlreadyRevokedError,
    InvalidSignatureError,
    KeyLedgerClient,
    LedgerError,
    NO_PREVIOUS_INDEX,
    OutOfRangeError,
    REGISTER_PREFIX,
    TransactionFailedError,
    challenge_hash,
    load_abi,
    load_history,
    recover_signer,
)

CONTRACT = Web3.to_checksum_address("0x" + "c3" * 20)
TX_HASH = b"\x11" * 32


@pytest.fixture
def account():
    return Account.create()


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.chain_id = 11155111
    w3.eth.gas_price = 10 ** 9
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = TX_HASH
    w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 1,
        "transactionHash": TX_HASH,
        "logs": [],
    }
    return w3


@pytest.fixture
def contract(w3):
    contract = w3.eth.contract.return_value
    for fn_name in ("registerKey", "rotateKey", "revokeKey"):
        fn = getattr(contract.functions, fn_name).return_value
        fn.build_transaction.side_effect = lambda params: {
            "to": CONTRACT,
            "value": 0,
            "data": "0x",
            "gas": params["gas"],
            "gasPrice": params["gasPrice"],
            "nonce": params["nonce"],
            "chainId": params["chainId"],
        }
    return contract


@pytest.fixture
def client(w3, contract, account):
    return KeyLedgerClient(CONTRACT, private_key=account.key, web3=w3)


# =============================================================================
# C1. Construction / ABI
# =============================================================================

def test_c1_packaged_abis():
    names = {item.get("name") for item in load_abi("KeyManager")}
    assert {"registerKey", "rotateKey", "revokeKey", "getHistoryCount",
            "getKey", "getActiveKey", "KeyRegistered", "KeyRotated", "KeyRevoked"} <= names

    signed = {item["name"]: item for item in load_abi("KeyManagerSigned")}
    assert [i["name"] for i in signed["registerKey"]["inputs"]][-1] == "signature"
    assert "getActiveKeyIndex" in signed


def test_c1_requires_endpoint():
    with pytest.raises(ValueError):
        KeyLedgerClient(CONTRACT)


def test_c1_chain_id_detected(client, account):
    assert client._chain_id == 11155111
    assert client.account_address == account.address


# =============================================================================
# C2. Write operations
# =============================================================================

def test_c2_register_returns_event_index(client, contract, w3):
    contract.events.KeyRegistered.return_value.process_receipt.return_value = [
        {"args": {"index": 3}}
    ]

    assert client.register_key(b"pk-1", "ed25519", 0) == 3

    contract.functions.registerKey.assert_called_with(b"pk-1", "ed25519", 0)
    w3.eth.send_raw_transaction.assert_called_once()
    w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH)


def test_c2_register_default_gas(client, contract):
    contract.events.KeyRegistered.return_value.process_receipt.return_value = [
        {"args": {"index": 0}}
    ]
    client.register_key(b"pk-1", "ed25519")

    params = contract.functions.registerKey.return_value.build_transaction.call_args[0][0]
    assert params["gas"] == 200000
    assert params["nonce"] == 7


def test_c2_rotate_returns_indices(client, contract):
    contract.events.KeyRotated.return_value.process_receipt.return_value = [
        {"args": {"oldIndex": 0, "newIndex": 1}}
    ]
    assert client.rotate_key(b"pk-2", "ed25519", 1234) == (0, 1)


def test_c2_rotate_fallback_without_event(client, contract):
    contract.events.KeyRotated.return_value.process_receipt.return_value = []
    contract.functions.getHistoryCount.return_value.call.return_value = 1

    assert client.rotate_key(b"pk-1", "ed25519") == (NO_PREVIOUS_INDEX, 0)


def test_c2_revoke_returns_tx_hash(client, contract):
    assert client.revoke_key(2) == "0x" + "11" * 32
    contract.functions.revokeKey.assert_called_with(2)


def test_c2_failed_receipt(client, w3):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "transactionHash": TX_HASH}
    with pytest.raises(TransactionFailedError):
        client.revoke_key(0)


def test_c2_writes_need_private_key(w3, contract):
    read_only = KeyLedgerClient(CONTRACT, web3=w3)
    with pytest.raises(LedgerError):
        read_only.register_key(b"pk", "ed25519")
    with pytest.raises(LedgerError):
        read_only.revoke_key(0)


def test_c2_input_validation(client, w3):
    with pytest.raises(ValueError):
        client.register_key(b"", "ed25519")
    with pytest.raises(ValueError):
        client.rotate_key(b"pk", "ed25519", -5)
    w3.eth.send_raw_transaction.assert_not_called()


def test_c2_signed_variant_signs_challenge(w3, contract, account):
    client = KeyLedgerClient(CONTRACT, private_key=account.key, web3=w3, signed_variant=True)
    contract.events.KeyRegistered.return_value.process_receipt.return_value = [
        {"args": {"index": 0}}
    ]

    client.register_key(b"pk-1", "ed25519", 99)

    args = contract.functions.registerKey.call_args[0]
    assert args[:3] == (b"pk-1", "ed25519", 99)
    digest = challenge_hash(REGISTER_PREFIX, b"pk-1", "ed25519", 99, CONTRACT)
    assert recover_signer(digest, args[3]) == account.address


# =============================================================================
# C3. Read operations
# =============================================================================

def test_c3_get_key(client, contract):
    contract.functions.getKey.return_value.call.return_value = (b"pk-1", "ed25519", 100, 0, True)

    entry = client.get_key("0x" + "a1" * 20, 0)
    assert entry.to_tuple() == (b"pk-1", "ed25519", 100, 0, True)


def test_c3_get_active_key(client, contract):
    entries = [
        (b"pk-1", "ed25519", 100, 0, False),
        (b"pk-2", "ed25519", 200, 0, True),
    ]
    contract.functions.getHistoryCount.return_value.call.return_value = 2
    contract.functions.getKey.side_effect = lambda owner, i: MagicMock(
        call=MagicMock(return_value=entries[i])
    )
    contract.functions.getActiveKey.return_value.call.return_value = entries[0] + (True,)

    active = client.get_active_key("0x" + "a1" * 20)
    assert active.found is True
    assert active.index == 0
    assert active.entry.public_key == b"pk-1"


def test_c3_get_active_key_not_found(client, contract):
    contract.functions.getActiveKey.return_value.call.return_value = (b"", "", 0, 0, False, False)

    active = client.get_active_key("0x" + "a1" * 20)
    assert active.found is False
    assert active.entry.to_tuple() == (b"", "", 0, 0, False)


def test_c3_signed_variant_active_index(w3, contract):
    client = KeyLedgerClient(CONTRACT, web3=w3, signed_variant=True)
    contract.functions.getActiveKeyIndex.return_value.call.return_value = (True, 1)
    contract.functions.getKey.return_value.call.return_value = (b"pk-2", "ed25519", 5, 0, False)

    assert client.get_active_key_index("0x" + "a1" * 20) == (True, 1)
    active = client.get_active_key("0x" + "a1" * 20)
    assert (active.found, active.index, active.entry.public_key) == (True, 1, b"pk-2")


def test_c3_get_history(client, contract):
    contract.functions.getHistoryCount.return_value.call.return_value = 2
    contract.functions.getKey.return_value.call.return_value = (b"pk", "ed25519", 1, 0, False)

    assert len(client.get_history("0x" + "a1" * 20)) == 2


def test_c3_active_key_lost_during_lookup(client, contract):
    # getActiveKey reports an entry the follow-up scan no longer finds
    contract.functions.getActiveKey.return_value.call.return_value = (
        b"pk-gone", "ed25519", 100, 0, False, True
    )
    contract.functions.getHistoryCount.return_value.call.return_value = 1
    contract.functions.getKey.return_value.call.return_value = (b"pk-new", "ed25519", 200, 0, False)

    with pytest.raises(LedgerError, match="changed during lookup"):
        client.get_active_key("0x" + "a1" * 20)


def test_c3_now_is_block_time(client, w3):
    w3.eth.get_block.return_value = {"timestamp": 1_700_000_000}
    assert client.now() == 1_700_000_000
    w3.eth.get_block.assert_called_with("latest")


def test_c3_history_view_uses_block_time(client, contract, w3):
    # expired at block time, still valid by the local wall clock
    w3.eth.get_block.return_value = {"timestamp": 10 ** 12}
    entries = [
        (b"pk-1", "ed25519", 100, 0, False),
        (b"pk-2", "ed25519", 200, 10 ** 12, False),
    ]
    contract.functions.getHistoryCount.return_value.call.return_value = 2
    contract.functions.getKey.side_effect = lambda owner, i: MagicMock(
        call=MagicMock(return_value=entries[i])
    )

    rows = load_history(client, "0x" + "a1" * 20)
    assert [r.active for r in rows] == [True, False]


# =============================================================================
# C4. Error mapping
# =============================================================================

@pytest.mark.parametrize("reason, error", [
    ("execution reverted: index out of range", OutOfRangeError),
    ("execution reverted: already revoked", AlreadyRevokedError),
    ("execution reverted: invalid signature", InvalidSignatureError),
    ("execution reverted", LedgerError),
])
def test_c4_revoke_revert_mapping(client, contract, w3, reason, error):
    contract.functions.revokeKey.return_value.call.side_effect = ContractLogicError(reason)

    with pytest.raises(error):
        client.revoke_key(5)
    w3.eth.send_raw_transaction.assert_not_called()


def test_c4_get_key_out_of_range(client, contract):
    contract.functions.getKey.return_value.call.side_effect = ContractLogicError(
        "execution reverted: index out of range"
    )
    with pytest.raises(OutOfRangeError) as exc:
        client.get_key("0x" + "a1" * 20, 9)
    assert exc.value.index == 9


def test_c4_negative_index(client, w3):
    with pytest.raises(OutOfRangeError):
        client.revoke_key(-1)
    with pytest.raises(OutOfRangeError):
        client.get_key("0x" + "a1" * 20, -1)
    w3.eth.send_raw_transaction.assert_not_called()
