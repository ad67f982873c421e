"""End to end bridge flow against the fake xReserve node."""

import pytest
from web3 import Web3

from usdcx_bridge.chain import BASE, ETHEREUM, SEPOLIA
from usdcx_bridge.errors import (
    REASON_AMOUNT_TOO_SMALL,
    REASON_CHAIN_MISMATCH,
    REASON_INVALID_ACCOUNT,
    REASON_INVALID_AMOUNT,
    REASON_INVALID_CHAIN,
    REASON_INVALID_SLIPPAGE,
    REASON_MALFORMED_ADDRESS,
    REASON_MIN_AMOUNT_OUT,
    REASON_WRONG_NETWORK,
    InvalidRequest,
    NoMessageEvent,
    TransactionFailed,
    UnsupportedChain,
)
from usdcx_bridge.xreserve.constants import BRIDGE_FEE, StacksNetwork
from usdcx_bridge.xreserve.testing import forge_attestation
from usdcx_bridge.xreserve.types import BridgeEventType, BridgeRequest, TransactionStatus


@pytest.fixture()
def events(orchestrator) -> list:
    collected = []
    orchestrator.add_listener(collected.append)
    return collected


@pytest.fixture()
def bridge_request(owner, testnet_recipient) -> BridgeRequest:
    return BridgeRequest(amount=25 * 10**6, recipient=testnet_recipient, account=owner, chain_id=SEPOLIA)


def make_request(owner, recipient, **kwargs) -> BridgeRequest:
    params = dict(amount=25 * 10**6, recipient=recipient, account=owner, chain_id=SEPOLIA)
    params.update(kwargs)
    return BridgeRequest(**params)


def test_bridge(orchestrator, provider, store, bridge_request, events, testnet_recipient):
    """Approve, deposit and store a pending transaction."""
    transaction = orchestrator.bridge(bridge_request)

    assert transaction.status == TransactionStatus.pending
    assert transaction.chain_id == SEPOLIA
    assert transaction.network == StacksNetwork.testnet
    assert transaction.recipient == testnet_recipient
    assert transaction.amount == 25 * 10**6
    assert transaction.approval_tx_hash is not None
    # 50 bps default slippage
    assert transaction.min_amount_out == 24_875_000

    assert len(provider.deposits) == 1
    assert transaction.deposit_tx_hash == provider.deposits[0]["tx_hash"]
    assert transaction.message_hash == Web3.to_hex(Web3.keccak(provider.deposits[0]["message"]))

    assert store.get_transaction(transaction.deposit_tx_hash) == transaction

    assert [e.type for e in events] == [
        BridgeEventType.approval_started,
        BridgeEventType.approval_submitted,
        BridgeEventType.approval_confirmed,
        BridgeEventType.bridge_started,
        BridgeEventType.bridge_submitted,
        BridgeEventType.bridge_confirmed,
    ]
    assert events[1].tx_hash == transaction.approval_tx_hash
    assert events[4].tx_hash == transaction.deposit_tx_hash
    assert events[5].data["message_hash"] == transaction.message_hash


def test_bridge_twice_approves_once(orchestrator, provider, bridge_request, events):
    orchestrator.bridge(bridge_request)
    second = orchestrator.bridge(bridge_request)

    assert second.approval_tx_hash is None
    assert len(provider.approvals) == 1
    assert len(provider.deposits) == 2
    assert BridgeEventType.approval_submitted not in [e.type for e in events[6:]]


def test_bridge_explicit_min_amount_out(orchestrator, owner, testnet_recipient):
    transaction = orchestrator.bridge(make_request(owner, testnet_recipient, min_amount_out=20 * 10**6))
    assert transaction.min_amount_out == 20 * 10**6


@pytest.mark.parametrize(
    "amount, reason_code",
    [
        (0, REASON_INVALID_AMOUNT),
        (-1, REASON_INVALID_AMOUNT),
        (25.0, REASON_INVALID_AMOUNT),
        (9_999_999, REASON_AMOUNT_TOO_SMALL),
    ],
)
def test_bad_amount(orchestrator, provider, owner, testnet_recipient, amount, reason_code):
    """Validation happens before any RPC call."""
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.bridge(make_request(owner, testnet_recipient, amount=amount))

    assert exc_info.value.reason_code == reason_code
    assert sum(provider.api_call_counts.values()) == 0


def test_minimum_amount_message(orchestrator, owner, testnet_recipient):
    with pytest.raises(InvalidRequest, match="Minimum bridge amount is 10.00 USDC"):
        orchestrator.validate_request(make_request(owner, testnet_recipient, amount=5 * 10**6))


def test_wrong_network_recipient(orchestrator, provider, owner, mainnet_recipient, events):
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.bridge(make_request(owner, mainnet_recipient))

    assert exc_info.value.reason_code == REASON_WRONG_NETWORK
    assert sum(provider.api_call_counts.values()) == 0
    assert events[-1].type == BridgeEventType.error
    assert events[-1].data["error_type"] == "InvalidAddress"


def test_malformed_recipient(orchestrator, owner):
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.bridge(make_request(owner, "ST-not-an-address"))
    assert exc_info.value.reason_code == REASON_MALFORMED_ADDRESS


def test_unknown_chain(orchestrator, owner, testnet_recipient):
    with pytest.raises(UnsupportedChain) as exc_info:
        orchestrator.bridge(make_request(owner, testnet_recipient, chain_id=12345))
    assert exc_info.value.chain_id == 12345


@pytest.mark.parametrize("chain_id", ["11155111", None, 11155111.0, True])
def test_chain_id_not_integer(orchestrator, provider, owner, testnet_recipient, chain_id):
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.validate_request(make_request(owner, testnet_recipient, chain_id=chain_id))
    assert exc_info.value.reason_code == REASON_INVALID_CHAIN
    assert sum(provider.api_call_counts.values()) == 0


def test_chain_without_direct_route(orchestrator, provider, owner, mainnet_recipient):
    with pytest.raises(UnsupportedChain, match="no direct xReserve route"):
        orchestrator.bridge(make_request(owner, mainnet_recipient, chain_id=BASE))
    assert sum(provider.api_call_counts.values()) == 0


def test_invalid_account(orchestrator, testnet_recipient):
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.bridge(make_request("0x1234", testnet_recipient))
    assert exc_info.value.reason_code == REASON_INVALID_ACCOUNT


def test_invalid_slippage(orchestrator, owner, testnet_recipient):
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.bridge(make_request(owner, testnet_recipient, slippage_bps=500))
    assert exc_info.value.reason_code == REASON_INVALID_SLIPPAGE


def test_min_amount_out_above_worst_case(orchestrator, owner, testnet_recipient):
    amount = 25 * 10**6
    orchestrator.validate_request(make_request(owner, testnet_recipient, min_amount_out=amount - BRIDGE_FEE))

    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.validate_request(make_request(owner, testnet_recipient, min_amount_out=amount - BRIDGE_FEE + 1))
    assert exc_info.value.reason_code == REASON_MIN_AMOUNT_OUT


def test_chain_mismatch(orchestrator, provider, owner, mainnet_recipient):
    """Request for Ethereum, Web3 connected to Sepolia."""
    with pytest.raises(InvalidRequest) as exc_info:
        orchestrator.bridge(make_request(owner, mainnet_recipient, chain_id=ETHEREUM))

    assert exc_info.value.reason_code == REASON_CHAIN_MISMATCH
    assert provider.api_call_counts["eth_sendTransaction"] == 0


def test_deposit_reverts(orchestrator, provider, store, bridge_request, events):
    provider.revert_deposits = True

    with pytest.raises(TransactionFailed) as exc_info:
        orchestrator.bridge(bridge_request)

    assert "deposit failed" in exc_info.value.revert_reason
    assert store.list_transactions() == []
    assert events[-1].type == BridgeEventType.error
    assert events[-1].data["error_type"] == "TransactionFailed"


def test_deposit_without_message_event(orchestrator, provider, store, bridge_request):
    provider.emit_message_sent = False

    with pytest.raises(NoMessageEvent):
        orchestrator.bridge(bridge_request)

    assert store.list_transactions() == []


def test_listener_failure_does_not_stop_bridge(orchestrator, bridge_request, events):
    def broken(event):
        raise RuntimeError("listener bug")

    orchestrator.add_listener(broken)
    transaction = orchestrator.bridge(bridge_request)

    assert transaction.status == TransactionStatus.pending
    assert events[-1].type == BridgeEventType.bridge_confirmed


def test_remove_listener(orchestrator, bridge_request):
    collected = []
    remove = orchestrator.add_listener(collected.append)
    remove()
    remove()
    orchestrator.bridge(bridge_request)
    assert collected == []


def test_complete_bridge(orchestrator, provider, iris_session, iris_response, store, bridge_request, events):
    transaction = orchestrator.bridge(bridge_request)
    attestation = forge_attestation(provider.deposits[0]["message"])
    iris_session.get.return_value = iris_response(200, {"status": "complete", "attestation": attestation})

    transaction = orchestrator.complete_bridge(transaction)

    assert transaction.status == TransactionStatus.completed
    assert transaction.attestation == attestation
    assert store.get_transaction(transaction.deposit_tx_hash).status == TransactionStatus.completed
    assert events[-1].type == BridgeEventType.attestation_received
    url = iris_session.get.call_args[0][0]
    assert url.endswith(f"/attestations/{transaction.message_hash}")

    # Already complete, no more lookups
    orchestrator.complete_bridge(transaction)
    assert iris_session.get.call_count == 1


def test_complete_bridge_gives_up(orchestrator, iris_session, iris_response, store, sleeps, bridge_request):
    transaction = orchestrator.bridge(bridge_request)
    iris_session.get.return_value = iris_response(404)

    transaction = orchestrator.complete_bridge(transaction)

    assert transaction.status == TransactionStatus.failed
    assert "not available" in transaction.error
    assert iris_session.get.call_count == 11
    assert len(sleeps) == 10
    assert store.get_transaction(transaction.deposit_tx_hash).status == TransactionStatus.failed


def test_estimate_fees(orchestrator, bridge_request):
    estimate = orchestrator.estimate_fees(bridge_request)
    assert estimate.bridge_fee == BRIDGE_FEE
    assert estimate.estimated_gas > 0


def test_resolve_message_hash(orchestrator, bridge_request):
    transaction = orchestrator.bridge(bridge_request)
    assert orchestrator.resolve_message_hash(transaction.deposit_tx_hash) == transaction.message_hash

    with pytest.raises(TransactionFailed, match="not found"):
        orchestrator.resolve_message_hash("0x" + "00" * 32)
