"""depositToRemote() calls."""

import eth_abi
import pytest
from hexbytes import HexBytes

from usdcx_bridge.chain import SEPOLIA
from usdcx_bridge.errors import TransactionFailed
from usdcx_bridge.gas import FeeEstimator
from usdcx_bridge.xreserve.address import encode_stacks_recipient
from usdcx_bridge.xreserve.constants import BRIDGE_FEE, DEPOSIT_GAS_FALLBACK, STACKS_DOMAIN, USDC_SEPOLIA, X_RESERVE_SEPOLIA
from usdcx_bridge.xreserve.deposit import BridgeExecutor, prepare_deposit_to_remote
from usdcx_bridge.xreserve.testing import DEPOSIT_TO_REMOTE_SELECTOR, DEPOSIT_TO_REMOTE_TYPES
from usdcx_bridge.xreserve.types import BridgeRequest


@pytest.fixture()
def bridge_request(owner, testnet_recipient) -> BridgeRequest:
    return BridgeRequest(amount=25 * 10**6, recipient=testnet_recipient, account=owner, chain_id=SEPOLIA)


@pytest.fixture()
def executor(web3) -> BridgeExecutor:
    return BridgeExecutor(web3, FeeEstimator(web3))


def test_deposit_arguments(web3, provider, executor, bridge_request, testnet_recipient):
    """Deposit calldata carries the Stacks domain, recipient and fee."""
    tx_hash = executor.submit(bridge_request)

    tx = provider.sent_transactions[0]
    assert tx["to"].lower() == X_RESERVE_SEPOLIA.lower()
    data = HexBytes(tx.get("data") or tx.get("input"))
    assert data[0:4] == DEPOSIT_TO_REMOTE_SELECTOR

    value, domain, recipient, token, max_fee, hook_data = eth_abi.decode(DEPOSIT_TO_REMOTE_TYPES, data[4:])
    assert value == 25 * 10**6
    assert domain == STACKS_DOMAIN
    assert recipient == encode_stacks_recipient(testnet_recipient)
    assert token.lower() == USDC_SEPOLIA.lower()
    assert max_fee == BRIDGE_FEE
    assert hook_data == b""

    assert provider.deposits[0]["tx_hash"] == tx_hash


def test_prepare_deposit_to_remote(web3, bridge_request):
    func = prepare_deposit_to_remote(web3, bridge_request)
    assert func.fn_name == "depositToRemote"
    assert func.address.lower() == X_RESERVE_SEPOLIA.lower()


def test_deposit_gas_buffer(executor, bridge_request):
    # 100k estimate + 20%
    assert executor.estimate_gas(bridge_request) == 120_000


def test_deposit_gas_fallback(executor, provider, bridge_request):
    """Estimation reverts, e.g. approval not visible yet."""
    provider.revert_deposits = True
    assert executor.estimate_gas(bridge_request) == DEPOSIT_GAS_FALLBACK


def test_deposit_uses_fresh_fee_quote(executor, provider, bridge_request):
    executor.submit(bridge_request, gas=200_000)
    executor.submit(bridge_request, gas=200_000)
    assert provider.api_call_counts["eth_getBlockByNumber"] == 2


def test_estimate_fees(executor, bridge_request):
    estimate = executor.estimate_fees(bridge_request)
    assert estimate.estimated_gas == 120_000
    assert estimate.bridge_fee == BRIDGE_FEE
    assert estimate.estimated_cost_wei == 120_000 * estimate.fee_quote.max_fee_per_gas
    # Sepolia is a fast settlement chain
    assert estimate.estimated_confirmation_seconds == 3


def test_deposit_rejected_by_node(executor, provider, bridge_request):
    provider.failing_methods.add("eth_sendTransaction")
    with pytest.raises(TransactionFailed, match="rejected"):
        executor.submit(bridge_request, gas=200_000)
