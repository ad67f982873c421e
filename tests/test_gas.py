"""Fee estimation."""

import datetime
from unittest.mock import MagicMock, PropertyMock

import pytest

from usdcx_bridge.chain import ETHEREUM, POLYGON, SEPOLIA
from usdcx_bridge.config import CONSERVATIVE_FEE_PROFILE, FAST_FEE_PROFILE
from usdcx_bridge.confirmation import wait_transaction_to_complete
from usdcx_bridge.gas import FeeEstimator, FeeQuoteMethod, apply_fee_profile

GWEI = 10**9


def make_web3(base_fee: int | None = 10 * GWEI, max_priority_fee: int = 1 * GWEI, gas_price: int = 15 * GWEI) -> MagicMock:
    """Web3 stand-in with a scripted fee market."""
    web3 = MagicMock()
    web3.eth.get_block.return_value = {"number": 1} if base_fee is None else {"number": 1, "baseFeePerGas": base_fee}
    web3.eth.max_priority_fee = max_priority_fee
    web3.eth.gas_price = gas_price
    return web3


def test_fee_quote_london(tester_web3, deployer):
    """Quote from a London EVM and use it in a transaction."""
    base_fee = tester_web3.eth.get_block("latest")["baseFeePerGas"]
    tip = tester_web3.eth.max_priority_fee

    quote = FeeEstimator(tester_web3).quote(SEPOLIA)

    assert quote.method == FeeQuoteMethod.london
    assert quote.base_fee == base_fee
    assert quote.max_priority_fee_per_gas == tip * 150 // 100
    assert quote.max_fee_per_gas >= base_fee + quote.max_priority_fee_per_gas

    tx_hash = tester_web3.eth.send_transaction(
        {
            "from": deployer,
            "to": tester_web3.eth.accounts[1],
            "value": 1,
            "gas": 21_000,
            **quote.get_tx_gas_params(),
        }
    )
    receipt = wait_transaction_to_complete(tester_web3, tx_hash, max_timeout=datetime.timedelta(seconds=5), poll_delay=datetime.timedelta(milliseconds=10))
    assert receipt["status"] == 1


def test_fee_quote_fast_chain():
    """Sepolia uses the fast settlement profile."""
    quote = FeeEstimator(make_web3()).quote(SEPOLIA)

    assert quote.method == FeeQuoteMethod.london
    assert quote.base_fee == 10 * GWEI
    assert quote.max_priority_fee_per_gas == 1_500_000_000
    # (2 * 10 + 1) * 110%
    assert quote.max_fee_per_gas == 23_100_000_000
    assert quote.get_tx_gas_params() == {"maxFeePerGas": 23_100_000_000, "maxPriorityFeePerGas": 1_500_000_000}


def test_fee_quote_conservative_chain():
    """Ethereum mainnet uses the conservative profile."""
    quote = FeeEstimator(make_web3()).quote(ETHEREUM)

    assert quote.method == FeeQuoteMethod.london
    assert quote.max_priority_fee_per_gas == 1_200_000_000
    assert quote.max_fee_per_gas == 24_150_000_000


def test_fee_profile_clamps_max_fee():
    """Tiny base fee and a big tip would give max fee below base + tip."""
    max_fee, priority_fee = apply_fee_profile(1 * GWEI, 10 * GWEI, FAST_FEE_PROFILE)
    assert priority_fee == 15 * GWEI
    assert max_fee == 16 * GWEI


@pytest.mark.parametrize("profile", [FAST_FEE_PROFILE, CONSERVATIVE_FEE_PROFILE])
@pytest.mark.parametrize("base_fee", [0, 1, 7 * GWEI, 300 * GWEI])
@pytest.mark.parametrize("priority_fee", [0, 1, GWEI, 50 * GWEI])
def test_fee_profile_max_fee_covers_base_and_tip(profile, base_fee, priority_fee):
    max_fee, final_priority = apply_fee_profile(base_fee, priority_fee, profile)
    assert max_fee >= base_fee + final_priority
    assert final_priority >= 0


def test_fee_quote_legacy_chain():
    """No baseFeePerGas in the block, use eth_gasPrice with 20% buffer."""
    quote = FeeEstimator(make_web3(base_fee=None)).quote(POLYGON)

    assert quote.method == FeeQuoteMethod.legacy
    assert quote.max_fee_per_gas == 18 * GWEI
    assert quote.max_priority_fee_per_gas == 18 * GWEI
    assert quote.base_fee is None


def test_fee_quote_fee_market_query_fails():
    """Fall back to eth_gasPrice when the block cannot be read."""
    web3 = make_web3(gas_price=10 * GWEI)
    web3.eth.get_block.side_effect = ValueError("eth_getBlockByNumber failed")

    quote = FeeEstimator(web3).quote(SEPOLIA)

    assert quote.method == FeeQuoteMethod.legacy
    assert quote.max_fee_per_gas == 12 * GWEI


def test_fee_quote_everything_fails():
    """Hardcoded constants when the node is useless."""
    web3 = make_web3()
    web3.eth.get_block.side_effect = ValueError("eth_getBlockByNumber failed")
    type(web3.eth).gas_price = PropertyMock(side_effect=ValueError("eth_gasPrice failed"))

    quote = FeeEstimator(web3).quote(SEPOLIA)

    assert quote.method == FeeQuoteMethod.fallback
    assert quote.max_fee_per_gas == 20 * GWEI
    assert quote.max_priority_fee_per_gas == 2 * GWEI


def test_fee_quote_is_fresh_every_time():
    """Quotes follow the fee market between calls."""
    web3 = make_web3()
    web3.eth.get_block.side_effect = [{"baseFeePerGas": 10 * GWEI}, {"baseFeePerGas": 50 * GWEI}]

    estimator = FeeEstimator(web3)
    first = estimator.quote(SEPOLIA)
    second = estimator.quote(SEPOLIA)

    assert second.max_fee_per_gas > first.max_fee_per_gas
    assert web3.eth.get_block.call_count == 2
