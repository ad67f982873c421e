"""xReserve ``depositToRemote()`` calls.

Example::

    from usdcx_bridge.gas import FeeEstimator
    from usdcx_bridge.xreserve.deposit import BridgeExecutor
    from usdcx_bridge.xreserve.types import BridgeRequest

    request = BridgeRequest(
        amount=25 * 10**6,
        recipient="ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
        account=sender,
        chain_id=11155111,
    )
    executor = BridgeExecutor(web3, FeeEstimator(web3))
    tx_hash = executor.submit(request)

The executor does not wait for the confirmation.
"""

import logging

from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from usdcx_bridge.abi import get_deployed_contract
from usdcx_bridge.chain import NetworkConfig, get_network_config
from usdcx_bridge.confirmation import transact
from usdcx_bridge.gas import FeeEstimator
from usdcx_bridge.xreserve.address import encode_stacks_recipient
from usdcx_bridge.xreserve.constants import BRIDGE_FEE, DEPOSIT_GAS_FALLBACK, GAS_BUFFER_PERCENT, HOOK_DATA
from usdcx_bridge.xreserve.types import BridgeRequest, FeeEstimate

logger = logging.getLogger(__name__)


def get_x_reserve(web3: Web3, network: NetworkConfig) -> Contract:
    """Load the xReserve contract of a chain."""
    return get_deployed_contract(web3, "XReserve.json", network.x_reserve)


def prepare_deposit_to_remote(web3: Web3, request: BridgeRequest) -> ContractFunction:
    """Build the ``depositToRemote()`` call.

    Arguments are ``(amount, STACKS_DOMAIN, encoded recipient, USDC, BRIDGE_FEE, empty hook data)``.

    :return:
        Bound contract function, call ``transact()`` or ``estimate_gas()`` on it
    """
    network = get_network_config(request.chain_id)
    x_reserve = get_x_reserve(web3, network)
    return x_reserve.functions.depositToRemote(
        request.amount,
        network.stacks_domain,
        encode_stacks_recipient(request.recipient),
        Web3.to_checksum_address(network.usdc),
        BRIDGE_FEE,
        HOOK_DATA,
    )


class BridgeExecutor:
    """Estimate and broadcast deposits."""

    def __init__(self, web3: Web3, fee_estimator: FeeEstimator):
        self.web3 = web3
        self.fee_estimator = fee_estimator

    def estimate_gas(self, request: BridgeRequest) -> int:
        """Dry run the deposit and add a 20% buffer.

        Falls back to a fixed gas limit if the node cannot estimate,
        e.g. because the approval is not mined yet on a lagging node.
        """
        func = prepare_deposit_to_remote(self.web3, request)
        try:
            estimate = func.estimate_gas({"from": Web3.to_checksum_address(request.account)})
        except Exception as e:
            logger.warning("Deposit gas estimation failed, using %d: %s", DEPOSIT_GAS_FALLBACK, e)
            return DEPOSIT_GAS_FALLBACK
        return estimate * GAS_BUFFER_PERCENT // 100

    def submit(self, request: BridgeRequest, gas: int | None = None) -> str:
        """Broadcast the deposit.

        :param gas:
            Gas limit from :py:meth:`estimate_gas`, estimated if not given

        :return:
            0x-prefixed transaction hash

        :raise TransactionFailed:
            Node rejected the transaction
        """
        if gas is None:
            gas = self.estimate_gas(request)

        quote = self.fee_estimator.quote(request.chain_id)
        func = prepare_deposit_to_remote(self.web3, request)
        tx = {"from": Web3.to_checksum_address(request.account), "gas": gas, **quote.get_tx_gas_params()}
        tx_hash = transact(func, tx, "Deposit")
        logger.info(
            "Deposited %d USDC units from %s to %s on chain %d, gas %d, fees %s, tx %s",
            request.amount,
            request.account,
            request.recipient,
            request.chain_id,
            gas,
            quote,
            tx_hash,
        )
        return tx_hash

    def estimate_fees(self, request: BridgeRequest) -> FeeEstimate:
        """Gas and protocol fees of a deposit, without sending it."""
        network = get_network_config(request.chain_id)
        gas = self.estimate_gas(request)
        quote = self.fee_estimator.quote(request.chain_id)
        return FeeEstimate(
            estimated_gas=gas,
            fee_quote=quote,
            estimated_cost_wei=gas * quote.max_fee_per_gas,
            bridge_fee=BRIDGE_FEE,
            estimated_confirmation_seconds=network.get_estimated_confirmation_seconds(),
        )
