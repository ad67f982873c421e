"""USDC allowance for the xReserve contract.

Before raising a non-zero allowance we reset it to zero first, and
never approve more than :py:data:`~usdcx_bridge.xreserve.constants.MAX_APPROVAL`.

The zero-then-set sequence for one owner on one chain is serialised with a
lock from a process-wide registry. Different owners run in parallel.
"""

import datetime
import logging
import threading
from typing import Callable

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from usdcx_bridge.abi import get_deployed_contract
from usdcx_bridge.chain import get_network_config
from usdcx_bridge.confirmation import assert_transaction_success, transact, wait_transaction_to_complete
from usdcx_bridge.gas import FeeEstimator
from usdcx_bridge.xreserve.constants import APPROVAL_GAS_FALLBACK, GAS_BUFFER_PERCENT, MAX_APPROVAL

logger = logging.getLogger(__name__)


_owner_locks: dict[tuple[int, str], threading.Lock] = {}

_owner_locks_guard = threading.Lock()


def get_owner_lock(chain_id: int, owner: HexAddress | str) -> threading.Lock:
    """Get the lock serialising allowance changes of one owner on one chain."""
    key = (chain_id, owner.lower())
    with _owner_locks_guard:
        lock = _owner_locks.get(key)
        if lock is None:
            lock = _owner_locks[key] = threading.Lock()
        return lock


def get_usdc(web3: Web3, chain_id: int) -> Contract:
    """USDC contract proxy on a supported chain."""
    return get_deployed_contract(web3, "ERC20.json", get_network_config(chain_id).usdc)


class AllowanceManager:
    """Make sure xReserve can pull the deposit amount."""

    def __init__(
        self,
        web3: Web3,
        fee_estimator: FeeEstimator,
        confirmation_timeout=datetime.timedelta(minutes=5),
        poll_delay=datetime.timedelta(seconds=1),
    ):
        self.web3 = web3
        self.fee_estimator = fee_estimator
        self.confirmation_timeout = confirmation_timeout
        self.poll_delay = poll_delay

    def get_allowance(self, owner: HexAddress | str, chain_id: int) -> int:
        """Read the current USDC allowance of xReserve. Never cached."""
        network = get_network_config(chain_id)
        usdc = get_usdc(self.web3, chain_id)
        return usdc.functions.allowance(Web3.to_checksum_address(owner), Web3.to_checksum_address(network.x_reserve)).call()

    def ensure_allowance(
        self,
        owner: HexAddress | str,
        amount: int,
        chain_id: int,
        on_submitted: Callable[[str], None] | None = None,
    ) -> str | None:
        """Approve xReserve for ``min(amount, MAX_APPROVAL)`` if needed.

        - If the allowance already covers ``min(amount, MAX_APPROVAL)``, do nothing
        - If there is a stale non-zero allowance, set it to zero and wait for the confirmation
        - Approve and wait for the confirmation

        :param on_submitted:
            Called with each approval transaction hash after broadcast

        :return:
            Hash of the approval transaction, or ``None`` if no transaction was needed

        :raise TransactionFailed:
            Approval rejected or reverted
        """
        owner = Web3.to_checksum_address(owner)

        approval_amount = min(amount, MAX_APPROVAL)

        with get_owner_lock(chain_id, owner):
            current = self.get_allowance(owner, chain_id)
            if current >= approval_amount:
                logger.info("Allowance %d for %s covers %d, no approval needed", current, owner, approval_amount)
                return None

            network = get_network_config(chain_id)
            usdc = get_usdc(self.web3, chain_id)
            spender = Web3.to_checksum_address(network.x_reserve)

            if current > 0:
                logger.info("Resetting stale allowance %d of %s to zero", current, owner)
                self._approve(usdc, owner, spender, 0, chain_id, on_submitted)

            if approval_amount < amount:
                logger.warning("Requested %d exceeds the approval cap, approving only %d", amount, approval_amount)

            return self._approve(usdc, owner, spender, approval_amount, chain_id, on_submitted)

    def _estimate_gas(self, usdc: Contract, owner: str, spender: str, value: int) -> int:
        try:
            estimate = usdc.functions.approve(spender, value).estimate_gas({"from": owner})
            return estimate * GAS_BUFFER_PERCENT // 100
        except Exception as e:
            logger.warning("Approval gas estimation failed, using %d: %s", APPROVAL_GAS_FALLBACK, e)
            return APPROVAL_GAS_FALLBACK

    def _approve(self, usdc: Contract, owner: str, spender: str, value: int, chain_id: int, on_submitted: Callable[[str], None] | None) -> str:
        gas = self._estimate_gas(usdc, owner, spender, value)
        quote = self.fee_estimator.quote(chain_id)
        tx = {"from": owner, "gas": gas, **quote.get_tx_gas_params()}

        tx_hash = transact(usdc.functions.approve(spender, value), tx, "Approval")
        logger.info("Approve %d USDC units for %s from %s, tx %s", value, spender, owner, tx_hash)
        if on_submitted:
            on_submitted(tx_hash)

        receipt = wait_transaction_to_complete(self.web3, tx_hash, max_timeout=self.confirmation_timeout, poll_delay=self.poll_delay)
        assert_transaction_success(self.web3, tx_hash, receipt, "Approval")
        return tx_hash
