"""Bridge USDC from an EVM chain to Stacks USDCx.

:py:class:`BridgeOrchestrator` runs the whole source chain side:

1. Validate the request, no network calls
2. Approve xReserve if needed
3. Estimate gas and send ``depositToRemote()``
4. Wait for the deposit receipt
5. Extract the message hash and store a ``pending`` transaction

Attestation is polled separately with :py:meth:`BridgeOrchestrator.complete_bridge`,
so a caller can persist the pending transaction and resume after a restart.

Example::

    from usdcx_bridge.chain import create_bridge_web3
    from usdcx_bridge.config import BridgeConfig
    from usdcx_bridge.xreserve.bridge import BridgeOrchestrator
    from usdcx_bridge.xreserve.types import BridgeRequest

    config = BridgeConfig.from_env()
    web3 = create_bridge_web3(config.get_rpc_url(11155111))
    orchestrator = BridgeOrchestrator(web3, config)

    transaction = orchestrator.bridge(
        BridgeRequest(
            amount=25 * 10**6,
            recipient="ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM",
            account=sender,
            chain_id=11155111,
        )
    )
    transaction = orchestrator.complete_bridge(transaction)
"""

import logging
from typing import Callable

from eth_utils import is_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound

from usdcx_bridge.chain import NetworkConfig, get_network_config
from usdcx_bridge.config import BridgeConfig
from usdcx_bridge.confirmation import assert_transaction_success, wait_transaction_to_complete
from usdcx_bridge.errors import (
    REASON_AMOUNT_TOO_SMALL,
    REASON_CHAIN_MISMATCH,
    REASON_INVALID_ACCOUNT,
    REASON_INVALID_AMOUNT,
    REASON_INVALID_CHAIN,
    REASON_MIN_AMOUNT_OUT,
    BridgeError,
    InvalidRequest,
    TransactionFailed,
    UnsupportedChain,
)
from usdcx_bridge.gas import FeeEstimator
from usdcx_bridge.store import BridgeStore
from usdcx_bridge.xreserve.address import validate_stacks_address_for_network
from usdcx_bridge.xreserve.allowance import AllowanceManager
from usdcx_bridge.xreserve.attestation import AttestationPoller, CancellationToken
from usdcx_bridge.xreserve.constants import BRIDGE_FEE, MIN_DEPOSIT_AMOUNT, USDC_DECIMALS
from usdcx_bridge.xreserve.deposit import BridgeExecutor
from usdcx_bridge.xreserve.message import extract_message_hash
from usdcx_bridge.xreserve.slippage import min_amount_out, validate_slippage
from usdcx_bridge.xreserve.types import (
    AttestationState,
    BridgeEvent,
    BridgeEventType,
    BridgeRequest,
    BridgeTransaction,
    FeeEstimate,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

#: Progress listener signature
BridgeListener = Callable[[BridgeEvent], None]


class BridgeOrchestrator:
    """Compose allowance, deposit, log extraction and attestation polling.

    Different requests share no mutable state besides the store,
    so :py:meth:`bridge` can run in parallel threads.
    """

    def __init__(
        self,
        web3: Web3,
        config: BridgeConfig | None = None,
        store: BridgeStore | None = None,
        fee_estimator: FeeEstimator | None = None,
        allowance_manager: AllowanceManager | None = None,
        executor: BridgeExecutor | None = None,
        poller: AttestationPoller | None = None,
    ):
        self.web3 = web3
        self.config = config or BridgeConfig()

        if store is None:
            if self.config.store_path:
                store = BridgeStore.open_sqlite(self.config.store_path)
            else:
                store = BridgeStore()
        self.store = store

        self.fee_estimator = fee_estimator or FeeEstimator(web3, self.config.fees)
        self.allowance_manager = allowance_manager or AllowanceManager(
            web3,
            self.fee_estimator,
            confirmation_timeout=self.config.confirmation_timeout,
            poll_delay=self.config.confirmation_poll_delay,
        )
        self.executor = executor or BridgeExecutor(web3, self.fee_estimator)
        self.poller = poller or AttestationPoller(self.config.attestation, store=self.store)
        self.listeners: list[BridgeListener] = []

    def add_listener(self, listener: BridgeListener) -> Callable[[], None]:
        """Subscribe to progress events.

        Listener exceptions are logged and do not stop the bridge.

        :return:
            Call to unsubscribe
        """
        self.listeners.append(listener)

        def _remove():
            if listener in self.listeners:
                self.listeners.remove(listener)

        return _remove

    def emit(self, event_type: BridgeEventType, tx_hash: str | None = None, **data):
        event = BridgeEvent(type=event_type, tx_hash=tx_hash, data=data)
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Bridge event listener %s failed on %s: %s", listener, event_type.value, e, exc_info=e)

    def validate_request(self, request: BridgeRequest) -> NetworkConfig:
        """Check the request before anything touches the chain.

        Order: amount, source chain, recipient, account, route, slippage, minimum output.

        :return:
            Source chain configuration

        :raise InvalidRequest:
            Bad amount, recipient, account, slippage or minimum output

        :raise UnsupportedChain:
            Unknown chain or no direct route to Stacks
        """
        amount = request.amount
        if type(amount) != int or amount <= 0:
            raise InvalidRequest("Amount must be greater than 0", REASON_INVALID_AMOUNT)

        if amount < MIN_DEPOSIT_AMOUNT:
            raise InvalidRequest(f"Minimum bridge amount is {MIN_DEPOSIT_AMOUNT / 10**USDC_DECIMALS:.2f} USDC", REASON_AMOUNT_TOO_SMALL)

        if type(request.chain_id) != int:
            raise InvalidRequest(f"Invalid source chain id {request.chain_id!r}", REASON_INVALID_CHAIN)

        network = get_network_config(request.chain_id)

        validate_stacks_address_for_network(request.recipient, network.stacks_network).raise_for_invalid()

        if not isinstance(request.account, str) or not is_address(request.account):
            raise InvalidRequest(f"Invalid source account {request.account!r}", REASON_INVALID_ACCOUNT)

        if not network.direct_bridge:
            raise UnsupportedChain(request.chain_id, f"{network.name} has no direct xReserve route to Stacks")

        if request.slippage_bps is not None:
            validate_slippage(request.slippage_bps)

        if request.min_amount_out is not None:
            worst_case = amount - BRIDGE_FEE
            if type(request.min_amount_out) != int or request.min_amount_out < 0 or request.min_amount_out > worst_case:
                raise InvalidRequest(
                    f"Minimum amount out {request.min_amount_out} cannot be guaranteed, at most {worst_case} after the bridge fee",
                    REASON_MIN_AMOUNT_OUT,
                )

        return network

    def get_min_amount_out(self, request: BridgeRequest) -> int:
        if request.min_amount_out is not None:
            return request.min_amount_out
        slippage_bps = request.slippage_bps if request.slippage_bps is not None else self.config.default_slippage_bps
        return min_amount_out(request.amount, slippage_bps)

    def estimate_fees(self, request: BridgeRequest) -> FeeEstimate:
        """Validate the request and estimate what the deposit costs."""
        self.validate_request(request)
        return self.executor.estimate_fees(request)

    def bridge(self, request: BridgeRequest) -> BridgeTransaction:
        """Approve, deposit and wait for the deposit receipt.

        :return:
            ``pending`` transaction carrying the message hash

        :raise BridgeError:
            Any failure. Validation failures are raised before any transaction is sent.
        """
        try:
            return self._bridge(request)
        except BridgeError as e:
            self.emit(BridgeEventType.error, error=str(e), error_type=e.__class__.__name__)
            raise

    def _bridge(self, request: BridgeRequest) -> BridgeTransaction:
        network = self.validate_request(request)

        connected_chain_id = self.web3.eth.chain_id
        if connected_chain_id != request.chain_id:
            raise InvalidRequest(f"Request is for chain {request.chain_id} but Web3 is connected to {connected_chain_id}", REASON_CHAIN_MISMATCH)

        account = Web3.to_checksum_address(request.account)
        expected_min_out = self.get_min_amount_out(request)

        logger.info("Bridging %d USDC units from %s on %s to %s", request.amount, account, network.name, request.recipient)

        self.emit(BridgeEventType.approval_started, amount=request.amount)
        approval_tx_hash = self.allowance_manager.ensure_allowance(
            account,
            request.amount,
            request.chain_id,
            on_submitted=lambda tx_hash: self.emit(BridgeEventType.approval_submitted, tx_hash),
        )
        if approval_tx_hash:
            self.emit(BridgeEventType.approval_confirmed, approval_tx_hash)

        self.emit(BridgeEventType.bridge_started, amount=request.amount, recipient=request.recipient)
        gas = self.executor.estimate_gas(request)
        deposit_tx_hash = self.executor.submit(request, gas=gas)
        self.emit(BridgeEventType.bridge_submitted, deposit_tx_hash)

        receipt = wait_transaction_to_complete(
            self.web3,
            deposit_tx_hash,
            max_timeout=self.config.confirmation_timeout,
            poll_delay=self.config.confirmation_poll_delay,
        )
        assert_transaction_success(self.web3, deposit_tx_hash, receipt, "Deposit")

        message_hash = extract_message_hash(receipt)

        transaction = BridgeTransaction(
            chain_id=request.chain_id,
            deposit_tx_hash=deposit_tx_hash,
            approval_tx_hash=approval_tx_hash,
            message_hash=message_hash,
            network=network.stacks_network,
            amount=request.amount,
            recipient=request.recipient,
            account=account,
            min_amount_out=expected_min_out,
        )
        self.store.save_transaction(transaction)
        self.emit(BridgeEventType.bridge_confirmed, deposit_tx_hash, message_hash=message_hash)
        logger.info("Deposit %s confirmed, message hash %s", deposit_tx_hash, message_hash)
        return transaction

    def complete_bridge(self, transaction: BridgeTransaction, cancel: CancellationToken | None = None) -> BridgeTransaction:
        """Poll the attestation of a deposited transaction.

        - ``completed`` with the attestation attached on success
        - ``failed`` when the retry budget runs out, calling again polls again
        - unchanged ``pending`` when cancelled

        :return:
            Updated transaction, also saved in the store
        """
        if transaction.status == TransactionStatus.completed:
            return transaction

        status = self.poller.fetch_with_retry(transaction.message_hash, transaction.network, cancel=cancel)

        if status.is_complete:
            transaction.status = TransactionStatus.completed
            transaction.attestation = status.attestation
            transaction.error = None
            self.emit(BridgeEventType.attestation_received, transaction.deposit_tx_hash, message_hash=transaction.message_hash)
        elif status.state == AttestationState.failed:
            transaction.status = TransactionStatus.failed
            transaction.error = status.error
            self.emit(BridgeEventType.error, transaction.deposit_tx_hash, error=status.error, error_type="AttestationTimeout")
        else:
            logger.info("Attestation polling for %s stopped in state %s: %s", transaction.deposit_tx_hash, status.state.value, status.error)

        self.store.save_transaction(transaction)
        return transaction

    def resolve_message_hash(self, deposit_tx_hash: HexBytes | str) -> str:
        """Read the message hash of an already mined deposit.

        :raise TransactionFailed:
            Transaction not found

        :raise NoMessageEvent:
            Not an xReserve deposit
        """
        try:
            receipt = self.web3.eth.get_transaction_receipt(HexBytes(deposit_tx_hash))
        except TransactionNotFound as e:
            raise TransactionFailed(f"Transaction {deposit_tx_hash} not found", tx_hash=str(deposit_tx_hash)) from e
        return extract_message_hash(receipt)
