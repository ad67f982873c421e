"""Find and resume bridge transactions waiting for their attestation.

One pass per call. Run :py:func:`resume_pending_transactions` periodically
from a cron job or a loop, scheduling is not done here.
"""

import datetime
import logging

from usdcx_bridge.config import AttestationRetryConfig
from usdcx_bridge.store import BridgeStore
from usdcx_bridge.utils import native_datetime_utc_now
from usdcx_bridge.xreserve.attestation import CancellationToken, calculate_backoff_delay
from usdcx_bridge.xreserve.constants import STUCK_TRANSACTION_THRESHOLD
from usdcx_bridge.xreserve.types import AttestationState, BridgeTransaction, TransactionStatus

logger = logging.getLogger(__name__)


def is_transaction_stuck(
    transaction: BridgeTransaction,
    now: datetime.datetime | None = None,
    threshold: datetime.timedelta = STUCK_TRANSACTION_THRESHOLD,
) -> bool:
    """Has a transaction been pending for too long.

    Completed and failed transactions are never stuck.
    """
    if transaction.status != TransactionStatus.pending:
        return False
    now = now or native_datetime_utc_now()
    return now - transaction.created_at > threshold


def find_stuck_transactions(
    store: BridgeStore,
    now: datetime.datetime | None = None,
    threshold: datetime.timedelta = STUCK_TRANSACTION_THRESHOLD,
) -> list[BridgeTransaction]:
    now = now or native_datetime_utc_now()
    return [t for t in store.list_transactions(TransactionStatus.pending) if is_transaction_stuck(t, now, threshold)]


def find_resumable_transactions(
    store: BridgeStore,
    now: datetime.datetime | None = None,
    config: AttestationRetryConfig | None = None,
) -> list[BridgeTransaction]:
    """Pending transactions whose attestation is worth polling now.

    - Never polled: resumable
    - Attestation already complete in the store: resumable, completes without network calls
    - Last polling run gave up: skipped
    - Otherwise resumable once the backoff delay since the last attempt has passed

    :param config:
        Backoff parameters
    """
    now = now or native_datetime_utc_now()
    config = config or AttestationRetryConfig()
    resumable = []

    for transaction in store.list_transactions(TransactionStatus.pending):
        status = store.get_attestation_status(transaction.message_hash)
        if status is None or status.is_complete:
            resumable.append(transaction)
            continue

        if status.state == AttestationState.failed:
            logger.debug("Skipping %s, attestation polling gave up", transaction.deposit_tx_hash)
            continue

        if status.last_attempt_at is None or status.attempts == 0:
            resumable.append(transaction)
            continue

        delay = calculate_backoff_delay(status.attempts - 1, config)
        if (now - status.last_attempt_at).total_seconds() >= delay:
            resumable.append(transaction)

    return resumable


def resume_pending_transactions(
    orchestrator,
    store: BridgeStore | None = None,
    cancel: CancellationToken | None = None,
    now: datetime.datetime | None = None,
) -> list[BridgeTransaction]:
    """Poll attestations of all resumable transactions once.

    :param orchestrator:
        :py:class:`usdcx_bridge.xreserve.bridge.BridgeOrchestrator`

    :param store:
        Defaults to the orchestrator store

    :return:
        Transactions we polled, with their updated status
    """
    store = store or orchestrator.store
    now = now or native_datetime_utc_now()

    for transaction in find_stuck_transactions(store, now):
        logger.warning(
            "Bridge transaction %s pending since %s, still waiting for the attestation of %s",
            transaction.deposit_tx_hash,
            transaction.created_at,
            transaction.message_hash,
        )

    updated = []
    for transaction in find_resumable_transactions(store, now, orchestrator.config.attestation):
        if cancel is not None and cancel.cancelled:
            logger.info("Resume cancelled")
            break
        updated.append(orchestrator.complete_bridge(transaction, cancel=cancel))

    logger.info("Resumed %d pending bridge transactions", len(updated))
    return updated
