"""Transaction confirmation and revert reason lookups.

- Wait a broadcast transaction to be mined with a bounded timeout
- Turn a failed receipt to :py:class:`usdcx_bridge.errors.TransactionFailed` with the best revert reason we can find

Further reading

- `Web3.py Patterns: Revert Reason Lookups <https://snakecharmers.ethereum.org/web3py-revert-reason-parsing/>`_
"""

import datetime
import logging
import time

import eth_abi
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from usdcx_bridge.errors import ConfirmationTimedOut, TransactionFailed
from usdcx_bridge.utils import native_datetime_utc_now

logger = logging.getLogger(__name__)

#: Solidity ``Error(string)``, the payload of ``revert("reason")``
ERROR_STRING_SELECTOR = HexBytes("0x08c379a0")


def transact(func: ContractFunction, tx: dict, description: str = "Transaction") -> str:
    """Broadcast a contract call from a node or middleware managed account.

    :return:
        0x-prefixed transaction hash

    :raise TransactionFailed:
        Node rejected the transaction
    """
    try:
        tx_hash = func.transact(tx)
    except (Web3Exception, ValueError) as e:
        logger.error("%s rejected by the node: %s", description, e)
        raise TransactionFailed(f"{description} rejected by the node: {e}") from e
    return Web3.to_hex(tx_hash)


def wait_transaction_to_complete(
    web3: Web3,
    tx_hash: HexBytes | str,
    max_timeout=datetime.timedelta(minutes=5),
    poll_delay=datetime.timedelta(seconds=1),
) -> dict:
    """Use simple poll loop to wait a transaction to be mined.

    :param tx_hash:
        Transaction hash, 0x-prefixed or bytes

    :param max_timeout:
        Give up after this

    :param poll_delay:
        Sleep between ``eth_getTransactionReceipt`` calls

    :return:
        Transaction receipt. Status may be success or failure.

    :raise ConfirmationTimedOut:
        No receipt within ``max_timeout``. The transaction may still land later.
    """

    assert isinstance(poll_delay, datetime.timedelta)
    assert isinstance(max_timeout, datetime.timedelta)

    tx_hash = HexBytes(tx_hash)
    tx_hash_str = Web3.to_hex(tx_hash)
    started_at = native_datetime_utc_now()

    logger.info("Waiting transaction %s to confirm, timeout is %s", tx_hash_str, max_timeout)

    while True:
        try:
            receipt = web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as e:
            # Some nodes raise instead of returning None
            logger.debug("Transaction not found yet: %s", e)
            receipt = None

        if receipt:
            logger.info("Confirmed tx %s in block %s, status %s", tx_hash_str, receipt["blockNumber"], receipt["status"])
            return receipt

        if native_datetime_utc_now() > started_at + max_timeout:
            raise ConfirmationTimedOut(
                f"Transaction confirmation failed. Started: {started_at}, timed out after {max_timeout} ({max_timeout.total_seconds()}s). Poll delay: {poll_delay.total_seconds()}s. Still unconfirmed: {tx_hash_str}",
                tx_hash=tx_hash_str,
            )

        time.sleep(poll_delay.total_seconds())


def decode_revert_reason(data: str | bytes | None) -> str | None:
    """Decode an ABI encoded ``Error(string)`` revert payload.

    :return:
        The reason string, or ``None`` if the payload is something else, like a custom error
    """
    if not isinstance(data, (str, bytes)):
        return None

    try:
        data = HexBytes(data)
    except ValueError:
        return None

    if data[0:4] != ERROR_STRING_SELECTOR:
        return None

    try:
        return eth_abi.decode(["string"], data[4:])[0]
    except DecodingError:
        return None


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: HexBytes | str,
    unknown_error_message="<could not extract the revert reason>",
) -> str:
    """Gets a transaction revert reason.

    Ethereum nodes do not store the transaction failure reason.
    We replay the transaction against the current state with ``eth_call``,
    so the reason might differ from what happened in the mined block.

    :return:
        The revert reason or the placeholder message if we could not extract the reason somehow.
    """
    tx_hash = HexBytes(tx_hash)

    try:
        tx = web3.eth.get_transaction(tx_hash)
    except TransactionNotFound:
        logger.warning("Cannot replay %s, node does not have it", Web3.to_hex(tx_hash))
        return unknown_error_message

    replay_tx = {
        "to": tx["to"],
        "from": tx["from"],
        "value": tx.get("value", 0),
        "data": Web3.to_hex(HexBytes(tx.get("input", b""))),
        "gas": tx["gas"],
    }

    try:
        web3.eth.call(replay_tx)
    except ContractLogicError as e:
        message = getattr(e, "message", None) or (str(e.args[0]) if e.args else "")
        reason = decode_revert_reason(getattr(e, "data", None))
        if reason and reason not in message:
            return f"execution reverted: {reason}"
        return message or unknown_error_message
    except Exception as e:
        # Different nodes give different error payloads
        logger.debug("Revert exception result is: %s", e)
        data = e.args[0] if e.args else None
        if isinstance(data, dict):
            reason = decode_revert_reason(data.get("data"))
            if reason:
                return f"execution reverted: {reason}"
            return str(data.get("message", unknown_error_message))
        if data:
            return str(data)
        return unknown_error_message

    logger.error("Transaction %s succeeded when we tried to fetch its revert reason, maybe the chain state changed", Web3.to_hex(tx_hash))
    return unknown_error_message


def assert_transaction_success(web3: Web3, tx_hash: HexBytes | str, receipt: dict, description: str = "Transaction"):
    """Raise if the receipt tells the transaction reverted.

    :raise TransactionFailed:
        With the revert reason attached
    """
    if receipt["status"] == 1:
        return

    tx_hash_str = Web3.to_hex(HexBytes(tx_hash))
    reason = fetch_transaction_revert_reason(web3, tx_hash)
    logger.error("%s %s reverted: %s", description, tx_hash_str, reason)
    raise TransactionFailed(f"{description} {tx_hash_str} reverted: {reason}", tx_hash=tx_hash_str, revert_reason=reason)
