"""Read the xReserve ``MessageSent(bytes)`` event from a deposit receipt.

Circle Iris indexes attestations by ``keccak256(message)``. The event data
is a standard ABI encoded ``bytes``:

- 32 byte offset word
- 32 byte length word at that offset
- ``length`` message bytes, right padded to a 32 byte boundary

Only the ``length`` bytes are hashed. Hashing the padding would give a
hash Iris never attests.
"""

import logging

from hexbytes import HexBytes
from web3 import Web3

from usdcx_bridge.errors import NoMessageEvent
from usdcx_bridge.xreserve.constants import MESSAGE_SENT_TOPIC

logger = logging.getLogger(__name__)

_MESSAGE_SENT_TOPIC_BYTES = HexBytes(MESSAGE_SENT_TOPIC)

#: ABI word size
WORD = 32


def decode_message_sent_data(data: bytes) -> bytes:
    """Decode the ``bytes message`` argument of ``MessageSent``.

    :raise NoMessageEvent:
        Offset or length point outside the data
    """
    data = bytes(data)

    if len(data) < 2 * WORD:
        raise NoMessageEvent(f"MessageSent data too short: {len(data)} bytes")

    offset = int.from_bytes(data[0:WORD], "big")
    if offset + WORD > len(data):
        raise NoMessageEvent(f"MessageSent data offset {offset} out of bounds for {len(data)} bytes")

    length = int.from_bytes(data[offset : offset + WORD], "big")
    start = offset + WORD
    if start + length > len(data):
        raise NoMessageEvent(f"MessageSent message length {length} at {start} out of bounds for {len(data)} bytes")

    return data[start : start + length]


def _get_tx_hash(receipt: dict) -> str | None:
    tx_hash = receipt.get("transactionHash")
    return Web3.to_hex(HexBytes(tx_hash)) if tx_hash is not None else None


def extract_message_bytes(receipt: dict) -> bytes:
    """Get the raw xReserve message from a deposit receipt.

    Works with receipts from ``eth_getTransactionReceipt`` whether or not
    web3.py result formatters have turned hex strings to bytes.

    :raise NoMessageEvent:
        No log has the ``MessageSent`` topic
    """
    tx_hash = _get_tx_hash(receipt)
    observed_topics = []
    matches = []

    for log in receipt.get("logs", []):
        topics = log.get("topics") or []
        if not topics:
            continue
        topic = HexBytes(topics[0])
        observed_topics.append(Web3.to_hex(topic))
        if topic == _MESSAGE_SENT_TOPIC_BYTES:
            matches.append(log)

    if not matches:
        raise NoMessageEvent(
            f"Transaction {tx_hash} has no MessageSent event, not an xReserve deposit. Observed topics: {observed_topics}",
            tx_hash=tx_hash,
            observed_topics=tuple(observed_topics),
        )

    if len(matches) > 1:
        logger.warning("Transaction %s has %d MessageSent events, using the first one", tx_hash, len(matches))

    return decode_message_sent_data(HexBytes(matches[0]["data"]))


def extract_message_hash(receipt: dict) -> str:
    """Get the Iris lookup key from a deposit receipt.

    :return:
        0x-prefixed ``keccak256`` of the message

    :raise NoMessageEvent:
        No ``MessageSent`` event or it is malformed
    """
    message = extract_message_bytes(receipt)
    message_hash = Web3.to_hex(Web3.keccak(message))
    logger.info("Deposit %s message is %d bytes, hash %s", _get_tx_hash(receipt), len(message), message_hash)
    return message_hash
