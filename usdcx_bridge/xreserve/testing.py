"""xReserve test helpers.

Circle Iris and xReserve are not available in unit tests. We provide

- :py:func:`craft_xreserve_message` and :py:func:`encode_message_sent_data` to build ``MessageSent`` payloads
- :py:func:`forge_attestation` to sign a message with a throwaway attester
- :py:class:`XReserveTestProvider`, an in-process JSON-RPC provider that
  speaks enough ERC-20 and xReserve to run the whole bridge flow

Example::

    provider = XReserveTestProvider(chain_id=11155111)
    web3 = Web3(provider, middleware=[])
    orchestrator = BridgeOrchestrator(web3)
    transaction = orchestrator.bridge(request)
    assert provider.api_call_counts["eth_sendTransaction"] == 2

The crafted message layout is our own test format, not Circle's.
"""

import logging
import struct
import threading
from collections import Counter
from itertools import count
from typing import Any

import eth_abi
from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.providers import BaseProvider
from web3.types import RPCEndpoint, RPCResponse

from usdcx_bridge.confirmation import ERROR_STRING_SELECTOR
from usdcx_bridge.xreserve.constants import DEPOSIT_TO_REMOTE_SIGNATURE, MESSAGE_SENT_TOPIC

logger = logging.getLogger(__name__)

#: Test message format version
TEST_MESSAGE_VERSION = 0

#: ``allowance(address,address)``
ALLOWANCE_SELECTOR = HexBytes("0xdd62ed3e")

#: ``approve(address,uint256)``
APPROVE_SELECTOR = HexBytes("0x095ea7b3")

#: ``balanceOf(address)``
BALANCE_OF_SELECTOR = HexBytes("0x70a08231")

#: ``decimals()``
DECIMALS_SELECTOR = HexBytes("0x313ce567")

#: ``depositToRemote(...)``
DEPOSIT_TO_REMOTE_SELECTOR = HexBytes(Web3.keccak(text=DEPOSIT_TO_REMOTE_SIGNATURE)[0:4])

#: ABI types of ``depositToRemote()`` arguments
DEPOSIT_TO_REMOTE_TYPES = ["uint256", "uint32", "bytes32", "address", "uint256", "bytes"]


def craft_xreserve_message(
    nonce: int,
    remote_domain: int,
    depositor: str,
    remote_recipient: bytes,
    local_token: str,
    amount: int,
    max_fee: int,
    hook_data: bytes = b"",
) -> bytes:
    """Pack a deposit message like the contract would.

    - ``uint32 version`` (4 bytes)
    - ``uint32 remoteDomain`` (4 bytes)
    - ``bytes32 nonce`` (32 bytes)
    - ``bytes32 depositor`` (32 bytes)
    - ``bytes32 remoteRecipient`` (32 bytes)
    - ``bytes32 localToken`` (32 bytes)
    - ``uint256 amount`` (32 bytes)
    - ``uint256 maxFee`` (32 bytes)
    - ``bytes hookData`` (rest)
    """
    assert len(remote_recipient) == 32, f"Got {len(remote_recipient)} bytes"
    message = struct.pack(">I", TEST_MESSAGE_VERSION)
    message += struct.pack(">I", remote_domain)
    message += nonce.to_bytes(32, byteorder="big")
    message += HexBytes(depositor).rjust(32, b"\x00")
    message += remote_recipient
    message += HexBytes(local_token).rjust(32, b"\x00")
    message += amount.to_bytes(32, byteorder="big")
    message += max_fee.to_bytes(32, byteorder="big")
    message += hook_data
    return message


def encode_message_sent_data(message: bytes) -> bytes:
    """ABI encode ``MessageSent(bytes)`` event data."""
    return eth_abi.encode(["bytes"], [message])


def make_message_sent_log(message: bytes, address: str, tx_hash: str, block_number: int = 1, log_index: int = 0) -> dict:
    """Raw JSON-RPC log entry for a ``MessageSent`` event."""
    return {
        "address": address,
        "topics": [MESSAGE_SENT_TOPIC],
        "data": Web3.to_hex(encode_message_sent_data(message)),
        "blockNumber": hex(block_number),
        "blockHash": "0x" + "11" * 32,
        "transactionHash": tx_hash,
        "transactionIndex": "0x0",
        "logIndex": hex(log_index),
        "removed": False,
    }


def encode_revert_reason(reason: str) -> str:
    """ABI encode a revert reason as nodes return it in the JSON-RPC error ``data``."""
    return Web3.to_hex(ERROR_STRING_SELECTOR + eth_abi.encode(["string"], [reason]))


def forge_attestation(message: bytes, attester: LocalAccount | None = None) -> str:
    """Sign a message with a test attester.

    Signature over ``keccak256(message)``, ``r (32) + s (32) + v (1)``.

    :return:
        0x-prefixed hex attestation, as Iris returns it
    """
    if attester is None:
        attester = Account.create()

    signed = attester.unsafe_sign_hash(Web3.keccak(message))
    r = signed.r.to_bytes(32, byteorder="big")
    s = signed.s.to_bytes(32, byteorder="big")
    v = signed.v.to_bytes(1, byteorder="big")
    attestation = r + s + v
    assert len(attestation) == 65, f"Expected 65 bytes, got {len(attestation)}"
    return Web3.to_hex(attestation)


class XReserveTestProvider(BaseProvider):
    """Fake JSON-RPC node with USDC and xReserve.

    - ``eth_call`` answers ``allowance()``, ``balanceOf()`` and ``decimals()``
    - ``eth_sendTransaction`` applies ``approve()`` and turns ``depositToRemote()`` to a receipt with a ``MessageSent`` log
    - ``api_call_counts`` counts calls per JSON-RPC method

    Use with ``Web3(provider, middleware=[])``.
    """

    def __init__(
        self,
        chain_id: int = 11155111,
        base_fee: int | None = 10 * 10**9,
        max_priority_fee: int = 1 * 10**9,
        gas_price: int = 15 * 10**9,
        gas_estimate: int = 100_000,
    ):
        super().__init__()
        self.chain_id = chain_id
        self.base_fee = base_fee
        self.max_priority_fee = max_priority_fee
        self.gas_price = gas_price
        self.gas_estimate = gas_estimate

        #: JSON-RPC methods answering with an error
        self.failing_methods: set[str] = set()

        #: Deposits revert on-chain and in ``eth_call``
        self.revert_deposits = False

        #: Deposits produce no ``MessageSent`` log
        self.emit_message_sent = True

        #: If False, sent transactions never get a receipt
        self.mine_transactions = True

        self.api_call_counts: Counter = Counter()

        #: (token, owner, spender) lowercased -> allowance
        self.allowances: dict[tuple[str, str, str], int] = {}

        #: Raw transactions as they came in, in order
        self.sent_transactions: list[dict] = []

        #: ``(owner, spender, value)`` per approve
        self.approvals: list[tuple[str, str, int]] = []

        #: Decoded ``depositToRemote()`` arguments and the message
        self.deposits: list[dict] = []

        self.transactions: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.block_number = 1
        self.request_ids = count(1)
        self.tx_counter = count(1)
        self.lock = threading.RLock()

    def is_connected(self, show_traceback: bool = False) -> bool:
        return True

    def set_allowance(self, token: str, owner: str, spender: str, value: int):
        self.allowances[(token.lower(), owner.lower(), spender.lower())] = value

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((token.lower(), owner.lower(), spender.lower()), 0)

    def make_request(self, method: RPCEndpoint, params: Any) -> RPCResponse:
        with self.lock:
            self.api_call_counts[method] += 1
            request_id = next(self.request_ids)

            if method in self.failing_methods:
                return self._error(request_id, f"{method} failed")

            handler = getattr(self, f"_handle_{method}", None)
            if handler is None:
                return self._error(request_id, f"Method {method} not supported", code=-32601)

            try:
                result = handler(params)
            except _Revert as e:
                return self._error(request_id, f"execution reverted: {e}", data=encode_revert_reason(str(e)))

            return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _error(self, request_id: int, message: str, code: int = -32000, data: str | None = None) -> RPCResponse:
        error = {"code": code, "message": message}
        if data is not None:
            # Geth and Anvil send the ABI encoded revert payload here
            error["data"] = data
        return {"jsonrpc": "2.0", "id": request_id, "error": error}

    def _handle_eth_chainId(self, params):
        return hex(self.chain_id)

    def _handle_eth_blockNumber(self, params):
        return hex(self.block_number)

    def _handle_eth_gasPrice(self, params):
        return hex(self.gas_price)

    def _handle_eth_maxPriorityFeePerGas(self, params):
        return hex(self.max_priority_fee)

    def _handle_eth_getBlockByNumber(self, params):
        block = {
            "number": hex(self.block_number),
            "hash": "0x" + "22" * 32,
            "parentHash": "0x" + "33" * 32,
            "timestamp": hex(1_700_000_000 + self.block_number),
            "gasLimit": hex(30_000_000),
            "gasUsed": hex(0),
            "transactions": [],
        }
        if self.base_fee is not None:
            block["baseFeePerGas"] = hex(self.base_fee)
        return block

    def _handle_eth_estimateGas(self, params):
        tx = params[0]
        data = HexBytes(tx.get("data") or tx.get("input") or b"")
        if self.revert_deposits and data[0:4] == DEPOSIT_TO_REMOTE_SELECTOR:
            raise _Revert("deposit failed")
        return hex(self.gas_estimate)

    def _handle_eth_call(self, params):
        tx = params[0]
        data = HexBytes(tx.get("data") or tx.get("input") or b"")
        selector = data[0:4]

        if selector == ALLOWANCE_SELECTOR:
            owner, spender = eth_abi.decode(["address", "address"], data[4:])
            return Web3.to_hex(eth_abi.encode(["uint256"], [self.get_allowance(tx["to"], owner, spender)]))

        if selector == BALANCE_OF_SELECTOR:
            return Web3.to_hex(eth_abi.encode(["uint256"], [10**18]))

        if selector == DECIMALS_SELECTOR:
            return Web3.to_hex(eth_abi.encode(["uint8"], [6]))

        if selector == DEPOSIT_TO_REMOTE_SELECTOR:
            if self.revert_deposits:
                raise _Revert("deposit failed")
            return "0x"

        raise _Revert(f"unknown selector {Web3.to_hex(selector)}")

    def _handle_eth_sendTransaction(self, params):
        tx = dict(params[0])
        data = HexBytes(tx.get("data") or tx.get("input") or b"")
        selector = data[0:4]
        sender = tx["from"]
        to = tx["to"]

        self.sent_transactions.append(tx)
        tx_hash = Web3.to_hex(Web3.keccak(text=f"test-tx-{next(self.tx_counter)}"))
        self.block_number += 1

        status = 1
        logs = []

        if selector == APPROVE_SELECTOR:
            spender, value = eth_abi.decode(["address", "uint256"], data[4:])
            self.set_allowance(to, sender, spender, value)
            self.approvals.append((sender, spender, value))
        elif selector == DEPOSIT_TO_REMOTE_SELECTOR:
            if self.revert_deposits:
                status = 0
            else:
                value, remote_domain, remote_recipient, local_token, max_fee, hook_data = eth_abi.decode(DEPOSIT_TO_REMOTE_TYPES, data[4:])
                message = craft_xreserve_message(
                    nonce=len(self.deposits) + 1,
                    remote_domain=remote_domain,
                    depositor=sender,
                    remote_recipient=remote_recipient,
                    local_token=local_token,
                    amount=value,
                    max_fee=max_fee,
                    hook_data=hook_data,
                )
                self.deposits.append(
                    {
                        "tx_hash": tx_hash,
                        "value": value,
                        "remote_domain": remote_domain,
                        "remote_recipient": remote_recipient,
                        "local_token": local_token,
                        "max_fee": max_fee,
                        "hook_data": hook_data,
                        "message": message,
                    }
                )
                if self.emit_message_sent:
                    logs.append(make_message_sent_log(message, to, tx_hash, self.block_number))

        self.transactions[tx_hash] = {
            "hash": tx_hash,
            "from": sender,
            "to": to,
            "gas": tx.get("gas", hex(self.gas_estimate)),
            "value": tx.get("value", "0x0"),
            "input": Web3.to_hex(data),
            "nonce": hex(len(self.sent_transactions) - 1),
            "blockNumber": hex(self.block_number),
        }

        if self.mine_transactions:
            self.receipts[tx_hash] = {
                "transactionHash": tx_hash,
                "transactionIndex": "0x0",
                "blockHash": "0x" + "11" * 32,
                "blockNumber": hex(self.block_number),
                "from": sender,
                "to": to,
                "cumulativeGasUsed": hex(self.gas_estimate),
                "gasUsed": hex(self.gas_estimate),
                "effectiveGasPrice": hex(self.gas_price),
                "contractAddress": None,
                "logs": logs,
                "logsBloom": "0x" + "00" * 256,
                "status": hex(status),
                "type": "0x2",
            }

        return tx_hash

    def _handle_eth_getTransactionReceipt(self, params):
        return self.receipts.get(Web3.to_hex(HexBytes(params[0])))

    def _handle_eth_getTransactionByHash(self, params):
        return self.transactions.get(Web3.to_hex(HexBytes(params[0])))


class _Revert(Exception):
    pass
