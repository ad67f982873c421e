"""Bridge exception hierarchy.

All failures raised by this package derive from :py:class:`BridgeError`.

- :py:class:`InvalidRequest` is raised synchronously, before any transaction is broadcast
- :py:class:`TransactionFailed` covers reverted, rejected and unconfirmed transactions
- :py:class:`TransportError` never escapes :py:class:`usdcx_bridge.xreserve.attestation.AttestationPoller`
"""

#: Amount is zero, negative or not an integer
REASON_INVALID_AMOUNT = "invalid_amount"

#: Amount is below ``MIN_DEPOSIT_AMOUNT``
REASON_AMOUNT_TOO_SMALL = "amount_too_small"

#: Recipient is not a valid Stacks address
REASON_MALFORMED_ADDRESS = "malformed_address"

#: Recipient is a valid Stacks address for the other Stacks network
REASON_WRONG_NETWORK = "wrong_network"

#: Source account is not a 20-byte EVM address
REASON_INVALID_ACCOUNT = "invalid_account"

#: Slippage basis points outside the allowed range
REASON_INVALID_SLIPPAGE = "invalid_slippage"

#: Web3 connection points to a different chain than the request
REASON_CHAIN_MISMATCH = "chain_mismatch"

#: Explicit minimum output cannot be honoured
REASON_MIN_AMOUNT_OUT = "min_amount_out"

#: Chain id is not an integer
REASON_INVALID_CHAIN = "invalid_chain"


class BridgeError(Exception):
    """Base class for all bridge failures."""

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class InvalidRequest(BridgeError):
    """Bridge request failed validation.

    Callers can tell failures apart by :py:attr:`reason_code`.
    """

    def __init__(self, message: str, reason_code: str = REASON_INVALID_AMOUNT):
        super().__init__(message)
        self.reason_code = reason_code


class InvalidAddress(InvalidRequest):
    """Stacks recipient is malformed or belongs to the wrong network."""

    def __init__(self, message: str, reason_code: str = REASON_MALFORMED_ADDRESS):
        super().__init__(message, reason_code)


class UnsupportedChain(BridgeError):
    """Source chain is not configured or has no live xReserve route to Stacks."""

    def __init__(self, chain_id: int, message: str | None = None):
        super().__init__(message or f"Chain {chain_id} is not supported for bridging to Stacks")
        self.chain_id = chain_id


class TransactionFailed(BridgeError):
    """Transaction was rejected by the node or reverted on-chain."""

    def __init__(self, message: str, tx_hash: str | None = None, revert_reason: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


class ConfirmationTimedOut(TransactionFailed):
    """We did not see a receipt within the confirmation timeout.

    The transaction may still confirm later.
    """


class NoMessageEvent(BridgeError):
    """Receipt does not carry a usable ``MessageSent`` event.

    The transaction was not an xReserve deposit.
    """

    def __init__(self, message: str, tx_hash: str | None = None, observed_topics: tuple[str, ...] = ()):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.observed_topics = observed_topics


class AttestationTimeout(BridgeError):
    """Attestation retry budget exhausted without a complete attestation."""

    def __init__(self, message_hash: str, attempts: int, last_error: str | None = None):
        message = f"Attestation for message {message_hash} not available after {attempts} attempts"
        if last_error:
            message += f", last error: {last_error}"
        super().__init__(message)
        self.message_hash = message_hash
        self.attempts = attempts
        self.last_error = last_error


class TransportError(BridgeError):
    """Attestation service could not be reached or returned garbage."""
