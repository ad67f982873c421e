"""Bridge records.

Amounts are always ``int`` in USDC base units (6 decimals).
Records serialise to JSON friendly dicts for :py:class:`usdcx_bridge.store.BridgeStore`.
"""

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any

from usdcx_bridge.errors import AttestationTimeout
from usdcx_bridge.gas import FeeQuote
from usdcx_bridge.utils import native_datetime_utc_now
from usdcx_bridge.xreserve.constants import StacksNetwork


class TransactionStatus(enum.Enum):
    """Bridge transaction lifecycle."""

    #: Deposit confirmed, waiting for the attestation
    pending = "pending"

    #: Attestation received, Stacks side can mint
    completed = "completed"

    #: Attestation retry budget exhausted
    failed = "failed"


class AttestationState(enum.Enum):
    """Attestation polling state machine.

    ``pending -> fetching -> complete | pending | failed``
    """

    pending = "pending"

    fetching = "fetching"

    complete = "complete"

    failed = "failed"


class BridgeEventType(enum.Enum):
    """Progress events emitted by the orchestrator."""

    approval_started = "approval_started"
    approval_submitted = "approval_submitted"
    approval_confirmed = "approval_confirmed"
    bridge_started = "bridge_started"
    bridge_submitted = "bridge_submitted"
    bridge_confirmed = "bridge_confirmed"
    attestation_received = "attestation_received"
    error = "error"


def _format_datetime(value: datetime.datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: str | None) -> datetime.datetime | None:
    return datetime.datetime.fromisoformat(value) if value else None


@dataclass(slots=True)
class BridgeRequest:
    """What the user wants to bridge."""

    #: USDC base units
    amount: int

    #: Stacks address, ``SP...`` or ``ST...``
    recipient: str

    #: EVM address paying the USDC and the gas
    account: str

    #: Source EVM chain id
    chain_id: int

    #: Explicit minimum output, overrides slippage
    min_amount_out: int | None = None

    #: Slippage tolerance, defaults to the configured one
    slippage_bps: int | None = None


@dataclass(slots=True)
class BridgeTransaction:
    """A confirmed deposit and its attestation progress.

    Created when the deposit receipt is in and the message hash is known.
    Never deleted by this package.
    """

    chain_id: int

    deposit_tx_hash: str

    #: ``keccak256`` of the ``MessageSent`` payload, Iris lookup key
    message_hash: str

    network: StacksNetwork

    amount: int

    recipient: str

    account: str

    status: TransactionStatus = TransactionStatus.pending

    approval_tx_hash: str | None = None

    min_amount_out: int | None = None

    #: Naive UTC
    created_at: datetime.datetime = field(default_factory=native_datetime_utc_now)

    #: Hex attestation from Iris once complete
    attestation: str | None = None

    #: Why the transaction failed, if it did
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "deposit_tx_hash": self.deposit_tx_hash,
            "message_hash": self.message_hash,
            "network": self.network.value,
            "amount": self.amount,
            "recipient": self.recipient,
            "account": self.account,
            "status": self.status.value,
            "approval_tx_hash": self.approval_tx_hash,
            "min_amount_out": self.min_amount_out,
            "created_at": _format_datetime(self.created_at),
            "attestation": self.attestation,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BridgeTransaction":
        return cls(
            chain_id=data["chain_id"],
            deposit_tx_hash=data["deposit_tx_hash"],
            message_hash=data["message_hash"],
            network=StacksNetwork(data["network"]),
            amount=data["amount"],
            recipient=data["recipient"],
            account=data["account"],
            status=TransactionStatus(data["status"]),
            approval_tx_hash=data.get("approval_tx_hash"),
            min_amount_out=data.get("min_amount_out"),
            created_at=_parse_datetime(data.get("created_at")),
            attestation=data.get("attestation"),
            error=data.get("error"),
        )


@dataclass(slots=True)
class AttestationStatus:
    """Polling progress for one message hash.

    ``attempts`` only grows. Once ``complete`` the attestation does not change.
    """

    message_hash: str

    network: StacksNetwork

    state: AttestationState = AttestationState.pending

    #: Lookups made so far, across all polling runs
    attempts: int = 0

    #: Naive UTC
    last_attempt_at: datetime.datetime | None = None

    attestation: str | None = None

    error: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.state == AttestationState.complete

    def raise_for_failure(self):
        """Raise if polling gave up.

        :raise AttestationTimeout:
            State is ``failed``
        """
        if self.state == AttestationState.failed:
            raise AttestationTimeout(self.message_hash, self.attempts, self.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_hash": self.message_hash,
            "network": self.network.value,
            "state": self.state.value,
            "attempts": self.attempts,
            "last_attempt_at": _format_datetime(self.last_attempt_at),
            "attestation": self.attestation,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttestationStatus":
        return cls(
            message_hash=data["message_hash"],
            network=StacksNetwork(data["network"]),
            state=AttestationState(data["state"]),
            attempts=data["attempts"],
            last_attempt_at=_parse_datetime(data.get("last_attempt_at")),
            attestation=data.get("attestation"),
            error=data.get("error"),
        )


@dataclass(slots=True)
class FeeEstimate:
    """What a deposit will cost before we send it."""

    #: Deposit gas limit, buffered
    estimated_gas: int

    fee_quote: FeeQuote

    #: Upper bound for the gas cost, ``estimated_gas * max_fee_per_gas``
    estimated_cost_wei: int

    #: xReserve protocol fee, USDC base units
    bridge_fee: int

    estimated_confirmation_seconds: int


@dataclass(slots=True)
class BridgeEvent:
    """Progress notification passed to orchestrator listeners."""

    type: BridgeEventType

    timestamp: datetime.datetime = field(default_factory=native_datetime_utc_now)

    tx_hash: str | None = None

    data: dict[str, Any] = field(default_factory=dict)
