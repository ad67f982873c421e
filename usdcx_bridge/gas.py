"""Gas price strategies for bridge transactions.

`Web3.py no longer support gas price strategies post London hard work <https://web3py.readthedocs.io/en/stable/gas_price.html>`_,
so we compute EIP-1559 bids ourselves.

- Fast settlement chains (Base, Arbitrum, Optimism, Sepolia) get a bigger tip
- Other chains get a bigger fee cap
- If the chain has no fee market, use ``eth_gasPrice`` with a buffer
- If nothing works, use hardcoded constants

:py:meth:`FeeEstimator.quote` never raises.
"""

import enum
import logging
from dataclasses import dataclass
from pprint import pformat

from web3 import Web3

from usdcx_bridge.chain import NETWORKS
from usdcx_bridge.config import FeeConfig, FeeProfile

logger = logging.getLogger(__name__)


class FeeQuoteMethod(enum.Enum):
    """What method we did use for setting the gas price."""

    #: Post London hard work
    london = "london"

    #: ``eth_gasPrice`` based
    legacy = "legacy"

    #: RPC did not answer, constants
    fallback = "fallback"


@dataclass(slots=True)
class FeeQuote:
    """Gas bid for one transaction.

    Fee markets move between blocks, so a quote is never reused.
    """

    max_fee_per_gas: int

    max_priority_fee_per_gas: int

    #: How the quote was determined
    method: FeeQuoteMethod

    #: Latest block base fee, if the chain has one
    base_fee: int | None = None

    def __repr__(self):
        return f"<Fee quote method:{self.method.name} base:{self.base_fee} priority:{self.max_priority_fee_per_gas} max:{self.max_fee_per_gas}>"

    def get_tx_gas_params(self) -> dict:
        """Get gas params as they are applied to ``ContractFunction.transact()``"""
        return {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }

    def pformat(self) -> str:
        """Pretty format for logging."""

        def _format(value: int | None) -> str:
            if value is None:
                return "-"
            return f"{value / 10**9:.2f}G ({value:,})"

        data = {
            "Method": self.method.value,
            "Base Fee": _format(self.base_fee),
            "Max priority fee per gas": _format(self.max_priority_fee_per_gas),
            "Max fee per gas": _format(self.max_fee_per_gas),
        }
        return pformat(data)


def apply_fee_profile(base_fee: int, max_priority_fee: int, profile: FeeProfile) -> tuple[int, int]:
    """Turn a raw fee market suggestion to a bid.

    Raw max fee is ``2 * base_fee + priority``, the same headroom web3.py uses.
    The result always satisfies ``max_fee >= base_fee + priority``.

    :return:
        Tuple (max fee per gas, max priority fee per gas)
    """
    assert base_fee >= 0 and max_priority_fee >= 0, f"Negative fees: {base_fee}, {max_priority_fee}"

    priority_fee = max_priority_fee * profile.priority_fee_percent // 100
    max_fee = (2 * base_fee + max_priority_fee) * profile.max_fee_percent // 100

    # https://github.com/ethereum/go-ethereum/blob/2e478aab98c13577c66b4531ba240a601dbc1516/core/error.go#L87
    floor = base_fee + priority_fee
    if max_fee < floor:
        max_fee = floor

    return max_fee, priority_fee


class FeeEstimator:
    """Quote gas bids for a chain."""

    def __init__(self, web3: Web3, config: FeeConfig | None = None):
        self.web3 = web3
        self.config = config or FeeConfig()

    def get_fee_profile(self, chain_id: int) -> FeeProfile:
        network = NETWORKS.get(chain_id)
        if network is not None and network.fast_settlement:
            return self.config.fast
        return self.config.conservative

    def quote(self, chain_id: int) -> FeeQuote:
        """Get a fresh gas bid.

        :param chain_id:
            Chain the transaction goes to, selects the fee profile
        """
        try:
            quote = self._quote_fee_market(chain_id)
            if quote is not None:
                logger.debug("Fee quote for chain %d:\n%s", chain_id, quote.pformat())
                return quote
        except Exception as e:
            logger.warning("Fee market query failed on chain %d, trying eth_gasPrice: %s", chain_id, e)

        try:
            quote = self._quote_legacy()
            logger.debug("Legacy fee quote for chain %d:\n%s", chain_id, quote.pformat())
            return quote
        except Exception as e:
            logger.warning("eth_gasPrice failed on chain %d, using hardcoded fees: %s", chain_id, e)

        return FeeQuote(
            max_fee_per_gas=self.config.fallback_max_fee_per_gas,
            max_priority_fee_per_gas=self.config.fallback_max_priority_fee_per_gas,
            method=FeeQuoteMethod.fallback,
        )

    def _quote_fee_market(self, chain_id: int) -> FeeQuote | None:
        last_block = self.web3.eth.get_block("latest")
        base_fee = last_block.get("baseFeePerGas")
        if base_fee is None:
            logger.info("Chain %d has no baseFeePerGas, using legacy gas pricing", chain_id)
            return None

        max_priority_fee = self.web3.eth.max_priority_fee
        max_fee, priority_fee = apply_fee_profile(base_fee, max_priority_fee, self.get_fee_profile(chain_id))
        return FeeQuote(
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
            method=FeeQuoteMethod.london,
            base_fee=base_fee,
        )

    def _quote_legacy(self) -> FeeQuote:
        gas_price = self.web3.eth.gas_price * self.config.legacy_gas_price_percent // 100
        return FeeQuote(
            max_fee_per_gas=gas_price,
            max_priority_fee_per_gas=gas_price,
            method=FeeQuoteMethod.legacy,
        )
