"""Bridge configuration.

Configuration is plain dataclasses. Operator scripts build it from
environment variables with :py:meth:`BridgeConfig.from_env`:

- ``JSON_RPC_ETHEREUM``, ``JSON_RPC_SEPOLIA``, ... one per chain in :py:data:`usdcx_bridge.chain.NETWORKS`
- ``BRIDGE_DEFAULT_CHAIN_ID``
- ``BRIDGE_SLIPPAGE_BPS``
- ``BRIDGE_STORE_PATH``: SQLite file for transaction history
- ``ATTESTATION_MAX_RETRIES``
- ``IRIS_API_MAINNET``, ``IRIS_API_TESTNET``: override Circle Iris endpoints
"""

import datetime
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from usdcx_bridge.chain import NETWORKS, SEPOLIA
from usdcx_bridge.xreserve.constants import DEFAULT_MAX_RETRIES, DEFAULT_SLIPPAGE_BPS, IRIS_API_URLS, StacksNetwork
from usdcx_bridge.xreserve.slippage import is_valid_slippage


@dataclass(slots=True)
class AttestationRetryConfig:
    """Backoff parameters for Circle Iris polling.

    ``delay(attempt) = min(initial_delay * backoff_multiplier ** attempt, max_delay)``
    """

    #: Retries after the first lookup, so ``max_retries + 1`` lookups in total
    max_retries: int = DEFAULT_MAX_RETRIES

    #: Seconds before the first retry
    initial_delay: float = 2.0

    #: Delay grows by this factor every attempt
    backoff_multiplier: float = 2.0

    #: Cap for a single sleep, seconds
    max_delay: float = 60.0

    #: HTTP timeout for one lookup, seconds
    request_timeout: float = 30.0

    #: Iris base URL per Stacks network
    iris_api_urls: dict[StacksNetwork, str] = field(default_factory=lambda: dict(IRIS_API_URLS))

    def __post_init__(self):
        if type(self.max_retries) != int or self.max_retries < 0:
            raise ValueError(f"max_retries must be a non-negative integer, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError(f"Delays must be non-negative, got {self.initial_delay}, {self.max_delay}")
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout}")

    def get_api_url(self, network: StacksNetwork) -> str:
        return self.iris_api_urls[network].rstrip("/")


@dataclass(slots=True, frozen=True)
class FeeProfile:
    """Multipliers applied to the raw fee market suggestion, in percents."""

    priority_fee_percent: int

    max_fee_percent: int


#: Layer-2 like chains: pay a bit more tip for near-immediate inclusion
FAST_FEE_PROFILE = FeeProfile(priority_fee_percent=150, max_fee_percent=110)

#: Everything else: bias toward reliability over latency
CONSERVATIVE_FEE_PROFILE = FeeProfile(priority_fee_percent=120, max_fee_percent=115)


@dataclass(slots=True)
class FeeConfig:
    """Gas bidding configuration for :py:class:`usdcx_bridge.gas.FeeEstimator`."""

    fast: FeeProfile = FAST_FEE_PROFILE

    conservative: FeeProfile = CONSERVATIVE_FEE_PROFILE

    #: Buffer on ``eth_gasPrice`` when the chain has no fee market
    legacy_gas_price_percent: int = 120

    #: Last resort when every RPC query fails
    fallback_max_fee_per_gas: int = 20 * 10**9

    #: Last resort when every RPC query fails
    fallback_max_priority_fee_per_gas: int = 2 * 10**9


@dataclass(slots=True)
class BridgeConfig:
    """Everything the orchestrator needs besides the Web3 connection."""

    #: Chain used by scripts when none is given
    default_chain_id: int = SEPOLIA

    #: JSON-RPC URL per chain id
    rpc_urls: dict[int, str] = field(default_factory=dict)

    attestation: AttestationRetryConfig = field(default_factory=AttestationRetryConfig)

    fees: FeeConfig = field(default_factory=FeeConfig)

    #: Used when the request carries no explicit minimum output
    default_slippage_bps: int = DEFAULT_SLIPPAGE_BPS

    #: How long we wait for approval and deposit receipts
    confirmation_timeout: datetime.timedelta = datetime.timedelta(minutes=5)

    #: Receipt poll interval
    confirmation_poll_delay: datetime.timedelta = datetime.timedelta(seconds=1)

    #: JSON-RPC request timeout, seconds
    rpc_timeout: float = 30.0

    #: SQLite transaction history. In-memory if not set.
    store_path: Path | None = None

    def __post_init__(self):
        if self.default_chain_id not in NETWORKS:
            raise ValueError(f"Unknown default chain id {self.default_chain_id}")
        if not is_valid_slippage(self.default_slippage_bps):
            raise ValueError(f"Invalid default slippage {self.default_slippage_bps} bps")
        if self.rpc_timeout <= 0:
            raise ValueError(f"rpc_timeout must be positive, got {self.rpc_timeout}")

    def get_rpc_url(self, chain_id: int) -> str:
        """JSON-RPC URL for a chain.

        :raise ValueError:
            Not configured
        """
        url = self.rpc_urls.get(chain_id)
        if not url:
            env_var = NETWORKS[chain_id].get_json_rpc_env_var() if chain_id in NETWORKS else "JSON_RPC_<CHAIN>"
            raise ValueError(f"No JSON-RPC URL configured for chain {chain_id}, set {env_var}")
        return url

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BridgeConfig":
        """Read configuration from environment variables.

        :param environ:
            Defaults to ``os.environ``

        :raise ValueError:
            If any variable has a bad value
        """
        if environ is None:
            environ = os.environ

        rpc_urls = {}
        for chain_id, network in NETWORKS.items():
            url = environ.get(network.get_json_rpc_env_var())
            if url:
                rpc_urls[chain_id] = url

        iris_api_urls = dict(IRIS_API_URLS)
        if environ.get("IRIS_API_MAINNET"):
            iris_api_urls[StacksNetwork.mainnet] = environ["IRIS_API_MAINNET"]
        if environ.get("IRIS_API_TESTNET"):
            iris_api_urls[StacksNetwork.testnet] = environ["IRIS_API_TESTNET"]

        attestation = AttestationRetryConfig(
            max_retries=_read_int(environ, "ATTESTATION_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            iris_api_urls=iris_api_urls,
        )

        store_path = environ.get("BRIDGE_STORE_PATH")

        return cls(
            default_chain_id=_read_int(environ, "BRIDGE_DEFAULT_CHAIN_ID", SEPOLIA),
            rpc_urls=rpc_urls,
            attestation=attestation,
            default_slippage_bps=_read_int(environ, "BRIDGE_SLIPPAGE_BPS", DEFAULT_SLIPPAGE_BPS),
            store_path=Path(store_path) if store_path else None,
        )


def _read_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from e
