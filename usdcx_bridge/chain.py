"""Source chain configuration.

One :py:class:`NetworkConfig` per EVM chain we can bridge USDC from.
In this module, we also have helpers to create a tuned Web3 connection.
"""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from web3 import HTTPProvider, Web3

from usdcx_bridge.errors import UnsupportedChain
from usdcx_bridge.xreserve.constants import (
    STACKS_DOMAIN,
    STACKS_USDCX_MAINNET,
    STACKS_USDCX_TESTNET,
    USDC_ARBITRUM,
    USDC_AVALANCHE,
    USDC_BASE,
    USDC_ETHEREUM,
    USDC_OPTIMISM,
    USDC_POLYGON,
    USDC_SEPOLIA,
    X_RESERVE_ARBITRUM,
    X_RESERVE_AVALANCHE,
    X_RESERVE_BASE,
    X_RESERVE_ETHEREUM,
    X_RESERVE_OPTIMISM,
    X_RESERVE_POLYGON,
    X_RESERVE_SEPOLIA,
    StacksNetwork,
)

logger = logging.getLogger(__name__)


#: Ethereum mainnet chain id
ETHEREUM = 1

#: Arbitrum One chain id
ARBITRUM = 42161

#: Optimism chain id
OPTIMISM = 10

#: Base chain id
BASE = 8453

#: Polygon PoS chain id
POLYGON = 137

#: Avalanche C-chain chain id
AVALANCHE = 43114

#: Sepolia testnet chain id
SEPOLIA = 11155111

#: These chains include blocks fast and get the aggressive fee profile
FAST_SETTLEMENT_CHAIN_IDS = {BASE, ARBITRUM, OPTIMISM, SEPOLIA}

#: These chains need POA middleware
POA_MIDDLEWARE_NEEDED_CHAIN_IDS = {POLYGON, AVALANCHE}


@dataclass(slots=True, frozen=True)
class NetworkConfig:
    """xReserve deployment on one source chain."""

    #: Human readable chain name, also used in ``JSON_RPC_<NAME>`` environment variables
    name: str

    #: EVM chain id
    chain_id: int

    #: Native USDC token address
    usdc: HexAddress

    #: xReserve contract address
    x_reserve: HexAddress

    #: Stacks network deposits from this chain are minted on
    stacks_network: StacksNetwork

    #: USDCx contract id on the Stacks side
    stacks_usdcx: str

    #: Destination domain passed to ``depositToRemote()``
    stacks_domain: int = STACKS_DOMAIN

    #: Use the layer-2 fee profile
    fast_settlement: bool = False

    #: Direct xReserve route to Stacks is live
    direct_bridge: bool = False

    def get_estimated_confirmation_seconds(self) -> int:
        """Rough time until the deposit is included."""
        return 3 if self.fast_settlement else 15

    def get_json_rpc_env_var(self) -> str:
        """Environment variable holding the JSON-RPC URL for this chain, e.g. ``JSON_RPC_ETHEREUM``."""
        return f"JSON_RPC_{self.name.upper()}"


def _network(name: str, chain_id: int, usdc: HexAddress, x_reserve: HexAddress, testnet=False, direct_bridge=False) -> NetworkConfig:
    return NetworkConfig(
        name=name,
        chain_id=chain_id,
        usdc=usdc,
        x_reserve=x_reserve,
        stacks_network=StacksNetwork.testnet if testnet else StacksNetwork.mainnet,
        stacks_usdcx=STACKS_USDCX_TESTNET if testnet else STACKS_USDCX_MAINNET,
        fast_settlement=chain_id in FAST_SETTLEMENT_CHAIN_IDS,
        direct_bridge=direct_bridge,
    )


#: All known xReserve deployments, by chain id
NETWORKS: dict[int, NetworkConfig] = {
    ETHEREUM: _network("Ethereum", ETHEREUM, USDC_ETHEREUM, X_RESERVE_ETHEREUM, direct_bridge=True),
    ARBITRUM: _network("Arbitrum", ARBITRUM, USDC_ARBITRUM, X_RESERVE_ARBITRUM),
    OPTIMISM: _network("Optimism", OPTIMISM, USDC_OPTIMISM, X_RESERVE_OPTIMISM),
    BASE: _network("Base", BASE, USDC_BASE, X_RESERVE_BASE),
    POLYGON: _network("Polygon", POLYGON, USDC_POLYGON, X_RESERVE_POLYGON),
    AVALANCHE: _network("Avalanche", AVALANCHE, USDC_AVALANCHE, X_RESERVE_AVALANCHE),
    SEPOLIA: _network("Sepolia", SEPOLIA, USDC_SEPOLIA, X_RESERVE_SEPOLIA, testnet=True, direct_bridge=True),
}


def get_network_config(chain_id: int) -> NetworkConfig:
    """Look up the xReserve deployment for a chain.

    :raise UnsupportedChain:
        We do not know xReserve on this chain
    """
    assert type(chain_id) == int, f"Got: {chain_id}"
    config = NETWORKS.get(chain_id)
    if config is None:
        raise UnsupportedChain(chain_id)
    return config


def get_chain_name(chain_id: int) -> str:
    """Translate chain id to its name."""
    config = NETWORKS.get(chain_id)
    if config:
        return config.name
    return f"<Unknown chain, id {chain_id}>"


def is_fast_settlement_chain(chain_id: int) -> bool:
    return chain_id in FAST_SETTLEMENT_CHAIN_IDS


def get_supported_chain_ids(direct_only=False) -> list[int]:
    """List chain ids we have xReserve deployments for.

    :param direct_only:
        Only chains with a live direct route to Stacks
    """
    return [chain_id for chain_id, config in NETWORKS.items() if config.direct_bridge or not direct_only]


def create_bridge_web3(json_rpc_url: str, timeout: float = 30.0, chain_id: int | None = None) -> Web3:
    """Create a Web3 connection with a bounded request timeout.

    :param json_rpc_url:
        HTTP JSON-RPC endpoint

    :param timeout:
        Seconds for each JSON-RPC request

    :param chain_id:
        If known, skip ``eth_chainId`` when deciding POA middleware
    """
    web3 = Web3(HTTPProvider(json_rpc_url, request_kwargs={"timeout": timeout}))

    if chain_id is None:
        chain_id = web3.eth.chain_id

    if chain_id in POA_MIDDLEWARE_NEEDED_CHAIN_IDS:
        from web3.middleware import ExtraDataToPOAMiddleware

        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    logger.info("Connected to %s, chain id %d", get_chain_name(chain_id), chain_id)
    return web3
