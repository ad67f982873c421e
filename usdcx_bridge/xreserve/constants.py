"""Circle xReserve and Stacks USDCx constants.

xReserve holds USDC on the source EVM chain and emits a ``MessageSent`` event
for every deposit. Circle's Iris service attests the message and the Stacks
side mints USDCx to the recipient.

- `xReserve documentation <https://developers.circle.com/xreserve>`__
- `Stacks USDCx <https://docs.stacks.co/learn/bridging/usdcx>`__
"""

import datetime
import enum

from eth_typing import HexAddress, HexStr


class StacksNetwork(enum.Enum):
    """Stacks network a recipient address belongs to."""

    #: ``SP`` and ``SM`` addresses
    mainnet = "mainnet"

    #: ``ST`` and ``SN`` addresses
    testnet = "testnet"


#: xReserve domain id of the Stacks chain.
#:
#: xReserve uses its own domain identifiers, not chain ids.
STACKS_DOMAIN = 10003

#: ``keccak256("MessageSent(bytes)")``
MESSAGE_SENT_TOPIC: HexStr = HexStr("0x8c5261668696ce22758910d05bab8f186d6eb247ceac2af2e82c7dc17669b036")

#: Solidity signature of the deposit entry point
DEPOSIT_TO_REMOTE_SIGNATURE = "depositToRemote(uint256,uint32,bytes32,address,uint256,bytes)"

#: USDC has 6 decimals on every supported chain
USDC_DECIMALS = 6

#: Smallest deposit xReserve accepts, 10 USDC
MIN_DEPOSIT_AMOUNT = 10 * 10**USDC_DECIMALS

#: Protocol fee passed as ``maxFee``, 4.80 USDC
BRIDGE_FEE = 4_800_000

#: Upper bound for a single ERC-20 approval, 1000 USDC.
#:
#: Limits what a compromised spender contract could pull.
MAX_APPROVAL = 1_000_000_000

#: We do not use xReserve hooks
HOOK_DATA = b""

#: Slippage bounds in basis points
MIN_SLIPPAGE_BPS = 10

#: Slippage bounds in basis points
MAX_SLIPPAGE_BPS = 100

#: Used when the request does not say
DEFAULT_SLIPPAGE_BPS = 50

#: Circle Iris attestation API base URL (mainnet)
IRIS_API_MAINNET_URL = "https://iris-api.circle.com"

#: Circle Iris attestation API base URL (testnet, sandbox)
IRIS_API_TESTNET_URL = "https://iris-api-sandbox.circle.com"

#: Iris API base URL per Stacks network
IRIS_API_URLS: dict[StacksNetwork, str] = {
    StacksNetwork.mainnet: IRIS_API_MAINNET_URL,
    StacksNetwork.testnet: IRIS_API_TESTNET_URL,
}

#: USDCx token contract on Stacks mainnet
STACKS_USDCX_MAINNET = "SP3DX3H4FEYZJZ586MFBS25ZW3HZDMEW92260R2PR.usdcx-v1"

#: USDCx token contract on Stacks testnet
STACKS_USDCX_TESTNET = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM.usdcx-v1"

#: Gas limit used when ``depositToRemote()`` estimation fails
DEPOSIT_GAS_FALLBACK = 500_000

#: Gas limit used when ``approve()`` estimation fails
APPROVAL_GAS_FALLBACK = 150_000

#: Gas estimates are multiplied by this percentage
GAS_BUFFER_PERCENT = 120

#: Attestation polling defaults
DEFAULT_MAX_RETRIES = 10

#: Pending transactions older than this are reported as stuck
STUCK_TRANSACTION_THRESHOLD = datetime.timedelta(minutes=30)

#
# Deployments
#

#: Native USDC on Ethereum mainnet
USDC_ETHEREUM: HexAddress = HexAddress("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48")

#: Native USDC on Arbitrum One
USDC_ARBITRUM: HexAddress = HexAddress("0xaf88d065e77c8cC2239327C5EDb3A432268e5831")

#: Native USDC on Optimism
USDC_OPTIMISM: HexAddress = HexAddress("0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85")

#: Native USDC on Base
USDC_BASE: HexAddress = HexAddress("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913")

#: Native USDC on Polygon PoS
USDC_POLYGON: HexAddress = HexAddress("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359")

#: Native USDC on Avalanche C-chain
USDC_AVALANCHE: HexAddress = HexAddress("0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E")

#: Circle test USDC on Sepolia
USDC_SEPOLIA: HexAddress = HexAddress("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238")

#: xReserve on Ethereum mainnet
X_RESERVE_ETHEREUM: HexAddress = HexAddress("0x8888888199b2Df864bf678259607d6D5EBb4e3Ce")

#: xReserve on Arbitrum One
X_RESERVE_ARBITRUM: HexAddress = HexAddress("0x19330d10D9Cc8751218eaf51E8885D058642E08A")

#: xReserve on Optimism
X_RESERVE_OPTIMISM: HexAddress = HexAddress("0x2B4069517957735bE00ceE0fadAE88a26365528f")

#: xReserve on Base
X_RESERVE_BASE: HexAddress = HexAddress("0x1682Ae6375C4E4A97e4B583BC394c861A46D8962")

#: xReserve on Polygon PoS
X_RESERVE_POLYGON: HexAddress = HexAddress("0x9daF8c91AEFAE50b9c0E69629D3F6Ca40cA3B3FE")

#: xReserve on Avalanche C-chain
X_RESERVE_AVALANCHE: HexAddress = HexAddress("0x6b25532e1060CE10cc3B0A99e5683b91BFDe6982")

#: xReserve on Sepolia
X_RESERVE_SEPOLIA: HexAddress = HexAddress("0x008888878f94C0d87defdf0B07f46B93C1934442")
