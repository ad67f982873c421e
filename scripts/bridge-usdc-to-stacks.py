"""Bridge USDC to Stacks USDCx.

- Reads the amount and the Stacks recipient from environment variables
- Approves xReserve if needed, deposits and waits for the Circle attestation
- Transaction history is kept in ``BRIDGE_STORE_PATH`` if set

Usage:

.. code-block:: shell

    export JSON_RPC_SEPOLIA=...
    export PRIVATE_KEY=0x...
    export STACKS_RECIPIENT=ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM
    export AMOUNT=25
    python scripts/bridge-usdc-to-stacks.py
"""

import os
import sys
from decimal import Decimal

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3.middleware import SignAndSendRawMiddlewareBuilder

from usdcx_bridge.chain import create_bridge_web3, get_network_config
from usdcx_bridge.config import BridgeConfig
from usdcx_bridge.utils import setup_console_logging
from usdcx_bridge.xreserve.bridge import BridgeOrchestrator
from usdcx_bridge.xreserve.constants import USDC_DECIMALS
from usdcx_bridge.xreserve.types import BridgeRequest, TransactionStatus

setup_console_logging(default_log_level="info")

config = BridgeConfig.from_env()
chain_id = int(os.environ.get("CHAIN_ID", config.default_chain_id))
network = get_network_config(chain_id)

web3 = create_bridge_web3(config.get_rpc_url(chain_id), timeout=config.rpc_timeout, chain_id=chain_id)
print(f"Connected to {network.name}, chain id is {web3.eth.chain_id}. the latest block is {web3.eth.block_number:,}")

# Read and setup a local private key
private_key = os.environ.get("PRIVATE_KEY")
assert private_key is not None, "You must set PRIVATE_KEY environment variable"
assert private_key.startswith("0x"), "Private key must start with 0x hex prefix"
account: LocalAccount = Account.from_key(private_key)
web3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(account), layer=0)

recipient = os.environ.get("STACKS_RECIPIENT")
assert recipient, "You must set STACKS_RECIPIENT environment variable"

decimal_amount = Decimal(os.environ.get("AMOUNT", "10"))
raw_amount = int(decimal_amount * 10**USDC_DECIMALS)

orchestrator = BridgeOrchestrator(web3, config)
orchestrator.add_listener(lambda event: print(f"{event.timestamp:%H:%M:%S} {event.type.value} {event.tx_hash or ''}"))

request = BridgeRequest(
    amount=raw_amount,
    recipient=recipient,
    account=account.address,
    chain_id=chain_id,
)

estimate = orchestrator.estimate_fees(request)
print(f"Bridging {decimal_amount} USDC from {account.address} to {recipient} on Stacks {network.stacks_network.value}")
print(f"Bridge fee {estimate.bridge_fee / 10**USDC_DECIMALS} USDC, max gas cost {estimate.estimated_cost_wei / 10**18} ETH")

confirm = input("Ok [y/n]?")
if not confirm.lower().startswith("y"):
    print("Aborted")
    sys.exit(1)

transaction = orchestrator.bridge(request)
print(f"Deposit {transaction.deposit_tx_hash} confirmed, message hash {transaction.message_hash}")
print("Waiting for Circle attestation, this may take several minutes")

transaction = orchestrator.complete_bridge(transaction)
if transaction.status == TransactionStatus.completed:
    print(f"Attestation received, USDCx will be minted to {recipient}")
else:
    print(f"Attestation not received yet: {transaction.error}")
    print("Run scripts/fetch-attestation.py later to resume")
    sys.exit(1)
