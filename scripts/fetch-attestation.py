"""Fetch the Circle attestation of an xReserve deposit.

- Resolves the message hash from the deposit receipt
- Polls Circle Iris with exponential backoff
- If no deposit is given, resumes all pending transactions in ``BRIDGE_STORE_PATH``

Usage:

.. code-block:: shell

    export JSON_RPC_SEPOLIA=...
    export DEPOSIT_TX_HASH=0x...
    python scripts/fetch-attestation.py
"""

import os
import sys

from usdcx_bridge.chain import create_bridge_web3, get_network_config
from usdcx_bridge.config import BridgeConfig
from usdcx_bridge.utils import setup_console_logging
from usdcx_bridge.xreserve.bridge import BridgeOrchestrator
from usdcx_bridge.xreserve.monitor import resume_pending_transactions

setup_console_logging(default_log_level="info")

config = BridgeConfig.from_env()
chain_id = int(os.environ.get("CHAIN_ID", config.default_chain_id))
network = get_network_config(chain_id)

web3 = create_bridge_web3(config.get_rpc_url(chain_id), timeout=config.rpc_timeout, chain_id=chain_id)
orchestrator = BridgeOrchestrator(web3, config)

deposit_tx_hash = os.environ.get("DEPOSIT_TX_HASH")

if not deposit_tx_hash:
    transactions = resume_pending_transactions(orchestrator)
    for transaction in transactions:
        print(f"{transaction.deposit_tx_hash}: {transaction.status.value} {transaction.error or ''}")
    sys.exit(0)

message_hash = orchestrator.resolve_message_hash(deposit_tx_hash)
print(f"Deposit {deposit_tx_hash} has message hash {message_hash}")

status = orchestrator.poller.fetch_with_retry(message_hash, network.stacks_network)
status.raise_for_failure()

if status.is_complete:
    print(f"Attestation: {status.attestation}")
else:
    print(f"Polling stopped: {status.error}")
    sys.exit(1)
