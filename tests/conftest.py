"""Shared fixtures.

Generic EVM behaviour runs on ``EthereumTesterProvider``.
USDC and xReserve deployments are not available there, so the bridge flow runs on
:py:class:`usdcx_bridge.xreserve.testing.XReserveTestProvider`.
Circle Iris is a mocked ``requests.Session``.
"""

import datetime
from unittest.mock import Mock

import pytest
from web3 import EthereumTesterProvider, Web3

from usdcx_bridge.chain import SEPOLIA
from usdcx_bridge.config import AttestationRetryConfig, BridgeConfig
from usdcx_bridge.store import BridgeStore
from usdcx_bridge.xreserve.attestation import AttestationPoller
from usdcx_bridge.xreserve.bridge import BridgeOrchestrator
from usdcx_bridge.xreserve.testing import XReserveTestProvider

#: A real Stacks testnet address
TESTNET_RECIPIENT = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"

#: A real Stacks mainnet address
MAINNET_RECIPIENT = "SP3DX3H4FEYZJZ586MFBS25ZW3HZDMEW92260R2PR"


def make_response(status_code: int = 200, payload=None) -> Mock:
    """Mock ``requests.Response`` for Iris."""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture()
def provider() -> XReserveTestProvider:
    return XReserveTestProvider(chain_id=SEPOLIA)


@pytest.fixture()
def web3(provider) -> Web3:
    return Web3(provider, middleware=[])


@pytest.fixture
def tester_provider():
    # https://web3py.readthedocs.io/en/stable/examples.html#contract-unit-tests-in-python
    return EthereumTesterProvider()


@pytest.fixture
def tester_web3(tester_provider) -> Web3:
    """Set up a local unit testing blockchain."""
    return Web3(tester_provider)


@pytest.fixture()
def deployer(tester_web3) -> str:
    """Funded account on the unit testing blockchain."""
    return tester_web3.eth.accounts[0]


@pytest.fixture()
def owner() -> str:
    """Bridging user."""
    return Web3.to_checksum_address("0x" + "ab" * 20)


@pytest.fixture()
def testnet_recipient() -> str:
    return TESTNET_RECIPIENT


@pytest.fixture()
def mainnet_recipient() -> str:
    return MAINNET_RECIPIENT


@pytest.fixture()
def bridge_config() -> BridgeConfig:
    """Fast confirmation polling for the fake node."""
    return BridgeConfig(
        confirmation_timeout=datetime.timedelta(seconds=2),
        confirmation_poll_delay=datetime.timedelta(milliseconds=10),
    )


@pytest.fixture()
def store() -> BridgeStore:
    return BridgeStore()


@pytest.fixture()
def iris_session() -> Mock:
    """Mocked HTTP session, set ``get.side_effect`` or ``get.return_value`` in tests."""
    return Mock()


@pytest.fixture()
def sleeps() -> list[float]:
    """Backoff delays the poller asked for."""
    return []


@pytest.fixture()
def poller(store, iris_session, sleeps) -> AttestationPoller:
    return AttestationPoller(AttestationRetryConfig(), store=store, session=iris_session, sleep=sleeps.append)


@pytest.fixture()
def orchestrator(web3, bridge_config, store, poller) -> BridgeOrchestrator:
    return BridgeOrchestrator(web3, bridge_config, store=store, poller=poller)


@pytest.fixture()
def iris_response():
    """Factory for mocked Iris responses."""
    return make_response
