"""usdcx_bridge package root.

Move USDC from EVM chains to Stacks USDCx using Circle xReserve deposits
and Circle Iris attestations.

- :py:mod:`usdcx_bridge.xreserve.bridge` for the end-to-end flow
- :py:mod:`usdcx_bridge.xreserve.attestation` for attestation polling
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"usdcx-bridge needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
