"""Circle xReserve deposits from EVM chains to Stacks USDCx.

The flow is

1. Approve the xReserve contract to spend USDC (:py:mod:`usdcx_bridge.xreserve.allowance`)
2. Call ``depositToRemote()`` on xReserve (:py:mod:`usdcx_bridge.xreserve.deposit`)
3. Read the ``MessageSent`` event from the receipt (:py:mod:`usdcx_bridge.xreserve.message`)
4. Poll Circle Iris for the attestation (:py:mod:`usdcx_bridge.xreserve.attestation`)

:py:class:`usdcx_bridge.xreserve.bridge.BridgeOrchestrator` composes all of these.
"""
