"""Slippage tolerance helpers.

All math is integer math on USDC base units.
"""

from decimal import Decimal

from usdcx_bridge.errors import REASON_INVALID_SLIPPAGE, InvalidRequest
from usdcx_bridge.xreserve.constants import MAX_SLIPPAGE_BPS, MIN_SLIPPAGE_BPS

#: Basis points in 100%
BPS_DENOMINATOR = 10_000


def is_valid_slippage(slippage_bps: int) -> bool:
    """Slippage must be an integer between 0.1% and 1%."""
    return type(slippage_bps) == int and MIN_SLIPPAGE_BPS <= slippage_bps <= MAX_SLIPPAGE_BPS


def validate_slippage(slippage_bps: int):
    """Check slippage is within the allowed range.

    Out of range values are rejected, never clamped.

    :raise InvalidRequest:
        With ``invalid_slippage`` reason code
    """
    if not is_valid_slippage(slippage_bps):
        raise InvalidRequest(
            f"Slippage must be between {MIN_SLIPPAGE_BPS} and {MAX_SLIPPAGE_BPS} bps, got {slippage_bps}",
            REASON_INVALID_SLIPPAGE,
        )


def min_amount_out(amount: int, slippage_bps: int) -> int:
    """Minimum amount the recipient must get.

    ``floor(amount * (10000 - bps) / 10000)``

    :param amount:
        Deposited amount in USDC base units

    :param slippage_bps:
        Tolerance in basis points, validated with :py:func:`validate_slippage`
    """
    assert type(amount) == int, f"Got {type(amount)}"
    validate_slippage(slippage_bps)
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def bps_to_percent(slippage_bps: int) -> Decimal:
    """50 bps -> Decimal("0.5")"""
    return Decimal(slippage_bps) / Decimal(100)
