"""Integer amount helpers for the settlement asset (USDC, 6 decimals)."""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR

from .errors import AmountOverflowError, InvalidAmountError


MINOR_UNITS_PER_USDC = 1_000_000
BPS_DENOMINATOR = 10_000
MAX_FEE_BPS = BPS_DENOMINATOR
I128_MAX = 2**127 - 1
_USDC_QUANT = Decimal("0.000001")


def ensure_amount(value: int) -> int:
    """Reject non-integer or out-of-range amounts."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"Amount must be an int, got {type(value).__name__}")
    if value > I128_MAX:
        raise AmountOverflowError(f"Amount {value} exceeds {I128_MAX}")
    return value


def checked_add(a: int, b: int) -> int:
    total = a + b
    if total > I128_MAX:
        raise AmountOverflowError(f"{a} + {b} exceeds {I128_MAX}")
    return total


def compute_fee(principal: int, fee_bps: int) -> int:
    """Platform fee as floor(principal * fee_bps / 10000).

    The product must fit the signed 128-bit range before division; the
    result is rejected rather than silently truncated.
    """
    ensure_amount(principal)
    if principal <= 0:
        raise InvalidAmountError(principal)
    product = principal * fee_bps
    if product > I128_MAX:
        raise AmountOverflowError(
            f"Fee computation overflow: {principal} * {fee_bps} exceeds {I128_MAX}"
        )
    return product // BPS_DENOMINATOR


def usdc_to_minor(value: Decimal | int | str) -> int:
    """Convert a USDC amount to minor units, rounding down."""
    dec = Decimal(str(value)).quantize(_USDC_QUANT, rounding=ROUND_FLOOR)
    return int(dec * MINOR_UNITS_PER_USDC)


def minor_to_usdc_decimal(value: int) -> Decimal:
    return (Decimal(value) / Decimal(MINOR_UNITS_PER_USDC)).quantize(_USDC_QUANT)


def format_usdc(value: int) -> str:
    """Format minor units as a display string, e.g. ``12.500000 USDC``."""
    return f"{minor_to_usdc_decimal(value)} USDC"


def format_bps(fee_bps: int) -> str:
    return f"{Decimal(fee_bps) / 100:.2f}%"
