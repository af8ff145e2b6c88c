"""
Capacity amounts and the light client's hex quantity encoding.

Every chain quantity on the wire (block numbers, capacities, timestamps, indexes)
is a big-endian hex string with a ``0x`` prefix, e.g. ``"0x16b969d00"``.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from pocketsync.constants import SHANNONS_PER_CKB


def parse_hex_quantity(value: str) -> int:
    """
    Decode a ``0x``-prefixed hex quantity.

    Args:
        value: Hex string such as ``"0x1a"``

    Returns:
        Decoded non-negative integer

    Raises:
        ValueError: If the prefix is missing or the digits are not hex
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {type(value).__name__}")
    if not value.startswith(("0x", "0X")):
        raise ValueError(f"Hex quantity missing 0x prefix: {value!r}")
    digits = value[2:]
    if not digits:
        raise ValueError("Empty hex quantity")
    try:
        return int(digits, 16)
    except ValueError as e:
        raise ValueError(f"Invalid hex quantity: {value!r}") from e


def to_hex_quantity(value: int) -> str:
    """Encode a non-negative integer as a ``0x``-prefixed hex quantity."""
    if value < 0:
        raise ValueError(f"Hex quantity cannot be negative: {value}")
    return hex(value)


def shannons_to_ckb(shannons: int) -> Decimal:
    """
    Convert shannons to CKB. Only use for display/output.

    Uses Decimal so large balances keep all 8 fractional digits.
    """
    return Decimal(shannons) / Decimal(SHANNONS_PER_CKB)


def ckb_to_shannons(ckb: str | Decimal | int) -> int:
    """
    Convert a CKB amount to shannons, truncating beyond 8 decimal places.

    Raises:
        ValueError: If the amount is not a valid non-negative number
    """
    try:
        value = Decimal(str(ckb))
    except InvalidOperation as e:
        raise ValueError(f"Invalid CKB amount: {ckb!r}") from e
    if value < 0:
        raise ValueError(f"CKB amount cannot be negative: {ckb}")
    quantized = value.quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)
    return int(quantized * SHANNONS_PER_CKB)


def format_amount(shannons: int, include_unit: bool = True) -> str:
    """
    Format a shannon amount for display.
    Default: '6,100,000,000 shannons (61.00000000 CKB)'
    """
    if include_unit:
        ckb = shannons_to_ckb(shannons)
        return f"{shannons:,} shannons ({ckb:.8f} CKB)"
    return f"{shannons:,}"
