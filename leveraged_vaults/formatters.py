"""Formatting, conversion and integer maths utilities."""

from decimal import Decimal
from enum import Enum

from web3 import Web3

from leveraged_vaults.constants import MAX_UINT256


class Rounding(Enum):
    DOWN = "down"
    UP = "up"


def as_int(value, *, default: int = 0) -> int:
    """Convert value to int, handling various types."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        v = value.strip()
        if v.startswith("0x"):
            return int(v, 16)
        return int(v)
    return int(value)


def normalize_address(value: str) -> str:
    """Normalize an account identifier to its EIP-55 checksum form."""
    if not Web3.is_address(value):
        raise ValueError(f"Not an address: {value!r}")
    return Web3.to_checksum_address(value)


def derive_address(label: str) -> str:
    """Deterministic address for a human label (last 20 bytes of keccak256(label))."""
    digest = Web3.keccak(text=label)
    return Web3.to_checksum_address("0x" + bytes(digest[-20:]).hex())


def ceil_div(numer: int, denom: int) -> int:
    """Ceiling division."""
    if denom == 0:
        raise ZeroDivisionError("denom must be > 0")
    return (numer + denom - 1) // denom


def mul_div(a: int, b: int, denom: int, rounding: Rounding = Rounding.DOWN) -> int:
    """Compute `a * b / denom` on non-negative integers with explicit rounding."""
    if rounding is Rounding.UP:
        return ceil_div(a * b, denom)
    if denom == 0:
        raise ZeroDivisionError("denom must be > 0")
    return (a * b) // denom


def format_bp(bp: int) -> str:
    """Format basis points as percentage."""
    return f"{(Decimal(bp) / Decimal(100)):.2f}%"


def format_units(value: int, unit_decimals: int, *, symbol: str = "", decimals: int = 6, approx: bool = False) -> str:
    """Format a raw amount in whole units of a token with `unit_decimals` decimals."""
    if value == MAX_UINT256:
        return "unlimited"
    amount = Decimal(value) / (Decimal(10) ** unit_decimals)
    s = f"{amount:.{decimals}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    prefix = "~" if approx else ""
    suffix = f" {symbol}" if symbol else ""
    return f"{prefix}{s}{suffix}"


def short_address(address: str) -> str:
    """Abbreviate an address for console output."""
    return f"{address[:10]}...{address[-6:]}"


def delta_indicator(prev_val: int, cur_val: int) -> str:
    """Returns emoji indicator for value change."""
    if cur_val > prev_val:
        return "📈"
    if cur_val < prev_val:
        return "📉"
    return "➡️"
