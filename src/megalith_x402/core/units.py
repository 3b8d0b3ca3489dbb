"""
Conversion between human-readable token amounts and atomic units.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from .errors import ConfigurationError

__all__ = ["AmountLike", "parse_amount", "to_atomic_units", "from_atomic_units"]

AmountLike = Union[Decimal, str, int, float]


def parse_amount(value: AmountLike, field_name: str = "amount") -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ConfigurationError(
            f"{field_name} must be a valid decimal number, got '{value}'"
        ) from exc
    if not amount.is_finite():
        raise ConfigurationError(f"{field_name} must be a finite number, got '{value}'")
    return amount


def to_atomic_units(amount: AmountLike, decimals: int) -> int:
    """
    Scale ``amount`` by ``10 ** decimals``.

    Amounts with more fractional digits than the token supports are rejected
    rather than silently truncated.
    """
    value = parse_amount(amount)
    scaled = value.scaleb(decimals)
    try:
        integral = scaled.to_integral_exact()
    except InvalidOperation as exc:
        raise ConfigurationError(
            f"Amount {value} cannot be represented with {decimals} decimals"
        ) from exc

    if integral != scaled:
        raise ConfigurationError(
            f"Amount {value} cannot be represented with {decimals} decimals"
        )
    as_int = int(integral)
    if as_int <= 0:
        raise ConfigurationError("Payment amount must be greater than zero")

    return as_int


def from_atomic_units(value: Union[int, str], decimals: int) -> Decimal:
    return Decimal(int(value)).scaleb(-decimals)
