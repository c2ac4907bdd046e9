# Overview: Kilogram arithmetic and shrinkage math shared by the ledgers.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from co2ledger.errors import ValidationError


# Weights are kept to the gram
KG_QUANTUM = Decimal("0.001")

# Fixed shrinkage rates (percent)
FILLING_SHRINKAGE_PERCENTAGE = Decimal("1.0")
TANK_SHRINKAGE_PERCENTAGE = Decimal("3.0")

ZERO = Decimal("0")


def quantize_kg(value: Decimal) -> Decimal:
    return value.quantize(KG_QUANTUM, rounding=ROUND_HALF_UP)


def to_kg(value: Any, *, field: str = "weight", label: str = "invalid weight") -> Decimal:
    """
    Convert user input to a strictly positive kilogram Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label}: {field} is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{label}: {field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{label}: {field} must be a number")
    # Reject after rounding so nothing below one gram is stored as 0.000
    amount = quantize_kg(amount)
    if amount <= 0:
        raise ValidationError(f"{label}: {field} must be at least 0.001 kg")
    return amount


def compute_shrinkage(quantity: Decimal, percentage: Decimal) -> Decimal:
    """shrinkage_amount = quantity * percentage / 100, rounded to the gram."""
    return quantize_kg(Decimal(quantity) * Decimal(percentage) / Decimal(100))


def to_float(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(value)
