"""
Fixed-point credit amounts.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CREDIT_QUANTUM = Decimal("0.0001")


def to_money(value: Any) -> Decimal:
    """Convert to a Decimal quantized to four places. Floats go through str."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CREDIT_QUANTUM, rounding=ROUND_HALF_UP)
