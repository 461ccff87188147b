"""Fixed-point money codec.

The broker encodes prices and quantities as ``{units, nano}`` pairs where
``units`` is the integer part (sometimes serialised as a string, since it is
an int64 on the wire) and ``nano`` is the fractional part in 1e-9 steps.
"""

from __future__ import annotations

from typing import Any, Mapping

NANO = 1_000_000_000


def q_to_float(value: Mapping[str, Any] | Any | None) -> float | None:
    """Convert a Quotation / MoneyValue into a float; ``None`` stays ``None``."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        units = value.get("units", 0)
        nano = value.get("nano", 0)
    else:
        units = getattr(value, "units", 0)
        nano = getattr(value, "nano", 0)
    return int(units or 0) + int(nano or 0) / NANO


def float_to_q(amount: float) -> dict[str, Any]:
    """Encode a float as a Quotation body for order requests."""
    units = int(amount)
    nano = int(round((amount - units) * NANO))
    if nano >= NANO:
        units += 1
        nano -= NANO
    elif nano <= -NANO:
        units -= 1
        nano += NANO
    return {"units": str(units), "nano": nano}
