"""Once-per-tick MOEX trading cycle: dip buys, profit sells, momentum entries."""

__all__ = [
    "settings",
    "runner",
]
