"""
Grand Exchange tax rules.

The GE keeps 2% of the sale price (rounded down) on every sale above 1,000 gp.
Sales at or below the threshold are tax free.
"""
import math

GE_TAX_RATE = 0.02
GE_TAX_THRESHOLD_GP = 1000


def is_tax_free(sell_price: float) -> bool:
    """Return True if a sale at ``sell_price`` pays no GE tax."""
    return sell_price <= GE_TAX_THRESHOLD_GP


def calculate_ge_tax(sell_price: float) -> int:
    """
    Calculate the GE tax charged on a sale.

    Args:
        sell_price: Sale price in gp

    Returns:
        Tax amount in gp (0 at or below the threshold)
    """
    if sell_price is None or is_tax_free(sell_price):
        return 0
    return int(math.floor(sell_price * GE_TAX_RATE))


def calculate_net_sell_price(sell_price: float) -> float:
    """Sale price left after the GE tax."""
    return sell_price - calculate_ge_tax(sell_price)


def calculate_profit_after_tax(buy_price: float, sell_price: float) -> float:
    """Profit per item of buying at ``buy_price`` and selling at ``sell_price``."""
    return calculate_net_sell_price(sell_price) - buy_price

