from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

VOLUME_DECIMALS = 2
MONEY_DECIMALS = 0


def format_number(value, decimals: int) -> str:
    """Indonesian grouping: ``1234567.5`` -> ``1.234.567,50`` for two decimals."""
    quantum = Decimal(1).scaleb(-decimals)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    text = f"{rounded:,.{decimals}f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_volume(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    return format_number(value, VOLUME_DECIMALS)


def format_money(value: Optional[Decimal]) -> str:
    return format_number(value or Decimal("0"), MONEY_DECIMALS)
