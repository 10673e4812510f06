from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from django.core.exceptions import ValidationError

from rab_items.services.expression import ExpressionError, evaluate
from rab_items.services.validation import parse_decimal

ZERO = Decimal("0")
WHOLE_RUPIAH = Decimal("1")


def _evaluate_cell(raw: Any, field: str) -> Optional[Decimal]:
    if isinstance(raw, str) and raw.strip().startswith("="):
        try:
            return evaluate(raw.strip()[1:])
        except ExpressionError as exc:
            raise ValidationError({field: [f"Formula tidak valid: {exc}"]}) from exc
    return parse_decimal(raw, field)


def parse_quantity(raw: Any) -> Optional[Decimal]:
    """Volume cell: number or ``=`` formula; blank clears the volume."""
    return _evaluate_cell(raw, "quantity")


def parse_unit_price(raw: Any) -> Decimal:
    """Unit price cell, rounded half-up to a whole rupiah. Blank means 0."""
    value = _evaluate_cell(raw, "unit_price")
    if value is None:
        return ZERO
    if value < 0:
        raise ValidationError({"unit_price": ["Harga satuan tidak boleh negatif."]})
    return value.quantize(WHOLE_RUPIAH, rounding=ROUND_HALF_UP)
