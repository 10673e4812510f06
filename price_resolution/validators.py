from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from rab_items.models import Component
from rab_items.services.validation import ErrorCollector, NumericParser

ZERO = Decimal("0")

_ERR_NAME_REQUIRED = "Nama tidak boleh kosong."
_ERR_NEGATIVE_PRICE = "Harga tidak boleh negatif."
_ERR_DUPLICATE = "Nama '{name}' sudah ada di database."


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_price(errors: ErrorCollector, field: str, value: Any) -> Decimal:
    price = NumericParser(errors, field).parse(value)
    if price is None:
        return ZERO
    if price < 0:
        errors.add(field, _ERR_NEGATIVE_PRICE)
    return price


def validate_price_entry(
    payload: Mapping[str, Any],
    exists: Optional[Callable[[str], bool]] = None,
) -> Dict[str, Any]:
    """Clean a price catalog payload; raises ``ValidationError`` on any problem."""
    errors = ErrorCollector()
    name = _clean_text(payload.get("name"))
    if not name:
        errors.add("name", _ERR_NAME_REQUIRED)
    elif exists is not None and exists(name):
        errors.add("name", _ERR_DUPLICATE.format(name=name))

    cleaned = {
        "name": name,
        "category": _clean_text(payload.get("category")) or "Material",
        "unit": _clean_text(payload.get("unit")),
        "unit_price": _parse_price(errors, "unit_price", payload.get("unit_price")),
        "source_note": _clean_text(payload.get("source_note")),
    }
    errors.raise_if_any()
    return cleaned


def validate_work_entry(
    payload: Mapping[str, Any],
    exists: Optional[Callable[[str], bool]] = None,
    *,
    default_category: str = "Sipil",
) -> Dict[str, Any]:
    errors = ErrorCollector()
    name = _clean_text(payload.get("name"))
    if not name:
        errors.add("name", _ERR_NAME_REQUIRED)
    elif exists is not None and exists(name):
        errors.add("name", _ERR_DUPLICATE.format(name=name))

    breakdown = payload.get("default_breakdown") or ()
    components = []
    if isinstance(breakdown, Iterable) and not isinstance(breakdown, (str, bytes, Mapping)):
        for position, row in enumerate(breakdown):
            if isinstance(row, Component):
                components.append(row)
            elif isinstance(row, Mapping):
                try:
                    components.append(Component.from_dict(row))
                except ValueError:
                    errors.add("default_breakdown", f"Komponen ke-{position + 1} tidak valid.")
            else:
                errors.add("default_breakdown", f"Komponen ke-{position + 1} tidak valid.")
    else:
        errors.add("default_breakdown", "Komponen AHS harus berupa daftar.")

    cleaned = {
        "name": name,
        "category": _clean_text(payload.get("category")) or default_category,
        "unit": _clean_text(payload.get("unit")),
        "default_price": _parse_price(errors, "default_price", payload.get("default_price")),
        "default_breakdown": tuple(components),
        "source": _clean_text(payload.get("source")),
    }
    errors.raise_if_any()
    return cleaned
