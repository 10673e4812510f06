from __future__ import annotations

import re
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError

# Thousand/decimal separator patterns shared by cell input and imports.
_THOUSAND_DOT_DECIMAL_COMMA = re.compile(r"^[+-]?\d{1,3}(\.\d{3})+,\d+$")
_THOUSAND_COMMA_DECIMAL_DOT = re.compile(r"^[+-]?\d{1,3}(,\d{3})+\.\d+$")
_THOUSAND_DOTS_ONLY = re.compile(r"^[+-]?\d{1,3}(\.\d{3}){2,}$")

ERR_NUMERIC_REQUIRED = "Nilai harus berupa angka."


class ErrorCollector:
    """Collects validation messages per field and raises once on demand."""

    def __init__(self) -> None:
        self._messages: Dict[str, list[str]] = defaultdict(list)

    def add(self, field: str, message: str) -> None:
        self._messages[field].append(message)

    def has(self, field: str) -> bool:
        return bool(self._messages.get(field))

    def data(self) -> Dict[str, list[str]]:
        return {field: msgs for field, msgs in self._messages.items() if msgs}

    def raise_if_any(self) -> None:
        payload = self.data()
        if payload:
            raise ValidationError(payload)


class NumericNormaliser:
    """Normalises numeric strings regardless of locale-specific separators.

    A single dot is read as a decimal point, while two or more dot-separated
    groups of three digits (``1.500.000``) are Indonesian thousand separators.
    """

    @staticmethod
    def normalise(candidate: str) -> str:
        if _THOUSAND_DOT_DECIMAL_COMMA.match(candidate):
            return candidate.replace(".", "").replace(",", ".")
        if _THOUSAND_COMMA_DECIMAL_DOT.match(candidate):
            return candidate.replace(",", "")
        if _THOUSAND_DOTS_ONLY.match(candidate):
            return candidate.replace(".", "")

        if "," in candidate and "." not in candidate:
            return candidate.replace(",", ".")
        if "," in candidate and "." in candidate:
            if candidate.rfind(",") > candidate.rfind("."):
                return candidate.replace(".", "").replace(",", ".")
            return candidate.replace(",", "")
        return candidate


class NumericParser:
    """Converts arbitrary cell or form inputs into Decimal values."""

    def __init__(self, errors: ErrorCollector, field: str) -> None:
        self._errors = errors
        self._field = field

    def parse(self, value: Any) -> Optional[Decimal]:
        if value is None:
            return None
        if isinstance(value, bool):
            self._errors.add(self._field, ERR_NUMERIC_REQUIRED)
            return None
        if isinstance(value, Decimal):
            return self._finite(value)
        if isinstance(value, (int, float)):
            return self._finite(Decimal(str(value)))
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None

            text = re.sub(r"(?i)rp|idr", "", text)
            text = text.replace(" ", "").replace("_", "")
            if not re.fullmatch(r"[+-]?[0-9.,]+", text) or not any(ch.isdigit() for ch in text):
                self._errors.add(self._field, ERR_NUMERIC_REQUIRED)
                return None

            try:
                return self._finite(Decimal(NumericNormaliser.normalise(text)))
            except InvalidOperation:
                self._errors.add(self._field, ERR_NUMERIC_REQUIRED)
                return None

        self._errors.add(self._field, ERR_NUMERIC_REQUIRED)
        return None

    def _finite(self, value: Decimal) -> Optional[Decimal]:
        if not value.is_finite():
            self._errors.add(self._field, ERR_NUMERIC_REQUIRED)
            return None
        return value


def parse_decimal(value: Any, field: str) -> Optional[Decimal]:
    """Parse ``value`` or raise ``ValidationError`` keyed by ``field``."""
    errors = ErrorCollector()
    result = NumericParser(errors, field).parse(value)
    errors.raise_if_any()
    return result
