from decimal import Decimal, InvalidOperation


class DecimalAdapter:
    @staticmethod
    def to_decimal(value):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        if isinstance(value, str) and not value.strip():
            return None
        try:
            result = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            return None
        if not result.is_finite():
            return None
        return result

    @staticmethod
    def to_string(value):
        if value is None:
            return None
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text or "0"
