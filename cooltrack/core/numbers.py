from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from cooltrack.core.errors import ValidationError

CENT = Decimal("0.01")
MILLI = Decimal("0.001")
ZERO = Decimal("0")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        # str() first so floats keep their printed value (0.1 -> 0.1, not 0.1000000000000000055)
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number") from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def money(value: Any) -> Decimal:
    return to_decimal(value if value is not None else ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def quantity(value: Any) -> Decimal:
    return to_decimal(value if value is not None else ZERO).quantize(MILLI, rounding=ROUND_HALF_UP)


def plain(value: Any) -> Any:
    """JSON-safe rendering for event payloads and JSON columns."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value
