import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from common.exceptions import DomainValidationError

MONEY_QUANT = Decimal("0.01")
QUANTITY_QUANT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value, default=ZERO):
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        number = None
    if number is None or not number.is_finite():
        raise DomainValidationError({"value": f"'{value}' is not a valid number."})
    return number


def to_money(value):
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_quantity(value):
    return to_decimal(value).quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)


def timestamp_reference(prefix):
    """Build references such as ``ADJ-1718000000000`` from the current epoch millis."""
    return f"{prefix}-{int(time.time() * 1000)}"
